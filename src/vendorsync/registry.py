"""Vendor registry backed by the product DB.

Maps a vendor slug to its integration descriptor (API endpoint or scraper
path plus credentials). Readers never see the stored API key, only ``has_key``.

Usage:
    registry = VendorRegistry(db)
    await registry.upsert_credentials("moscot", {"scraperPath": "/opt/scrapers/moscot"})
    vendor = await registry.get_vendor("moscot")
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import AuthType, Database, IntegrationType, Vendor, VendorIntegration, VendorSyncState
from .db.base import new_id, utcnow
from .errors import InvalidPayload, InvalidVendor, MissingCredentials, SlugConflict, VendorNotFound

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def normalize_slug(raw: Any) -> str:
    """Trim and lowercase a slug, rejecting anything that is not URL-safe ASCII."""
    if not isinstance(raw, str):
        raise InvalidVendor("slug must be a string")
    slug = raw.strip().lower()
    if not slug or len(slug) > 64 or not SLUG_RE.match(slug):
        raise InvalidVendor(f"invalid vendor slug: {raw!r}")
    return slug


class CredentialsPayload(BaseModel):
    """Integration write payload. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    type: Optional[IntegrationType] = None
    scraper_path: Optional[str] = None
    api_base_url: Optional[str] = None
    api_auth_type: Optional[AuthType] = None
    api_key: Optional[str] = None

    @field_validator("scraper_path", "api_base_url", "api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("type", "api_auth_type", mode="before")
    @classmethod
    def _normalize_enum(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value.upper() if value.lower() in ("api", "scraper") else value.lower()
        return value

    @field_validator("api_base_url")
    @classmethod
    def _http_url(cls, value):
        if value is not None and not value.lower().startswith(("http://", "https://")):
            raise ValueError("apiBaseUrl must be an http(s) URL")
        return value

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


def parse_credentials(payload: Mapping[str, Any] | CredentialsPayload) -> CredentialsPayload:
    if isinstance(payload, CredentialsPayload):
        return payload
    if not isinstance(payload, Mapping):
        raise InvalidPayload("credentials payload must be an object")
    try:
        return CredentialsPayload.model_validate(dict(payload))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
        raise InvalidPayload(f"{field}: {first.get('msg')}") from e


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_integration(integration: Optional[VendorIntegration]) -> Optional[Dict[str, Any]]:
    if integration is None:
        return None
    return {
        "type": integration.type,
        "scraper_path": integration.scraper_path,
        "api_base_url": integration.api_base_url,
        "api_auth_type": integration.api_auth_type,
        "has_key": bool(integration.api_key),
        "last_test_at": _iso(integration.last_test_at),
        "last_test_ok": integration.last_test_ok,
        "meta": integration.meta,
    }


def serialize_state(state: Optional[VendorSyncState]) -> Optional[Dict[str, Any]]:
    if state is None:
        return None
    return {
        "vendor": state.vendor,
        "last_run_id": state.last_run_id,
        "last_run_at": _iso(state.last_run_at),
        "last_status": state.last_status,
        "total_items": state.total_items,
        "last_error": state.last_error,
        "last_duration_ms": state.last_duration_ms,
        "last_hash": state.last_hash,
        "last_source": state.last_source,
        "last_run_by": state.last_run_by,
    }


def serialize_vendor(vendor: Vendor, state: Optional[VendorSyncState] = None) -> Dict[str, Any]:
    """Reader view of a vendor. The API key is never included."""
    return {
        "id": vendor.id,
        "slug": vendor.slug,
        "display_name": vendor.display_name,
        "status": "draft" if vendor.is_draft else "configured",
        "created_at": _iso(vendor.created_at),
        "updated_at": _iso(vendor.updated_at),
        "integration": serialize_integration(vendor.integration),
        "state": serialize_state(state),
    }


class VendorRegistry:
    """Vendor and integration lookups and writes."""

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_vendors(self) -> List[Vendor]:
        """All vendors with their integration joined, ordered by slug."""
        async with self.db.session() as session:
            result = await session.execute(select(Vendor).order_by(Vendor.slug))
            return list(result.scalars().all())

    async def get_vendor(self, slug: str) -> Vendor:
        slug = normalize_slug(slug)
        async with self.db.session() as session:
            return await self._load(session, slug)

    async def _load(self, session: AsyncSession, slug: str) -> Vendor:
        result = await session.execute(select(Vendor).where(Vendor.slug == slug))
        vendor = result.scalar_one_or_none()
        if vendor is None:
            raise VendorNotFound(f"vendor {slug} not found")
        return vendor

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_vendor(
        self,
        slug: str,
        display_name: str,
        credentials: Mapping[str, Any] | CredentialsPayload | None = None,
    ) -> Vendor:
        """Onboard a vendor, optionally with its integration in the same transaction."""
        slug = normalize_slug(slug)
        name = (display_name or "").strip() if isinstance(display_name, str) else ""
        if not name:
            raise InvalidPayload("display name is required")
        creds = parse_credentials(credentials) if credentials else None

        async with self.db.session() as session, session.begin():
            existing = await session.execute(select(Vendor.id).where(Vendor.slug == slug))
            if existing.scalar_one_or_none() is not None:
                raise SlugConflict(f"slug {slug} is already in use")

            vendor = Vendor(id=new_id(), slug=slug, display_name=name)
            session.add(vendor)
            await session.flush()
            if creds is not None and not creds.is_empty():
                session.add(self._merge(None, vendor.id, creds))

        logger.info(f"Created vendor {slug}")
        return await self.get_vendor(slug)

    async def upsert_credentials(
        self, slug: str, payload: Mapping[str, Any] | CredentialsPayload
    ) -> Vendor:
        """Create or update a vendor's integration. ``last_test_*`` is left alone."""
        slug = normalize_slug(slug)
        creds = parse_credentials(payload)
        if creds.is_empty():
            raise InvalidPayload("no credential fields provided")

        async with self.db.session() as session, session.begin():
            vendor = await self._load(session, slug)
            merged = self._merge(vendor.integration, vendor.id, creds)
            if vendor.integration is None:
                session.add(merged)

        logger.info(f"Saved credentials for {slug} (type={merged.type})")
        return await self.get_vendor(slug)

    async def record_test_result(self, slug: str, ok: bool, at: datetime | None = None) -> Vendor:
        """Update ``last_test_at`` / ``last_test_ok`` only."""
        slug = normalize_slug(slug)
        async with self.db.session() as session, session.begin():
            vendor = await self._load(session, slug)
            if vendor.integration is None:
                raise MissingCredentials(f"vendor {slug} has no integration")
            vendor.integration.last_test_at = at or utcnow()
            vendor.integration.last_test_ok = bool(ok)
        return await self.get_vendor(slug)

    @staticmethod
    def _merge(
        integration: Optional[VendorIntegration], vendor_id: str, creds: CredentialsPayload
    ) -> VendorIntegration:
        """Apply ``creds`` onto ``integration`` (or a new one) and check invariants.

        Type resolution: explicit type, else the kind of endpoint in the payload,
        else the existing type, else SCRAPER.
        """
        if integration is None:
            integration = VendorIntegration(vendor_id=vendor_id)

        if creds.type is not None:
            kind = creds.type.value
        elif creds.api_base_url:
            kind = IntegrationType.API.value
        elif creds.scraper_path:
            kind = IntegrationType.SCRAPER.value
        elif integration.type:
            kind = integration.type
        else:
            kind = IntegrationType.SCRAPER.value

        scraper_path = creds.scraper_path or integration.scraper_path
        api_base_url = creds.api_base_url or integration.api_base_url
        api_key = creds.api_key or integration.api_key
        auth_type = creds.api_auth_type.value if creds.api_auth_type else integration.api_auth_type

        if kind == IntegrationType.API.value:
            if not api_base_url:
                raise InvalidPayload("apiBaseUrl is required for API integrations")
            if auth_type is None:
                auth_type = AuthType.BEARER.value if api_key else AuthType.NONE.value
            if auth_type != AuthType.NONE.value and not api_key:
                raise InvalidPayload(f"apiKey is required for {auth_type} auth")
        elif not scraper_path:
            raise InvalidPayload("scraperPath is required for SCRAPER integrations")

        integration.type = kind
        integration.scraper_path = scraper_path
        integration.api_base_url = api_base_url
        integration.api_auth_type = auth_type
        integration.api_key = api_key
        return integration


__all__ = [
    "CredentialsPayload",
    "VendorRegistry",
    "normalize_slug",
    "parse_credentials",
    "serialize_vendor",
    "serialize_integration",
    "serialize_state",
]
