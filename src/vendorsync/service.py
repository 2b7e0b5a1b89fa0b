"""SyncService - JSON command surface for the vendor sync engine.

Every command returns an envelope: ``{"ok": True, ...}`` on success or
``{"ok": False, "error": <kind>, "detail": <text>}`` on failure. A host (HTTP
handler, CLI, job runner) maps these to its own transport.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .adapters import AdapterRegistry, default_adapter_registry, scaffold, validate
from .adapters.registry import BUILTIN_ADAPTERS_DIR
from .adapters.sdk import BUILTIN_FIXTURES_DIR
from .alerts import AlertIngress
from .config import SyncConfig, get_config
from .db import Database
from .engine import SyncEngine
from .errors import ServerError, SyncError
from .fetcher import Fetcher
from .observability import ObservabilityQuery
from .recorder import RunRecorder
from .registry import VendorRegistry, normalize_slug, serialize_vendor

logger = logging.getLogger(__name__)

Envelope = Dict[str, Any]


def enveloped(fn: Callable[..., Awaitable[Dict[str, Any]]]) -> Callable[..., Awaitable[Envelope]]:
    """Wrap a command so it always returns an ok/error envelope."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs) -> Envelope:
        try:
            body = await fn(self, *args, **kwargs)
        except SyncError as e:
            logger.info(f"{fn.__name__} rejected: {e.kind}: {e.detail}")
            return e.to_envelope()
        except Exception as e:
            logger.exception(f"{fn.__name__} failed")
            return ServerError(f"{type(e).__name__}: {e}").to_envelope()
        return {"ok": True, **body}

    return wrapper


class SyncService:
    """Command surface over the engine, registries and read models."""

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self.config = engine.config
        self.vendors = engine.vendors
        self.recorder = engine.recorder
        self.alerts = engine.alerts
        self.observability = ObservabilityQuery(engine.db)

    @property
    def adapters(self) -> AdapterRegistry:
        return self.engine.adapters

    # =========================================================================
    # Runs
    # =========================================================================

    @enveloped
    async def run_one(self, slug: str, source: str = "manual", run_by: str = "system"):
        outcome = await self.engine.run_one(slug, source=source, run_by=run_by)
        if not outcome.ok:
            return {
                "ok": False,
                "error": outcome.error,
                "detail": outcome.detail,
                "run": outcome.to_dict(),
            }
        return {"run": outcome.to_dict()}

    @enveloped
    async def run_all(self, source: str = "automated", run_by: str = "system"):
        results = await self.engine.run_all(source=source, run_by=run_by)
        return {"results": results}

    @enveloped
    async def preview(self, slug: str):
        return {"preview": await self.engine.preview(slug)}

    # =========================================================================
    # Vendors
    # =========================================================================

    @enveloped
    async def list_vendors(self):
        vendors = await self.vendors.list_vendors()
        states = await self.recorder.list_states()
        return {"vendors": [serialize_vendor(v, states.get(v.slug)) for v in vendors]}

    @enveloped
    async def create_vendor(
        self,
        slug: str,
        display_name: str,
        credentials: Optional[Mapping[str, Any]] = None,
    ):
        vendor = await self.vendors.create_vendor(slug, display_name, credentials)
        return {"vendor": serialize_vendor(vendor)}

    @enveloped
    async def save_credentials(self, slug: str, payload: Mapping[str, Any]):
        vendor = await self.vendors.upsert_credentials(slug, payload)
        state = await self.recorder.get_state(vendor.slug)
        return {"vendor": serialize_vendor(vendor, state)}

    @enveloped
    async def test_integration(self, slug: str):
        result = await self.engine.test_integration(slug)
        return {"result": result}

    @enveloped
    async def test_all(self):
        return {"results": await self.engine.test_all()}

    # =========================================================================
    # Observability and alerts
    # =========================================================================

    @enveloped
    async def query_observability(self, params: Mapping[str, Any]):
        page = await self.observability.query(params)
        return page.model_dump(mode="json")

    @enveloped
    async def list_runs(self, slug: str, page: int = 1, page_size: int = 20):
        return await self.observability.list_runs(normalize_slug(slug), page, page_size)

    @enveloped
    async def overview(self):
        return {"metrics": await self.observability.overview()}

    @enveloped
    async def ingest_alert(self, payload: Mapping[str, Any]):
        receipt = await self.alerts.ingest(payload)
        return receipt.to_dict()

    # =========================================================================
    # Adapter SDK
    # =========================================================================

    @enveloped
    async def scaffold_adapter(
        self,
        slug: str,
        vendor_name: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
    ):
        plan = scaffold(
            slug,
            adapters_dir=self.config.adapters_dir or BUILTIN_ADAPTERS_DIR,
            fixtures_dir=self.config.fixtures_dir or BUILTIN_FIXTURES_DIR,
            registry=self.adapters,
            vendor_name=vendor_name,
            dry_run=dry_run,
            force=force,
        )
        return {"plan": plan.to_dict()}

    @enveloped
    async def validate_adapter(self, slug: str):
        result = await validate(
            slug,
            registry=self.adapters,
            vendors=self.vendors,
            fixtures_dir=self.config.fixtures_dir or None,
        )
        return {"validation": result.to_dict(), "ok": result.ok}


def build_service(
    config: SyncConfig | None = None,
    *,
    db: Database | None = None,
    adapters: AdapterRegistry | None = None,
    fetcher: Fetcher | None = None,
) -> SyncService:
    """Wire a SyncService from configuration."""
    config = config or get_config()
    db = db or Database(config.database_url)
    adapters = adapters or default_adapter_registry(config.adapters_dir or None)
    engine = SyncEngine(
        db,
        adapters=adapters,
        config=config,
        fetcher=fetcher or Fetcher(workdir=config.workdir()),
        recorder=RunRecorder(db),
        alerts=AlertIngress(db),
        vendors=VendorRegistry(db),
    )
    logger.debug(f"Service ready with adapters: {adapters.list_slugs()}")
    return SyncService(engine)


__all__ = ["SyncService", "build_service", "enveloped"]
