"""
Diff/Apply engine.

Computes the three-way patch between a vendor's persisted catalog and a fresh
normalized item list, then applies it inside the caller's transaction:

- new skus (and tombstoned skus that reappear) are created
- live rows whose field hash changed are updated
- live rows absent from the input are tombstoned (``deleted_at``)

A payload whose hash equals the previous successful run's hash is a no-op.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .adapters.base import NormalizedItem
from .db import VendorCatalogItem
from .db.base import new_id, utcnow
from .hashing import canonical_item, canonical_json, payload_hash

logger = logging.getLogger(__name__)

CANONICAL_FIELDS = ("name", "category", "price", "currency", "image_url", "attributes")


@dataclass(frozen=True)
class ExistingRow:
    field_hash: str
    live: bool


@dataclass
class Patch:
    """Three-way patch. Entries are canonical item dicts carrying ``field_hash``."""

    create: List[Dict[str, Any]] = field(default_factory=list)
    update: List[Dict[str, Any]] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    tombstone: List[str] = field(default_factory=list)
    revived: List[str] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "created": len(self.create),
            "updated": len(self.update),
            "unchanged": len(self.unchanged),
            "tombstoned": len(self.tombstone),
        }


@dataclass
class ApplyResult:
    hash: str
    total: int
    created: int = 0
    updated: int = 0
    tombstoned: int = 0
    unchanged: int = 0
    noop: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _hash_canonical(canonical: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical_json(canonical).encode("utf-8")).hexdigest()


def compute_patch(
    existing: Mapping[str, ExistingRow],
    items: Iterable[NormalizedItem | Mapping[str, Any]],
) -> Patch:
    """Pure diff of ``items`` against ``existing`` rows keyed by sku."""
    patch = Patch()
    incoming: set[str] = set()

    for canonical in sorted((canonical_item(i) for i in items), key=lambda c: c["sku"]):
        sku = canonical["sku"]
        incoming.add(sku)
        entry = {**canonical, "field_hash": _hash_canonical(canonical)}
        row = existing.get(sku)

        if row is None or not row.live:
            patch.create.append(entry)
            if row is not None:
                patch.revived.append(sku)
        elif row.field_hash != entry["field_hash"]:
            patch.update.append(entry)
        else:
            patch.unchanged.append(sku)

    patch.tombstone = sorted(
        sku for sku, row in existing.items() if row.live and sku not in incoming
    )
    return patch


class CatalogApplier:
    """Applies patches to ``vendor_catalog_item`` within a caller-owned session."""

    async def load_rows(self, session: AsyncSession, vendor_id: str) -> Dict[str, VendorCatalogItem]:
        result = await session.execute(
            select(VendorCatalogItem).where(VendorCatalogItem.vendor_id == vendor_id)
        )
        return {row.sku: row for row in result.scalars().all()}

    async def plan(
        self,
        session: AsyncSession,
        vendor_id: str,
        items: Sequence[NormalizedItem | Mapping[str, Any]],
    ) -> Patch:
        """Diff without writing (used for previews)."""
        rows = await self.load_rows(session, vendor_id)
        return compute_patch(_existing(rows), items)

    async def apply(
        self,
        session: AsyncSession,
        vendor_id: str,
        items: Sequence[NormalizedItem | Mapping[str, Any]],
        prior_hash: Optional[str] = None,
        now: datetime | None = None,
    ) -> ApplyResult:
        """Apply ``items`` to the vendor's catalog.

        Must run inside an open transaction; the caller commits. Database errors
        propagate unchanged so the caller can roll back and classify them.
        """
        digest = payload_hash(items)
        if prior_hash is not None and digest == prior_hash:
            logger.info(f"Payload unchanged for vendor {vendor_id} ({digest[:12]}), skipping apply")
            return ApplyResult(hash=digest, total=len(items), noop=True)

        now = now or utcnow()
        rows = await self.load_rows(session, vendor_id)
        patch = compute_patch(_existing(rows), items)

        for entry in patch.create:
            row = rows.get(entry["sku"])
            if row is None:
                row = VendorCatalogItem(
                    id=new_id(),
                    vendor_id=vendor_id,
                    sku=entry["sku"],
                    created_at=now,
                )
                session.add(row)
            _assign(row, entry, now)
            row.deleted_at = None

        for entry in patch.update:
            _assign(rows[entry["sku"]], entry, now)

        for sku in patch.tombstone:
            row = rows[sku]
            row.deleted_at = now
            row.updated_at = now

        await session.flush()

        counts = patch.counts()
        logger.info(
            f"Applied catalog patch for vendor {vendor_id}: "
            f"+{counts['created']} ~{counts['updated']} -{counts['tombstoned']}"
        )
        return ApplyResult(hash=digest, total=len(items), **counts)


def _existing(rows: Mapping[str, VendorCatalogItem]) -> Dict[str, ExistingRow]:
    return {
        sku: ExistingRow(field_hash=row.field_hash, live=row.deleted_at is None)
        for sku, row in rows.items()
    }


def _assign(row: VendorCatalogItem, entry: Mapping[str, Any], now: datetime) -> None:
    for name in CANONICAL_FIELDS:
        setattr(row, name, entry[name])
    row.field_hash = entry["field_hash"]
    row.updated_at = now


__all__ = [
    "ApplyResult",
    "CatalogApplier",
    "ExistingRow",
    "Patch",
    "compute_patch",
]
