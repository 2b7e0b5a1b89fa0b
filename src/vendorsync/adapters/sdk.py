"""Adapter SDK: scaffold new vendor adapters and validate registered ones.

Usage:
    plan = scaffold("acme-optics", adapters_dir=Path("plugins"), dry_run=True)
    for f in plan.files:
        print(f.action, f.status, f.path)

    result = await validate("acme-optics", registry=adapters, vendors=vendor_registry)
    assert result.ok, result.checks
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from string import Template
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import InvalidVendor, SyncError, VendorNotFound
from ..hashing import canonical_item, payload_hash
from .base import NormalizedItem
from .normalize import normalize_payload
from .registry import AdapterRegistry

if TYPE_CHECKING:
    from ..registry import VendorRegistry

logger = logging.getLogger(__name__)

BUILTIN_FIXTURES_DIR = Path(__file__).parent / "fixtures"

ADAPTER_TEMPLATE = Template('''"""$vendor_name catalog adapter.

Generated by ``python -m vendorsync scaffold $slug``. Fill in ``normalize`` so
it yields one mapping per product with at least ``sku`` and ``name``.
"""

from vendorsync.adapters.base import to_minor_units

SLUG = "$slug"


def normalize(raw):
    for product in raw["items"]:
        yield {
            "sku": product.get("sku"),
            "name": product.get("name"),
            "category": product.get("category", "Other"),
            "price": to_minor_units(product.get("price")),
            "currency": product.get("currency"),
            "image_url": product.get("imageUrl"),
            "attributes": {},
        }
''')

SAMPLE_FIXTURE = {
    "items": [
        {
            "sku": "SAMPLE-1",
            "name": "Sample frame",
            "category": "Frames",
            "price": "100.00",
            "currency": "EUR",
        }
    ]
}


@dataclass
class ScaffoldFile:
    path: str
    action: str  # create, update
    status: str = "planned"  # planned, written, skipped
    reason: Optional[str] = None
    contents: Optional[str] = field(default=None, repr=False)


@dataclass
class ScaffoldPlan:
    slug: str
    vendor_name: str
    dry_run: bool
    files: List[ScaffoldFile] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for f in data["files"]:
            f.pop("contents", None)
        return data


@dataclass
class Check:
    name: str
    ok: bool
    detail: Optional[str] = None


@dataclass
class ValidationResult:
    slug: str
    checks: List[Check] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.checks)

    def to_dict(self) -> Dict[str, Any]:
        return {"slug": self.slug, "ok": self.ok, "checks": [asdict(c) for c in self.checks]}


def module_name_for(slug: str) -> str:
    return slug.replace("-", "_")


def _title(slug: str) -> str:
    return " ".join(part.capitalize() for part in slug.split("-") if part)


# =============================================================================
# Scaffold
# =============================================================================


def scaffold(
    slug: str,
    *,
    adapters_dir: str | Path,
    fixtures_dir: str | Path | None = None,
    registry: AdapterRegistry | None = None,
    vendor_name: str | None = None,
    dry_run: bool = False,
    force: bool = False,
) -> ScaffoldPlan:
    """Plan (and unless ``dry_run``, write) a new adapter module and sample fixture.

    Existing slugs are rejected unless ``force``.
    """
    from ..registry import normalize_slug

    slug = normalize_slug(slug)
    name = (vendor_name or "").strip() or _title(slug)
    adapters_path = Path(adapters_dir)
    fixtures_path = Path(fixtures_dir) if fixtures_dir else adapters_path / "fixtures"

    adapter_file = adapters_path / f"{module_name_for(slug)}.py"
    exists = adapter_file.exists() or (registry is not None and slug in registry)
    if exists and not force:
        raise InvalidVendor(f"adapter for {slug} already exists; use force to overwrite")

    plan = ScaffoldPlan(slug=slug, vendor_name=name, dry_run=dry_run)
    plan.files.append(
        ScaffoldFile(
            path=str(adapter_file),
            action="update" if adapter_file.exists() else "create",
            contents=ADAPTER_TEMPLATE.substitute(slug=slug, vendor_name=name),
        )
    )

    fixture_file = fixtures_path / f"{slug}.json"
    if fixture_file.exists():
        plan.files.append(
            ScaffoldFile(
                path=str(fixture_file),
                action="update",
                status="skipped",
                reason="fixture already present",
            )
        )
    else:
        plan.files.append(
            ScaffoldFile(
                path=str(fixture_file),
                action="create",
                contents=json.dumps(SAMPLE_FIXTURE, indent=2) + "\n",
            )
        )

    if dry_run:
        return plan

    for f in plan.files:
        if f.status == "skipped":
            continue
        target = Path(f.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f.contents or "", encoding="utf-8")
        f.status = "written"
        logger.info(f"Scaffold wrote {target}")

    return plan


# =============================================================================
# Validate
# =============================================================================


async def validate(
    slug: str,
    *,
    registry: AdapterRegistry,
    vendors: "VendorRegistry | None" = None,
    fixtures_dir: str | Path | None = None,
) -> ValidationResult:
    """Structural check of a registered adapter."""
    from ..registry import normalize_slug

    slug = normalize_slug(slug)
    result = ValidationResult(slug=slug)
    adapter = registry.get(slug)

    # 1. registration
    result.checks.append(
        Check(
            name="adapter registered in index",
            ok=adapter is not None,
            detail=None if adapter is not None else f"no adapter registered for {slug}",
        )
    )

    # 2. slug consistency between adapter module and vendor registry
    problems: List[str] = []
    declared = getattr(inspect.getmodule(adapter), "SLUG", None) if adapter else None
    if declared is not None and declared != slug:
        problems.append(f"adapter declares SLUG={declared!r}")
    if vendors is not None:
        try:
            await vendors.get_vendor(slug)
        except VendorNotFound:
            problems.append(f"vendor {slug} missing from vendor registry")
    result.checks.append(
        Check(
            name="slug matches registry",
            ok=not problems,
            detail="; ".join(problems) or None,
        )
    )

    # 3. sample transform
    if adapter is None:
        result.checks.append(
            Check(name="sample transform round-trips", ok=False, detail="adapter missing")
        )
        return result

    fixture = Path(fixtures_dir or BUILTIN_FIXTURES_DIR) / f"{slug}.json"
    result.checks.append(_round_trip_check(adapter, fixture))
    return result


def _round_trip_check(adapter, fixture: Path) -> Check:
    name = "sample transform round-trips"
    if fixture.exists():
        try:
            raw = json.loads(fixture.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            return Check(name=name, ok=False, detail=f"fixture unreadable: {e}")
        source = fixture.name
    else:
        raw = {"items": []}
        source = "empty payload (no fixture)"

    try:
        normalized = normalize_payload(adapter, raw)
    except SyncError as e:
        return Check(name=name, ok=False, detail=f"{e.kind}: {e.detail}")

    reparsed = [NormalizedItem.model_validate(canonical_item(i)) for i in normalized.items]
    same_fields = [canonical_item(i) for i in reparsed] == [
        canonical_item(i) for i in normalized.items
    ]
    same_hash = payload_hash(reparsed) == payload_hash(normalized.items)
    if not (same_fields and same_hash):
        return Check(name=name, ok=False, detail="canonical form is not stable")

    return Check(
        name=name,
        ok=True,
        detail=f"{source}: {len(normalized.items)} items, {normalized.dropped} dropped",
    )


__all__ = [
    "ADAPTER_TEMPLATE",
    "BUILTIN_FIXTURES_DIR",
    "Check",
    "ScaffoldFile",
    "ScaffoldPlan",
    "ValidationResult",
    "module_name_for",
    "scaffold",
    "validate",
]
