"""Canonical serialization and hashing of normalized items.

There is exactly one canonical form: sorted keys, compact separators, trimmed
strings, lowercase currency, integer minor-unit prices, items ordered by sku.
Identical catalogs always produce identical hashes.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable, Mapping

from .adapters.base import NormalizedItem


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _canonical_attr(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


def canonical_item(item: NormalizedItem | Mapping[str, Any]) -> Dict[str, Any]:
    """Canonical field mapping used for both storage and hashing."""
    if not isinstance(item, NormalizedItem):
        item = NormalizedItem.model_validate(item)
    return {
        "sku": item.sku.strip(),
        "name": item.name.strip(),
        "category": item.category.value,
        "price": item.price,
        "currency": item.currency.lower() if item.currency else None,
        "image_url": item.image_url.strip() if item.image_url else None,
        "attributes": {
            str(k).strip(): _canonical_attr(v) for k, v in sorted(item.attributes.items())
        },
    }


def field_hash(item: NormalizedItem | Mapping[str, Any]) -> str:
    """Hash of one item's canonical fields."""
    return hashlib.sha256(canonical_json(canonical_item(item)).encode("utf-8")).hexdigest()


def payload_hash(items: Iterable[NormalizedItem | Mapping[str, Any]]) -> str:
    """Hash of a whole normalized item list, independent of input order."""
    canonical = sorted((canonical_item(i) for i in items), key=lambda c: c["sku"])
    return hashlib.sha256(canonical_json(canonical).encode("utf-8")).hexdigest()


__all__ = ["canonical_json", "canonical_item", "field_hash", "payload_hash"]
