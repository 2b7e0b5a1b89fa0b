"""Run an adapter over a raw payload and enforce the canonical item rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List

from pydantic import ValidationError

from ..errors import NormalizationError
from .base import Adapter, NormalizedItem

logger = logging.getLogger(__name__)

CURRENCY_MIXED_ATTR = "currency_mixed"


@dataclass
class NormalizationResult:
    items: List[NormalizedItem] = field(default_factory=list)
    dropped: int = 0


def normalize_payload(adapter: Adapter, raw: Any) -> NormalizationResult:
    """Transform ``raw`` with ``adapter``.

    - invalid items (missing sku/name, bad field types) are skipped and counted
    - a repeated sku aborts with ``normalization_failed/duplicate_sku``
    - an adapter that cannot read the payload structure aborts with
      ``normalization_failed/missing_field``
    """
    try:
        produced = list(adapter(raw) or [])
    except (KeyError, TypeError, ValueError) as e:
        raise NormalizationError("missing_field", f"adapter could not read payload: {e!r}") from e

    result = NormalizationResult()
    seen: set[str] = set()

    for index, entry in enumerate(produced):
        try:
            item = entry if isinstance(entry, NormalizedItem) else NormalizedItem.model_validate(entry)
        except ValidationError as e:
            result.dropped += 1
            logger.debug(f"Dropped item #{index}: {e.errors()[0].get('msg')}")
            continue

        if item.sku in seen:
            raise NormalizationError("duplicate_sku", f"sku {item.sku} appears more than once")
        seen.add(item.sku)
        result.items.append(item)

    currencies = {i.currency for i in result.items if i.currency}
    if len(currencies) > 1:
        logger.info(f"Mixed currencies in payload: {sorted(currencies)}")
        for item in result.items:
            if item.currency:
                item.attributes[CURRENCY_MIXED_ATTR] = True

    return result


__all__ = ["CURRENCY_MIXED_ATTR", "NormalizationResult", "normalize_payload"]
