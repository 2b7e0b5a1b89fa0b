"""Alert ingress: validate, record and acknowledge operator alerts."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .db import AlertEvent, AlertLevel, Database
from .db.base import new_id, utcnow
from .errors import InvalidPayload

logger = logging.getLogger(__name__)

TOAST_TITLES = {
    AlertLevel.INFO.value: "Vendor update",
    AlertLevel.WARN.value: "Vendor warning",
    AlertLevel.ERROR.value: "Vendor error",
}

TOAST_TONES = {
    AlertLevel.INFO.value: "info",
    AlertLevel.WARN.value: "warning",
    AlertLevel.ERROR.value: "destructive",
}


@dataclass
class AlertReceipt:
    """Acknowledgement of an ingested alert.

    ``toast`` is a presentation hint for the operator surface, not a delivery
    guarantee.
    """

    received: int
    level: str
    ids: List[str] = field(default_factory=list)
    toast: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _normalize_vendors(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise InvalidPayload("vendors must be a list of slugs")
    vendors: List[str] = []
    for value in raw:
        if not isinstance(value, str):
            raise InvalidPayload("vendors must be a list of slugs")
        slug = value.strip().lower()
        if slug and slug not in vendors:
            vendors.append(slug)
    return vendors


class AlertIngress:
    def __init__(self, db: Database):
        self.db = db

    async def ingest(self, payload: Mapping[str, Any], now: datetime | None = None) -> AlertReceipt:
        """Record one event per distinct vendor, or one unattached event."""
        if not isinstance(payload, Mapping):
            raise InvalidPayload("alert payload must be an object")

        level = payload.get("level")
        level = level.strip().lower() if isinstance(level, str) else ""
        if level not in TOAST_TITLES:
            raise InvalidPayload(f"unknown alert level: {payload.get('level')!r}")

        message = payload.get("message")
        message = message.strip() if isinstance(message, str) else ""
        if not message:
            raise InvalidPayload("alert message is empty")

        context = payload.get("context") or {}
        if not isinstance(context, Mapping):
            raise InvalidPayload("alert context must be an object")

        vendors = _normalize_vendors(payload.get("vendors"))
        received_at = now or utcnow()

        events = [
            AlertEvent(
                id=new_id(),
                vendor=vendor,
                level=level,
                message=message,
                received_at=received_at,
                context=dict(context),
            )
            for vendor in (vendors or [None])
        ]
        async with self.db.session() as session, session.begin():
            session.add_all(events)

        logger.info(f"Ingested {level} alert for {vendors or 'no vendor'}: {message}")
        return AlertReceipt(
            received=len(events),
            level=level,
            ids=[e.id for e in events],
            toast={
                "title": TOAST_TITLES[level],
                "description": message,
                "tone": TOAST_TONES[level],
            },
        )

    async def raise_alert(
        self,
        level: str,
        message: str,
        vendor: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> AlertReceipt:
        """Engine-side shortcut for ``ingest``."""
        return await self.ingest(
            {
                "level": level,
                "message": message,
                "vendors": [vendor] if vendor else [],
                "context": context or {},
            }
        )


__all__ = ["AlertIngress", "AlertReceipt", "TOAST_TITLES", "TOAST_TONES"]
