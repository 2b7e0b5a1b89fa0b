"""
Tests for AlertIngress.
"""

import pytest
from sqlalchemy import select

from vendorsync.alerts import AlertIngress
from vendorsync.db import AlertEvent
from vendorsync.errors import InvalidPayload


async def stored_alerts(db):
    async with db.session() as session:
        result = await session.execute(select(AlertEvent).order_by(AlertEvent.vendor))
        return list(result.scalars().all())


class TestValidation:
    """Payload normalization and rejection."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"level": "debug", "message": "x"},
            {"level": "warn", "message": ""},
            {"level": "warn", "message": "   "},
            {"message": "no level"},
            {"level": "info", "message": "x", "vendors": 42},
            {"level": "info", "message": "x", "context": ["not", "a", "map"]},
        ],
    )
    async def test_rejects(self, db, payload):
        with pytest.raises(InvalidPayload):
            await AlertIngress(db).ingest(payload)
        assert await stored_alerts(db) == []

    @pytest.mark.asyncio
    async def test_trims_and_lowercases(self, db):
        receipt = await AlertIngress(db).ingest(
            {"level": " WARN ", "message": "  feed lagging  ", "vendors": [" ACME "]}
        )

        alerts = await stored_alerts(db)
        assert receipt.received == 1
        assert alerts[0].level == "warn"
        assert alerts[0].message == "feed lagging"
        assert alerts[0].vendor == "acme"


class TestFanOut:
    """One event per distinct vendor."""

    @pytest.mark.asyncio
    async def test_one_event_per_distinct_vendor(self, db):
        receipt = await AlertIngress(db).ingest(
            {"level": "error", "message": "down", "vendors": ["acme", "Beta", "ACME"]}
        )

        alerts = await stored_alerts(db)
        assert receipt.received == 2
        assert sorted(a.vendor for a in alerts) == ["acme", "beta"]

    @pytest.mark.asyncio
    async def test_unattached_event(self, db):
        receipt = await AlertIngress(db).ingest({"level": "info", "message": "maintenance"})

        alerts = await stored_alerts(db)
        assert receipt.received == 1
        assert alerts[0].vendor is None


class TestToast:
    """Receipt presentation hint."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "level,title,tone",
        [
            ("info", "Vendor update", "info"),
            ("warn", "Vendor warning", "warning"),
            ("error", "Vendor error", "destructive"),
        ],
    )
    async def test_toast(self, db, level, title, tone):
        receipt = await AlertIngress(db).ingest({"level": level, "message": "hello"})

        assert receipt.toast == {"title": title, "description": "hello", "tone": tone}
