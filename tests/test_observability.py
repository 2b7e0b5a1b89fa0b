"""
Tests for ObservabilityQuery (windowed run/alert feed, run history, overview).
"""

from datetime import datetime, timedelta, timezone

import pytest

from vendorsync.alerts import AlertIngress
from vendorsync.db import VendorSyncRun
from vendorsync.errors import InvalidRequest, VendorNotFound
from vendorsync.observability import (
    ObservabilityQuery,
    QueryParams,
    decode_cursor,
    encode_cursor,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def add_run(db, vendor, started_at, status="Success", run_id=None, duration_ms=1000):
    async with db.session() as session, session.begin():
        run = VendorSyncRun(
            vendor_id=vendor.id,
            status=status,
            started_at=started_at,
            finished_at=started_at + timedelta(seconds=1) if status in ("Success", "Failed") else None,
            duration_ms=duration_ms if status in ("Success", "Failed") else None,
            source="automated",
            run_by="scheduler",
            error="fetch_failed/http" if status == "Failed" else None,
        )
        if run_id:
            run.id = run_id
        session.add(run)
    return run


class TestWindow:
    """Window and vendor filters."""

    @pytest.mark.asyncio
    async def test_window_selects_one_run(self, db, acme):
        """Runs at T, T+1h, T+2h; window [T+30m, T+90m) returns only T+1h."""
        await add_run(db, acme, T0)
        middle = await add_run(db, acme, T0 + timedelta(hours=1))
        await add_run(db, acme, T0 + timedelta(hours=2))

        page = await ObservabilityQuery(db).query(
            {
                "vendor": "acme",
                "start": T0 + timedelta(minutes=30),
                "end": T0 + timedelta(minutes=90),
            }
        )

        assert [e.id for e in page.entries] == [middle.id]
        assert page.entries[0].kind == "run"
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_end_is_exclusive(self, db, acme):
        await add_run(db, acme, T0)

        page = await ObservabilityQuery(db).query({"start": T0 - timedelta(hours=1), "end": T0})

        assert page.entries == []

    @pytest.mark.asyncio
    async def test_start_after_end(self, db):
        with pytest.raises(InvalidRequest):
            await ObservabilityQuery(db).query({"start": T0, "end": T0 - timedelta(seconds=1)})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 201])
    async def test_limit_bounds(self, db, limit):
        with pytest.raises(InvalidRequest):
            await ObservabilityQuery(db).query({"limit": limit})

    def test_default_limit(self):
        assert QueryParams().limit == 50

    @pytest.mark.asyncio
    async def test_runs_and_alerts_intermixed(self, db, acme):
        """Entries from both sources are ordered newest first."""
        await add_run(db, acme, T0)
        await AlertIngress(db).ingest(
            {"level": "warn", "message": "feed slow", "vendors": ["acme"]},
            now=T0 + timedelta(minutes=5),
        )
        await add_run(db, acme, T0 + timedelta(minutes=10), status="Failed")
        await AlertIngress(db).ingest(
            {"level": "info", "message": "other vendor", "vendors": ["beta"]},
            now=T0 + timedelta(minutes=7),
        )

        page = await ObservabilityQuery(db).query({"vendor": "acme"})

        assert [e.kind for e in page.entries] == ["run", "alert", "run"]
        assert page.entries[0].summary == "Failed: fetch_failed/http"
        assert page.entries[1].summary == "[warn] feed slow"


class TestPaging:
    """Cursor pagination."""

    @pytest.mark.asyncio
    async def test_pages_cover_everything_once(self, db, acme):
        """Paging through ties never skips or repeats entries."""
        ids = set()
        for i in range(5):
            run = await add_run(db, acme, T0, status="Failed", run_id=f"00000000-0000-0000-0000-00000000000{i}")
            ids.add(run.id)
        for i in range(3):
            await add_run(db, acme, T0 - timedelta(minutes=i + 1))

        query = ObservabilityQuery(db)
        seen = []
        cursor = None
        while True:
            params = {"vendor": "acme", "limit": 3}
            if cursor:
                params["cursor"] = cursor
            page = await query.query(params)
            seen.extend(e.id for e in page.entries)
            cursor = page.next_cursor
            if not cursor:
                break

        assert len(seen) == 8
        assert len(set(seen)) == 8
        assert ids <= set(seen)
        assert seen[:5] == sorted(ids, reverse=True)

    @pytest.mark.asyncio
    async def test_malformed_cursor(self, db):
        with pytest.raises(InvalidRequest):
            await ObservabilityQuery(db).query({"cursor": "not-a-cursor!!"})

    def test_cursor_round_trip(self):
        at, entry_id = decode_cursor(encode_cursor(T0, "abc"))
        assert at == T0
        assert entry_id == "abc"


class TestRunHistory:
    @pytest.mark.asyncio
    async def test_list_runs_paginates(self, db, acme):
        for i in range(5):
            await add_run(db, acme, T0 + timedelta(minutes=i))

        page = await ObservabilityQuery(db).list_runs("acme", page=2, page_size=2)

        assert page["total_items"] == 5
        assert page["has_more"] is True
        assert [r["started_at"] for r in page["items"]] == [
            (T0 + timedelta(minutes=2)).isoformat(),
            (T0 + timedelta(minutes=1)).isoformat(),
        ]

    @pytest.mark.asyncio
    async def test_list_runs_unknown_vendor(self, db):
        with pytest.raises(VendorNotFound):
            await ObservabilityQuery(db).list_runs("ghost")


class TestOverview:
    @pytest.mark.asyncio
    async def test_last_24h(self, db, acme, vendors):
        """Counts only recent runs and lists in-flight ones."""
        now = T0 + timedelta(hours=1)
        await add_run(db, acme, T0, duration_ms=1000)
        await add_run(db, acme, T0 + timedelta(minutes=1), status="Failed", duration_ms=3000)
        await add_run(db, acme, T0 - timedelta(days=2))
        await add_run(db, acme, T0 + timedelta(minutes=2), status="Running")

        metrics = await ObservabilityQuery(db).overview(now=now)

        assert metrics["last24h"] == {
            "total": 3,
            "success": 1,
            "failed": 1,
            "avg_duration_ms": 2000,
        }
        assert len(metrics["in_progress"]) == 1
        assert metrics["in_progress"][0]["vendor"] == "acme"
        assert metrics["in_progress"][0]["status"] == "Running"
