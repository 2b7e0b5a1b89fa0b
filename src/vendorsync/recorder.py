"""
Run recorder: persists the run state machine and the per-vendor state view.

    Pending -> Running -> Success | Failed

Every invocation that passes input validation produces exactly one run row.
``vendor_sync_state`` is always the projection of the latest terminal run in
``(finished_at, id)`` order.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Database, RunStatus, Vendor, VendorSyncRun, VendorSyncState
from .db.base import new_id, utcnow
from .db.models import IN_FLIGHT_STATUSES
from .diff import ApplyResult
from .errors import AlreadyRunning, SyncError, truncate_detail

logger = logging.getLogger(__name__)


def _duration_ms(started: datetime, finished: datetime) -> int:
    return max(0, int((finished - started).total_seconds() * 1000))


def _order_key(at: Optional[datetime], run_id: Optional[str]):
    return (at, run_id or "")


class RunRecorder:
    """Creates, transitions and projects sync runs."""

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Transitions
    # =========================================================================

    async def open_run(self, vendor: Vendor, source: str, run_by: str) -> VendorSyncRun:
        """Insert a Pending run, or raise AlreadyRunning (no row is created)."""
        try:
            async with self.db.session() as session, session.begin():
                inflight = await session.execute(
                    select(VendorSyncRun.id)
                    .where(
                        VendorSyncRun.vendor_id == vendor.id,
                        VendorSyncRun.status.in_(IN_FLIGHT_STATUSES),
                    )
                    .limit(1)
                )
                current = inflight.scalar_one_or_none()
                if current is not None:
                    raise AlreadyRunning(f"{vendor.slug} already has run {current} in flight")

                run = VendorSyncRun(
                    id=new_id(),
                    vendor_id=vendor.id,
                    status=RunStatus.PENDING.value,
                    started_at=utcnow(),
                    source=source,
                    run_by=run_by,
                )
                session.add(run)
                await session.flush()
        except IntegrityError as e:
            # Lost the race against a concurrent open_run for the same vendor.
            raise AlreadyRunning(f"{vendor.slug} already has a run in flight") from e

        logger.info(f"Opened run {run.id} for {vendor.slug} ({source} by {run_by})")
        return run

    async def mark_running(self, run_id: str) -> None:
        async with self.db.session() as session, session.begin():
            await session.execute(
                update(VendorSyncRun)
                .where(
                    VendorSyncRun.id == run_id,
                    VendorSyncRun.status == RunStatus.PENDING.value,
                )
                .values(status=RunStatus.RUNNING.value)
            )
        logger.debug(f"Run {run_id} is running")

    async def complete(
        self,
        session: AsyncSession,
        run_id: str,
        vendor_slug: str,
        result: ApplyResult,
        dropped: int = 0,
        now: datetime | None = None,
    ) -> VendorSyncRun:
        """Mark the run Success inside the caller's apply transaction."""
        now = now or utcnow()
        run = await session.get(VendorSyncRun, run_id)
        run.status = RunStatus.SUCCESS.value
        run.finished_at = now
        run.duration_ms = _duration_ms(run.started_at, now)
        run.total_items = result.total
        run.dropped_count = dropped
        run.created_count = result.created
        run.updated_count = result.updated
        run.tombstoned_count = result.tombstoned
        run.unchanged_count = result.unchanged
        run.payload_hash = result.hash
        run.error = None
        run.error_detail = None

        await self._refresh_state(session, vendor_slug, run)
        return run

    async def fail(
        self,
        run_id: str,
        vendor_slug: str,
        error: SyncError,
        now: datetime | None = None,
    ) -> Optional[VendorSyncRun]:
        """Mark the run Failed with zero counts and refresh state.

        A failure of this write is logged, never raised.
        """
        now = now or utcnow()
        try:
            async with self.db.session() as session, session.begin():
                run = await session.get(VendorSyncRun, run_id)
                if run is None:
                    logger.warning(f"Cannot fail unknown run {run_id}")
                    return None
                run.status = RunStatus.FAILED.value
                run.finished_at = now
                run.duration_ms = _duration_ms(run.started_at, now)
                run.total_items = 0
                run.dropped_count = 0
                run.created_count = 0
                run.updated_count = 0
                run.tombstoned_count = 0
                run.unchanged_count = 0
                run.payload_hash = None
                run.error = error.kind
                run.error_detail = truncate_detail(error.detail)
                await self._refresh_state(session, vendor_slug, run)
        except SQLAlchemyError:
            logger.exception(f"Could not record failure of run {run_id} ({error.kind})")
            return None

        logger.warning(f"Run {run_id} for {vendor_slug} failed: {error.kind}")
        return run

    # =========================================================================
    # State projection
    # =========================================================================

    async def _refresh_state(self, session: AsyncSession, vendor_slug: str, run: VendorSyncRun) -> None:
        state = await session.get(VendorSyncState, vendor_slug)
        if state is not None and state.last_run_at is not None:
            if _order_key(state.last_run_at, state.last_run_id) > _order_key(run.finished_at, run.id):
                logger.debug(f"State for {vendor_slug} already newer than run {run.id}")
                return

        if state is None:
            state = VendorSyncState(vendor=vendor_slug)
            session.add(state)

        state.last_run_id = run.id
        state.last_run_at = run.finished_at
        state.last_status = run.status
        state.last_error = run.error
        state.last_source = run.source
        state.last_run_by = run.run_by
        # Totals, hash and duration describe the last Success only.
        if run.status == RunStatus.SUCCESS.value:
            state.total_items = run.total_items
            state.last_duration_ms = run.duration_ms
            state.last_hash = run.payload_hash
        state.updated_at = utcnow()

    # =========================================================================
    # Reads
    # =========================================================================

    async def last_success_hash(self, session: AsyncSession, vendor_id: str) -> Optional[str]:
        """Payload hash of the latest Success run, used for no-op detection."""
        result = await session.execute(
            select(VendorSyncRun.payload_hash)
            .where(
                VendorSyncRun.vendor_id == vendor_id,
                VendorSyncRun.status == RunStatus.SUCCESS.value,
            )
            .order_by(VendorSyncRun.finished_at.desc(), VendorSyncRun.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_run(self, run_id: str) -> Optional[VendorSyncRun]:
        async with self.db.session() as session:
            return await session.get(VendorSyncRun, run_id)

    async def get_state(self, vendor_slug: str) -> Optional[VendorSyncState]:
        async with self.db.session() as session:
            return await session.get(VendorSyncState, vendor_slug)

    async def list_states(self) -> Dict[str, VendorSyncState]:
        async with self.db.session() as session:
            result = await session.execute(select(VendorSyncState))
            return {state.vendor: state for state in result.scalars().all()}

    async def runs_for(self, vendor_id: str) -> List[VendorSyncRun]:
        async with self.db.session() as session:
            result = await session.execute(
                select(VendorSyncRun)
                .where(VendorSyncRun.vendor_id == vendor_id)
                .order_by(VendorSyncRun.started_at, VendorSyncRun.id)
            )
            return list(result.scalars().all())


def serialize_run(run: VendorSyncRun, vendor_slug: Optional[str] = None) -> Dict[str, object]:
    return {
        "id": run.id,
        "vendor": vendor_slug,
        "status": run.status,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "duration_ms": run.duration_ms,
        "source": run.source,
        "run_by": run.run_by,
        "total_items": run.total_items,
        "dropped_count": run.dropped_count,
        "created_count": run.created_count,
        "updated_count": run.updated_count,
        "tombstoned_count": run.tombstoned_count,
        "unchanged_count": run.unchanged_count,
        "payload_hash": run.payload_hash,
        "error": run.error,
        "error_detail": run.error_detail,
    }


__all__ = ["RunRecorder", "serialize_run"]
