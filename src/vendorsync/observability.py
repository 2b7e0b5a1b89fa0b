"""
Observability queries over sync runs and alert events.

Usage:
    query = ObservabilityQuery(db)
    page = await query.query(QueryParams(vendor="moscot", limit=20))
    while page.next_cursor:
        page = await query.query(QueryParams(vendor="moscot", cursor=page.next_cursor))

Runs (at = ``started_at``) and alerts (at = ``received_at``) are returned
intermixed, newest first, ordered by ``(at, id)`` so that paging survives
timestamp ties.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import and_, func, or_, select

from .db import AlertEvent, Database, RunStatus, Vendor, VendorSyncRun
from .db.base import utcnow
from .db.models import IN_FLIGHT_STATUSES, TERMINAL_STATUSES
from .errors import InvalidRequest, VendorNotFound
from .recorder import serialize_run

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
OVERVIEW_WINDOW = timedelta(hours=24)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QueryParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vendor: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    cursor: Optional[str] = None

    @field_validator("vendor", mode="before")
    @classmethod
    def _normalize_vendor(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value):
        return _aware(value) if value is not None else None


def parse_query_params(raw: Mapping[str, Any] | QueryParams) -> QueryParams:
    if isinstance(raw, QueryParams):
        return raw
    try:
        return QueryParams.model_validate(dict(raw or {}))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "params"
        raise InvalidRequest(f"{field}: {first.get('msg')}") from e


class ObservabilityEntry(BaseModel):
    kind: str  # run, alert
    id: str
    at: datetime
    vendor: Optional[str] = None
    summary: str
    detail: Optional[str] = None


class ObservabilityPage(BaseModel):
    entries: List[ObservabilityEntry] = Field(default_factory=list)
    next_cursor: Optional[str] = None


# =============================================================================
# Cursor
# =============================================================================


def encode_cursor(at: datetime, entry_id: str) -> str:
    payload = json.dumps({"at": _aware(at).isoformat(), "id": entry_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        at = _aware(datetime.fromisoformat(data["at"]))
        entry_id = data["id"]
        if not isinstance(entry_id, str):
            raise TypeError("cursor id must be a string")
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise InvalidRequest(f"malformed cursor: {cursor!r}") from e
    return at, entry_id


# =============================================================================
# Entry builders
# =============================================================================


def _run_entry(run: VendorSyncRun, slug: str) -> ObservabilityEntry:
    if run.status == RunStatus.SUCCESS.value:
        summary = (
            f"Success: {run.total_items or 0} items, +{run.created_count} "
            f"~{run.updated_count} -{run.tombstoned_count}"
        )
    elif run.status == RunStatus.FAILED.value:
        summary = f"Failed: {run.error}"
    else:
        summary = run.status
    return ObservabilityEntry(
        kind="run",
        id=run.id,
        at=run.started_at,
        vendor=slug,
        summary=summary,
        detail=run.error_detail,
    )


def _alert_entry(alert: AlertEvent) -> ObservabilityEntry:
    return ObservabilityEntry(
        kind="alert",
        id=alert.id,
        at=alert.received_at,
        vendor=alert.vendor,
        summary=f"[{alert.level}] {alert.message}",
        detail=json.dumps(alert.context, sort_keys=True) if alert.context else None,
    )


def _before(at_col, id_col, at: datetime, entry_id: str):
    return or_(at_col < at, and_(at_col == at, id_col < entry_id))


class ObservabilityQuery:
    """Read-only views over runs and alerts."""

    def __init__(self, db: Database):
        self.db = db

    async def query(self, params: Mapping[str, Any] | QueryParams) -> ObservabilityPage:
        params = parse_query_params(params)
        if params.start and params.end and params.start > params.end:
            raise InvalidRequest("start must not be after end")
        cursor = decode_cursor(params.cursor) if params.cursor else None
        fetch = params.limit + 1

        async with self.db.session() as session:
            runs_stmt = select(VendorSyncRun, Vendor.slug).join(
                Vendor, Vendor.id == VendorSyncRun.vendor_id
            )
            alerts_stmt = select(AlertEvent)

            if params.vendor:
                runs_stmt = runs_stmt.where(Vendor.slug == params.vendor)
                alerts_stmt = alerts_stmt.where(AlertEvent.vendor == params.vendor)
            if params.start:
                runs_stmt = runs_stmt.where(VendorSyncRun.started_at >= params.start)
                alerts_stmt = alerts_stmt.where(AlertEvent.received_at >= params.start)
            if params.end:
                runs_stmt = runs_stmt.where(VendorSyncRun.started_at < params.end)
                alerts_stmt = alerts_stmt.where(AlertEvent.received_at < params.end)
            if cursor:
                runs_stmt = runs_stmt.where(
                    _before(VendorSyncRun.started_at, VendorSyncRun.id, *cursor)
                )
                alerts_stmt = alerts_stmt.where(
                    _before(AlertEvent.received_at, AlertEvent.id, *cursor)
                )

            runs = await session.execute(
                runs_stmt.order_by(VendorSyncRun.started_at.desc(), VendorSyncRun.id.desc()).limit(
                    fetch
                )
            )
            alerts = await session.execute(
                alerts_stmt.order_by(AlertEvent.received_at.desc(), AlertEvent.id.desc()).limit(
                    fetch
                )
            )

            entries = [_run_entry(run, slug) for run, slug in runs.all()]
            entries += [_alert_entry(alert) for alert in alerts.scalars().all()]

        entries.sort(key=lambda e: (e.at, e.id), reverse=True)
        page = entries[: params.limit]
        next_cursor = None
        if len(entries) > params.limit:
            last = page[-1]
            next_cursor = encode_cursor(last.at, last.id)
        return ObservabilityPage(entries=page, next_cursor=next_cursor)

    async def list_runs(self, slug: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        """Paginated run history for one vendor, newest first."""
        if page < 1 or not 1 <= page_size <= 100:
            raise InvalidRequest("page must be >= 1 and page_size within 1..100")

        async with self.db.session() as session:
            vendor_id = (
                await session.execute(select(Vendor.id).where(Vendor.slug == slug))
            ).scalar_one_or_none()
            if vendor_id is None:
                raise VendorNotFound(f"vendor {slug} not found")

            total = (
                await session.execute(
                    select(func.count())
                    .select_from(VendorSyncRun)
                    .where(VendorSyncRun.vendor_id == vendor_id)
                )
            ).scalar_one()
            result = await session.execute(
                select(VendorSyncRun)
                .where(VendorSyncRun.vendor_id == vendor_id)
                .order_by(VendorSyncRun.started_at.desc(), VendorSyncRun.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [serialize_run(run, slug) for run in result.scalars().all()]

        return {
            "page": page,
            "page_size": page_size,
            "total_items": total,
            "has_more": page * page_size < total,
            "items": items,
        }

    async def overview(self, now: datetime | None = None) -> Dict[str, Any]:
        """Last-24h run metrics plus runs currently in flight."""
        now = _aware(now) if now else utcnow()
        since = now - OVERVIEW_WINDOW
        recent = VendorSyncRun.started_at >= since

        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(
                        func.count(),
                        func.count().filter(VendorSyncRun.status == RunStatus.SUCCESS.value),
                        func.count().filter(VendorSyncRun.status == RunStatus.FAILED.value),
                    )
                    .select_from(VendorSyncRun)
                    .where(recent)
                )
            ).one()
            avg = (
                await session.execute(
                    select(func.avg(VendorSyncRun.duration_ms)).where(
                        recent,
                        VendorSyncRun.status.in_(TERMINAL_STATUSES),
                        VendorSyncRun.duration_ms.is_not(None),
                    )
                )
            ).scalar_one_or_none()
            in_flight = await session.execute(
                select(VendorSyncRun, Vendor.slug)
                .join(Vendor, Vendor.id == VendorSyncRun.vendor_id)
                .where(VendorSyncRun.status.in_(IN_FLIGHT_STATUSES))
                .order_by(VendorSyncRun.started_at.asc())
            )
            in_progress = [
                {
                    "vendor": slug,
                    "run_id": run.id,
                    "status": run.status,
                    "started_at": run.started_at.isoformat(),
                }
                for run, slug in in_flight.all()
            ]

        total, success, failed = row
        return {
            "last24h": {
                "total": total,
                "success": success,
                "failed": failed,
                "avg_duration_ms": max(0, round(float(avg))) if avg is not None else 0,
            },
            "in_progress": in_progress,
        }


__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "ObservabilityEntry",
    "ObservabilityPage",
    "ObservabilityQuery",
    "QueryParams",
    "decode_cursor",
    "encode_cursor",
    "parse_query_params",
]
