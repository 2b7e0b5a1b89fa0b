"""
Sync engine: Fetch -> Normalize -> Diff/Apply -> Record.

Usage:
    engine = SyncEngine(db, adapters=default_adapter_registry(), config=get_config())
    outcome = await engine.run_one("moscot", source="manual", run_by="ops@example.com")
    outcomes = await engine.run_all(source="automated", run_by="scheduler")

Input validation failures (bad slug, unknown vendor, no adapter, no
integration, run already in flight) raise ``SyncError`` before any run row
exists. Every later failure is recorded on the run and returned as a Failed
``RunOutcome``; host cancellation is recorded as ``cancelled`` and re-raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .adapters import AdapterRegistry, NormalizationResult, normalize_payload
from .alerts import AlertIngress
from .config import SyncConfig, get_config
from .db import Database, RunSource, Vendor, VendorSyncRun
from .db.base import utcnow
from .diff import ApplyResult, CatalogApplier
from .errors import (
    ApplyError,
    Cancelled,
    InvalidPayload,
    InvalidVendor,
    MissingCredentials,
    ServerError,
    SyncError,
)
from .fetcher import Fetcher
from .hashing import payload_hash
from .recorder import RunRecorder
from .registry import VendorRegistry, normalize_slug

logger = logging.getLogger(__name__)


def error_reason(exc: BaseException) -> str:
    """``IntegrityError`` -> ``integrity_error``."""
    name = type(exc).__name__
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()


@dataclass
class RunOutcome:
    vendor: str
    run_id: str
    status: str
    ok: bool
    total_items: int = 0
    dropped: int = 0
    created: int = 0
    updated: int = 0
    tombstoned: int = 0
    unchanged: int = 0
    payload_hash: Optional[str] = None
    noop: bool = False
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def from_run(cls, slug: str, run: VendorSyncRun, noop: bool = False) -> "RunOutcome":
        return cls(
            vendor=slug,
            run_id=run.id,
            status=run.status,
            ok=run.error is None,
            total_items=run.total_items or 0,
            dropped=run.dropped_count or 0,
            created=run.created_count or 0,
            updated=run.updated_count or 0,
            tombstoned=run.tombstoned_count or 0,
            unchanged=run.unchanged_count or 0,
            payload_hash=run.payload_hash,
            noop=noop,
            duration_ms=run.duration_ms,
            error=run.error,
            detail=run.error_detail,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _check_source(source: str) -> str:
    try:
        return RunSource(str(source).strip().lower()).value
    except ValueError:
        raise InvalidPayload(f"unknown run source: {source!r}") from None


class SyncEngine:
    """Runs vendor syncs against the product DB.

    Args:
        db: Product database
        adapters: Explicit adapter registry
        config: Engine configuration (default: ``get_config()``)
        fetcher: Fetcher (default: subprocess scrapers in ``config.scraper_workdir``)
    """

    def __init__(
        self,
        db: Database,
        adapters: AdapterRegistry,
        config: SyncConfig | None = None,
        fetcher: Fetcher | None = None,
        applier: CatalogApplier | None = None,
        recorder: RunRecorder | None = None,
        alerts: AlertIngress | None = None,
        vendors: VendorRegistry | None = None,
    ):
        self.db = db
        self.adapters = adapters
        self.config = config or get_config()
        self.fetcher = fetcher or Fetcher(workdir=self.config.workdir())
        self.applier = applier or CatalogApplier()
        self.recorder = recorder or RunRecorder(db)
        self.alerts = alerts or AlertIngress(db)
        self.vendors = vendors or VendorRegistry(db)

    # =========================================================================
    # Runs
    # =========================================================================

    async def _resolve(self, slug: str):
        slug = normalize_slug(slug)
        vendor = await self.vendors.get_vendor(slug)
        adapter = self.adapters.get(slug)
        if adapter is None:
            raise InvalidVendor(f"no adapter registered for {slug}")
        if vendor.integration is None:
            raise MissingCredentials(f"vendor {slug} has no integration (draft)")
        return vendor, adapter

    async def run_one(
        self, slug: str, source: str = RunSource.MANUAL.value, run_by: str = "system"
    ) -> RunOutcome:
        """Run one vendor sync end to end."""
        source = _check_source(source)
        run_by = (run_by or "").strip() or "system"
        vendor, adapter = await self._resolve(slug)
        integration = vendor.integration

        run = await self.recorder.open_run(vendor, source, run_by)
        try:
            await self.recorder.mark_running(run.id)

            fetched = await self.fetcher.fetch(integration, self.config.timeout_for(vendor.slug))
            normalized = normalize_payload(adapter, fetched.raw)
            logger.debug(
                f"{vendor.slug}: fetched via {fetched.source}, "
                f"{len(normalized.items)} items ({normalized.dropped} dropped)"
            )

            completed, result = await self._apply(vendor, run.id, normalized)
        except asyncio.CancelledError:
            await self._fail(vendor.slug, run.id, Cancelled("run cancelled by host"))
            raise
        except SyncError as e:
            return await self._fail(vendor.slug, run.id, e)
        except Exception as e:
            logger.exception(f"Unexpected error in run {run.id} for {vendor.slug}")
            return await self._fail(vendor.slug, run.id, ServerError(f"{type(e).__name__}: {e}"))

        logger.info(
            f"Run {run.id} for {vendor.slug} succeeded: "
            f"{result.total} items, +{result.created} ~{result.updated} -{result.tombstoned}"
            f"{' (no-op)' if result.noop else ''}"
        )
        return RunOutcome.from_run(vendor.slug, completed, noop=result.noop)

    async def _apply(
        self, vendor: Vendor, run_id: str, normalized: NormalizationResult
    ) -> tuple[VendorSyncRun, ApplyResult]:
        """Apply, mark Success and refresh state in one transaction."""

        async def transaction():
            async with self.db.session() as session, session.begin():
                prior = await self.recorder.last_success_hash(session, vendor.id)
                result = await self.applier.apply(session, vendor.id, normalized.items, prior)
                run = await self.recorder.complete(
                    session, run_id, vendor.slug, result, dropped=normalized.dropped
                )
            return run, result

        try:
            return await asyncio.wait_for(transaction(), self.config.apply_timeout_sec)
        except asyncio.TimeoutError:
            raise ApplyError(
                "timeout", f"apply exceeded {self.config.apply_timeout_sec}s"
            ) from None
        except SQLAlchemyError as e:
            raise ApplyError(error_reason(e), str(e)) from e

    async def _fail(self, slug: str, run_id: str, error: SyncError) -> RunOutcome:
        run = await self.recorder.fail(run_id, slug, error)
        if self.config.alert_on_failure:
            try:
                await self.alerts.raise_alert(
                    "error",
                    f"{slug} sync failed: {error.kind}",
                    vendor=slug,
                    context={"run_id": run_id, "detail": error.detail[:512]},
                )
            except (SyncError, SQLAlchemyError) as e:
                logger.warning(f"Could not raise failure alert for {slug}: {e}")

        if run is None:
            return RunOutcome(
                vendor=slug,
                run_id=run_id,
                status="Failed",
                ok=False,
                error=error.kind,
                detail=error.detail,
            )
        return RunOutcome.from_run(slug, run)

    async def run_all(
        self, source: str = RunSource.AUTOMATED.value, run_by: str = "system"
    ) -> List[Dict[str, Any]]:
        """Run every configured vendor, at most ``max_parallel_runs`` at a time.

        Drafts are skipped. Each entry is either a run outcome or an error
        envelope for a vendor that could not start.
        """
        source = _check_source(source)
        vendors = [v for v in await self.vendors.list_vendors() if not v.is_draft]
        semaphore = asyncio.Semaphore(self.config.max_parallel_runs)

        async def guarded(slug: str) -> Dict[str, Any]:
            async with semaphore:
                try:
                    return (await self.run_one(slug, source=source, run_by=run_by)).to_dict()
                except SyncError as e:
                    logger.warning(f"Run for {slug} not started: {e.kind}")
                    return {"vendor": slug, **e.to_envelope()}

        logger.info(f"Running {len(vendors)} vendors (parallel={self.config.max_parallel_runs})")
        return list(await asyncio.gather(*(guarded(v.slug) for v in vendors)))

    # =========================================================================
    # Dry runs
    # =========================================================================

    async def preview(self, slug: str) -> Dict[str, Any]:
        """Fetch, normalize and diff without creating a run or writing."""
        vendor, adapter = await self._resolve(slug)
        fetched = await self.fetcher.fetch(vendor.integration, self.config.timeout_for(vendor.slug))
        normalized = normalize_payload(adapter, fetched.raw)

        async with self.db.session() as session:
            prior = await self.recorder.last_success_hash(session, vendor.id)
            patch = await self.applier.plan(session, vendor.id, normalized.items)

        digest = payload_hash(normalized.items)
        return {
            "vendor": vendor.slug,
            "source": fetched.source,
            "fetched_at": fetched.fetched_at.isoformat(),
            "total_items": len(normalized.items),
            "dropped": normalized.dropped,
            "hash": digest,
            "noop": prior is not None and prior == digest,
            **patch.counts(),
        }

    async def test_integration(self, slug: str, now: datetime | None = None) -> Dict[str, Any]:
        """Probe a vendor's integration (fetch + normalize) and record the result."""
        slug = normalize_slug(slug)
        vendor = await self.vendors.get_vendor(slug)
        if vendor.integration is None:
            raise MissingCredentials(f"vendor {slug} has no integration (draft)")

        checked_at = now or utcnow()
        meta: Dict[str, Any] = {}
        try:
            fetched = await self.fetcher.fetch(vendor.integration, self.config.timeout_for(slug))
            meta["source"] = fetched.source
            adapter = self.adapters.get(slug)
            if adapter is not None:
                normalized = normalize_payload(adapter, fetched.raw)
                meta.update(items=len(normalized.items), dropped=normalized.dropped)
            ok = True
        except SyncError as e:
            ok = False
            meta.update(error=e.kind, detail=e.detail)

        await self.vendors.record_test_result(slug, ok, checked_at)
        logger.info(f"Integration test for {slug}: {'ok' if ok else meta.get('error')}")
        return {
            "ok": ok,
            "vendor": slug,
            "type": vendor.integration.type,
            "checked_at": checked_at.isoformat(),
            "meta": meta,
        }

    async def test_all(self, now: datetime | None = None) -> List[Dict[str, Any]]:
        vendors = [v for v in await self.vendors.list_vendors() if not v.is_draft]
        semaphore = asyncio.Semaphore(self.config.max_parallel_runs)

        async def guarded(slug: str) -> Dict[str, Any]:
            async with semaphore:
                return await self.test_integration(slug, now=now)

        return list(await asyncio.gather(*(guarded(v.slug) for v in vendors)))


__all__ = ["RunOutcome", "SyncEngine", "error_reason"]
