"""
Error kinds for the vendor sync engine.

Every failure carries a stable ``kind`` identifier (e.g. ``fetch_failed/scraper``)
and a human ``detail``. Callers see them as ``{ok: False, error, detail}``
envelopes; failed runs persist the kind and a capped detail.
"""

from __future__ import annotations

from typing import Any, Dict

MAX_DETAIL_BYTES = 2048


def truncate_detail(detail: str, limit: int = MAX_DETAIL_BYTES) -> str:
    """Cap ``detail`` to ``limit`` UTF-8 bytes without splitting a character."""
    raw = detail.encode("utf-8")
    if len(raw) <= limit:
        return detail
    return raw[:limit].decode("utf-8", errors="ignore")


class SyncError(Exception):
    """Base class for classified sync errors."""

    kind: str = "server_error"

    def __init__(self, detail: str = "", *, kind: str | None = None):
        if kind is not None:
            self.kind = kind
        self.detail = detail or self.kind
        super().__init__(f"{self.kind}: {self.detail}")

    def to_envelope(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.kind, "detail": self.detail}


# ── input / config ──


class InvalidVendor(SyncError):
    kind = "invalid_vendor"


class VendorNotFound(SyncError):
    kind = "vendor_not_found"


class InvalidPayload(SyncError):
    kind = "invalid_payload"


class MissingCredentials(SyncError):
    kind = "missing_credentials"


class SlugConflict(SyncError):
    kind = "slug_conflict"


class InvalidRequest(SyncError):
    kind = "invalid_request"


# ── fetcher ──


class FetchError(SyncError):
    """Raised by the fetcher. ``reason`` is one of http, parse, scraper, timeout."""

    def __init__(self, reason: str, detail: str = "", *, status: int | None = None):
        self.reason = reason
        self.status = status
        super().__init__(detail, kind=f"fetch_failed/{reason}")


# ── normalization ──


class NormalizationError(SyncError):
    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(detail, kind=f"normalization_failed/{reason}")


class AdapterRegistrationError(RuntimeError):
    """A slug was registered twice with different adapters (startup error)."""


# ── apply ──


class ApplyError(SyncError):
    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(detail, kind=f"apply_failed/{reason}")


# ── concurrency ──


class AlreadyRunning(SyncError):
    kind = "already_running"


class Cancelled(SyncError):
    kind = "cancelled"


class ServerError(SyncError):
    kind = "server_error"


__all__ = [
    "MAX_DETAIL_BYTES",
    "truncate_detail",
    "SyncError",
    "InvalidVendor",
    "VendorNotFound",
    "InvalidPayload",
    "MissingCredentials",
    "SlugConflict",
    "InvalidRequest",
    "FetchError",
    "NormalizationError",
    "AdapterRegistrationError",
    "ApplyError",
    "AlreadyRunning",
    "Cancelled",
    "ServerError",
]
