"""Persistence layer (SQLAlchemy asyncio)."""

from .base import Base, Database, UTCDateTime, new_id, utcnow
from .models import (
    AlertEvent,
    AlertLevel,
    AuthType,
    IntegrationType,
    RunSource,
    RunStatus,
    Vendor,
    VendorCatalogItem,
    VendorIntegration,
    VendorSyncRun,
    VendorSyncState,
)

__all__ = [
    "Base",
    "Database",
    "UTCDateTime",
    "new_id",
    "utcnow",
    "AlertEvent",
    "AlertLevel",
    "AuthType",
    "IntegrationType",
    "RunSource",
    "RunStatus",
    "Vendor",
    "VendorCatalogItem",
    "VendorIntegration",
    "VendorSyncRun",
    "VendorSyncState",
]
