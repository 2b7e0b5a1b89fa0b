"""
VendorSync - vendor catalog sync engine.

Reconciles external vendor catalogs (HTTP APIs or scraped JSON snapshots)
with the normalized product database, records every run, and serves
observability queries and operator alerts.

Usage:
    from vendorsync import build_service

    service = build_service()
    await service.run_one("moscot", source="manual", run_by="ops@example.com")
    await service.query_observability({"vendor": "moscot", "limit": 20})
"""

__version__ = "0.1.0"

from .adapters import AdapterRegistry, NormalizedItem, default_adapter_registry
from .config import SyncConfig, get_config
from .db import Database
from .engine import RunOutcome, SyncEngine
from .errors import SyncError
from .service import SyncService, build_service

__all__ = [
    "__version__",
    # Engine
    "SyncEngine",
    "RunOutcome",
    "SyncService",
    "build_service",
    # Adapters
    "AdapterRegistry",
    "NormalizedItem",
    "default_adapter_registry",
    # Config
    "SyncConfig",
    "get_config",
    "Database",
    "SyncError",
]
