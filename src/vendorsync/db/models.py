"""ORM models for the product DB: vendors, catalog, runs, state and alerts."""

from __future__ import annotations

import enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, new_id, utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


class IntegrationType(str, enum.Enum):
    API = "API"
    SCRAPER = "SCRAPER"


class AuthType(str, enum.Enum):
    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    CUSTOM_HEADER = "custom-header"


class RunStatus(str, enum.Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILED = "Failed"


class RunSource(str, enum.Enum):
    MANUAL = "manual"
    AUTOMATED = "automated"


class AlertLevel(str, enum.Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


IN_FLIGHT_STATUSES = (RunStatus.PENDING.value, RunStatus.RUNNING.value)
TERMINAL_STATUSES = (RunStatus.SUCCESS.value, RunStatus.FAILED.value)


class Vendor(Base):
    """A catalog vendor. Without an integration the vendor is a draft."""

    __tablename__ = "vendor"

    id = Column(String(36), primary_key=True, default=new_id)
    slug = Column(String(64), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    integration = relationship(
        "VendorIntegration",
        uselist=False,
        back_populates="vendor",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_draft(self) -> bool:
        return self.integration is None


class VendorIntegration(Base):
    """How a vendor's catalog is reached: an HTTP API or a scraper executable."""

    __tablename__ = "vendor_integration"

    vendor_id = Column(String(36), ForeignKey("vendor.id", ondelete="CASCADE"), primary_key=True)
    type = Column(String(16), nullable=False)

    scraper_path = Column(Text, nullable=True)
    api_base_url = Column(Text, nullable=True)
    api_auth_type = Column(String(32), nullable=True)
    api_key = Column(Text, nullable=True)

    last_test_at = Column(UTCDateTime(), nullable=True)
    last_test_ok = Column(Boolean, nullable=True)
    meta = Column(JSONType, nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    vendor = relationship("Vendor", back_populates="integration")


class VendorCatalogItem(Base):
    """Persisted projection of a normalized item, keyed by (vendor_id, sku).

    Absent items are tombstoned via ``deleted_at``; rows are never removed here.
    """

    __tablename__ = "vendor_catalog_item"

    id = Column(String(36), primary_key=True, default=new_id)
    vendor_id = Column(String(36), ForeignKey("vendor.id", ondelete="CASCADE"), nullable=False)
    sku = Column(String(255), nullable=False)

    name = Column(Text, nullable=False)
    category = Column(String(32), nullable=False)
    price = Column(BigInteger, nullable=True)  # minor units
    currency = Column(String(8), nullable=True)
    image_url = Column(Text, nullable=True)
    attributes = Column(JSONType, nullable=False, default=dict)

    field_hash = Column(String(64), nullable=False)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    deleted_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("vendor_id", "sku", name="uq_vendor_catalog_item_vendor_sku"),
        Index("ix_vendor_catalog_item_vendor_live", "vendor_id", "deleted_at"),
    )


class VendorSyncRun(Base):
    """Audit record of one sync invocation. Exactly one row per invocation."""

    __tablename__ = "vendor_sync_run"

    id = Column(String(36), primary_key=True, default=new_id)
    vendor_id = Column(String(36), ForeignKey("vendor.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(16), nullable=False, default=RunStatus.PENDING.value)

    started_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    finished_at = Column(UTCDateTime(), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    source = Column(String(16), nullable=False)
    run_by = Column(String(255), nullable=False)

    total_items = Column(Integer, nullable=True)
    dropped_count = Column(Integer, nullable=False, default=0)
    created_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    tombstoned_count = Column(Integer, nullable=False, default=0)
    unchanged_count = Column(Integer, nullable=False, default=0)

    payload_hash = Column(String(64), nullable=True)
    error = Column(String(255), nullable=True)
    error_detail = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_vendor_sync_run_vendor_started", "vendor_id", "started_at"),
        # At most one Pending/Running run per vendor.
        Index(
            "uq_vendor_sync_run_in_flight",
            "vendor_id",
            unique=True,
            postgresql_where=text("status IN ('Pending', 'Running')"),
            sqlite_where=text("status IN ('Pending', 'Running')"),
        ),
    )


class VendorSyncState(Base):
    """Latest terminal run summary per vendor slug."""

    __tablename__ = "vendor_sync_state"

    vendor = Column(String(64), primary_key=True)
    last_run_id = Column(String(36), nullable=True)
    last_run_at = Column(UTCDateTime(), nullable=True)
    last_status = Column(String(16), nullable=True)
    total_items = Column(Integer, nullable=True)
    last_error = Column(String(255), nullable=True)
    last_duration_ms = Column(Integer, nullable=True)
    last_hash = Column(String(64), nullable=True)
    last_source = Column(String(16), nullable=True)
    last_run_by = Column(String(255), nullable=True)

    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)


class AlertEvent(Base):
    """Append-only operator alert."""

    __tablename__ = "alert_event"

    id = Column(String(36), primary_key=True, default=new_id)
    vendor = Column(String(64), nullable=True)
    level = Column(String(8), nullable=False)
    message = Column(Text, nullable=False)
    received_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    context = Column(JSONType, nullable=False, default=dict)

    __table_args__ = (Index("ix_alert_event_vendor_received", "vendor", "received_at"),)
