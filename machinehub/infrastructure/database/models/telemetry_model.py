"""
SQLAlchemy models for processed telemetry, per-tenant deliveries and
supplier fetch watermarks.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ....domain.entities.telemetry import DeliveryStatus
from .base import Base, TimestampMixin, UUIDMixin

# Named "status"; the naming convention expands it to ck_<table>_status
STATUS_CHECK = "status IN ({})".format(", ".join(f"'{s.value}'" for s in DeliveryStatus))


class ProcessedTelemetryModel(UUIDMixin, TimestampMixin, Base):
    """
    One normalized vendor event.

    ``status`` holds the aggregate delivery state; per-tenant progress
    lives in ``telemetry_deliveries``.
    """
    __tablename__ = "processed_telemetry"

    supplier: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Normalized fields
    type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    occurred_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # Delivery state
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    forwarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("supplier", "event_id", name="uq_processed_telemetry_supplier_event"),
        CheckConstraint(STATUS_CHECK, name="status"),
        Index("idx_processed_telemetry_supplier_status", "supplier", "status"),
        Index("idx_processed_telemetry_occurred_at", "occurred_at"),
    )


class TelemetryDeliveryModel(UUIDMixin, TimestampMixin, Base):
    """Delivery of one processed event to one tenant."""
    __tablename__ = "telemetry_deliveries"

    supplier: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    tenant: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    forwarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "supplier", "event_id", "tenant",
            name="uq_telemetry_deliveries_supplier_event_tenant",
        ),
        CheckConstraint(STATUS_CHECK, name="status"),
        Index("idx_telemetry_deliveries_status", "status"),
    )


class SupplierFetchLogModel(UUIDMixin, TimestampMixin, Base):
    """Fetch watermark per supplier and API resource."""
    __tablename__ = "supplier_fetch_logs"

    supplier: Mapped[str] = mapped_column(String(50), nullable=False)
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    last_fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("supplier", "resource", name="uq_supplier_fetch_logs_supplier_resource"),
    )
