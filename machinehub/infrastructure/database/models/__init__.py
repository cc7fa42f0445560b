"""
SQLAlchemy ORM models for MachineHub.
"""
from .base import Base, metadata
from .telemetry_model import (
    ProcessedTelemetryModel,
    TelemetryDeliveryModel,
    SupplierFetchLogModel,
)

__all__ = [
    # Base
    "Base",
    "metadata",
    # Models
    "ProcessedTelemetryModel",
    "TelemetryDeliveryModel",
    "SupplierFetchLogModel",
]
