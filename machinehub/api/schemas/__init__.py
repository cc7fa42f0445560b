"""
API schemas for MachineHub.
"""
from .webhook_schemas import EventError, WebhookResponse
from .telemetry_schemas import (
    RateLimitResponse,
    SupplierResponse,
    SupplierListResponse,
    TenantDeliveryResponse,
    TelemetryRecordResponse,
    TelemetryStatsResponse,
    WatermarkResponse,
)

__all__ = [
    "EventError",
    "WebhookResponse",
    "RateLimitResponse",
    "SupplierResponse",
    "SupplierListResponse",
    "TenantDeliveryResponse",
    "TelemetryRecordResponse",
    "TelemetryStatsResponse",
    "WatermarkResponse",
]
