"""
Domain entities for MachineHub.
"""
from .telemetry import (
    DeliveryStatus,
    TelemetryRecord,
    TenantDelivery,
    FetchWindow,
    FetchWatermark,
    DeliveryTask,
)
from .delivery import (
    FailureKind,
    DeliveryOutcome,
)
from .supplier import (
    SupplierMode,
    RateLimitPolicy,
    TenantConfig,
    SupplierConfig,
)

__all__ = [
    "DeliveryStatus",
    "TelemetryRecord",
    "TenantDelivery",
    "FetchWindow",
    "FetchWatermark",
    "DeliveryTask",
    "FailureKind",
    "DeliveryOutcome",
    "SupplierMode",
    "RateLimitPolicy",
    "TenantConfig",
    "SupplierConfig",
]
