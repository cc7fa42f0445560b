"""
Pydantic schemas for supplier and telemetry read endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RateLimitResponse(BaseModel):
    requests: int
    per_seconds: int


class SupplierResponse(BaseModel):
    """Registered supplier."""
    name: str
    label: str
    mode: str
    adapter: str
    enabled: bool
    tenants: List[str]
    subscription_verified: bool
    rate_limit: RateLimitResponse


class SupplierListResponse(BaseModel):
    suppliers: List[SupplierResponse]
    total: int
    webhook_count: int
    api_poll_count: int


class TenantDeliveryResponse(BaseModel):
    """Delivery of a record to one tenant."""
    model_config = ConfigDict(from_attributes=True)

    tenant: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    forwarded_at: Optional[datetime] = None


class TelemetryRecordResponse(BaseModel):
    """Stored telemetry record with its deliveries."""
    supplier: str
    event_id: str
    type: Optional[str] = None
    device_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    status: str
    forwarded_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    deliveries: List[TenantDeliveryResponse] = Field(default_factory=list)


class TelemetryStatsResponse(BaseModel):
    """Record counts by delivery status."""
    supplier: Optional[str] = None
    counts: Dict[str, int]
    total: int


class WatermarkResponse(BaseModel):
    supplier: str
    resource: str
    last_fetched_at: datetime
    last_item_count: int
