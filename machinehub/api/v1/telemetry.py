"""
Telemetry read endpoints for operators.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_fetch_log_repository, get_telemetry_repository
from ..schemas import (
    TelemetryRecordResponse,
    TelemetryStatsResponse,
    TenantDeliveryResponse,
    WatermarkResponse,
)
from ...infrastructure.database.repositories import FetchLogRepository, TelemetryRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telemetry", tags=["Telemetry"])


@router.get(
    "/stats",
    response_model=TelemetryStatsResponse,
    summary="Count records by delivery status",
)
async def get_stats(
    supplier: Optional[str] = Query(None, description="Restrict to one supplier"),
    repository: TelemetryRepository = Depends(get_telemetry_repository),
) -> TelemetryStatsResponse:
    counts = await repository.count_by_status(supplier)
    return TelemetryStatsResponse(
        supplier=supplier.lower() if supplier else None,
        counts=counts,
        total=sum(counts.values()),
    )


@router.get(
    "/watermarks",
    response_model=List[WatermarkResponse],
    summary="Fetch watermarks of API-polled suppliers",
)
async def list_watermarks(
    supplier: Optional[str] = Query(None),
    repository: FetchLogRepository = Depends(get_fetch_log_repository),
) -> List[WatermarkResponse]:
    watermarks = await repository.list_watermarks(supplier)
    return [
        WatermarkResponse(
            supplier=w.supplier,
            resource=w.resource,
            last_fetched_at=w.last_fetched_at,
            last_item_count=w.last_item_count,
        )
        for w in watermarks
    ]


@router.get(
    "/{supplier}/{event_id}",
    response_model=TelemetryRecordResponse,
    summary="Get a telemetry record and its deliveries",
)
async def get_record(
    supplier: str,
    event_id: str,
    repository: TelemetryRepository = Depends(get_telemetry_repository),
) -> TelemetryRecordResponse:
    record = await repository.get(supplier, event_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No record {event_id} for supplier {supplier}",
        )

    deliveries = await repository.list_deliveries(supplier, event_id)
    return TelemetryRecordResponse(
        supplier=record.supplier,
        event_id=record.event_id,
        type=record.type,
        device_id=record.device_id,
        occurred_at=record.occurred_at,
        status=record.status.value,
        forwarded_at=record.forwarded_at,
        attempts=record.attempts,
        last_error=record.last_error,
        payload=record.payload,
        deliveries=[
            TenantDeliveryResponse(
                tenant=d.tenant,
                status=d.status.value,
                attempts=d.attempts,
                last_error=d.last_error,
                forwarded_at=d.forwarded_at,
            )
            for d in deliveries
        ],
    )
