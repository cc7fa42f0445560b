"""
FastAPI dependencies for the MachineHub API.

Long-lived collaborators (registry, guard chain, delivery queue) are built
once in ``create_app`` and kept on ``app.state``; repositories and services
are created per request.
"""
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..application.services import IngestionService, TenantResolver, VerificationChain
from ..infrastructure.database.connection import get_db
from ..infrastructure.database.repositories import FetchLogRepository, TelemetryRepository
from ..infrastructure.messaging import DeliveryQueue
from ..suppliers import SupplierRegistry


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    async for session in get_db():
        yield session


def get_supplier_registry(request: Request) -> SupplierRegistry:
    return request.app.state.registry


def get_verification_chain(request: Request) -> VerificationChain:
    return request.app.state.verification


def get_delivery_queue(request: Request) -> DeliveryQueue:
    return request.app.state.delivery_queue


def get_tenant_resolver(request: Request) -> TenantResolver:
    return request.app.state.tenant_resolver


async def get_telemetry_repository(
    session: AsyncSession = Depends(get_db_session),
) -> TelemetryRepository:
    """Get telemetry repository instance."""
    return TelemetryRepository(session)


async def get_fetch_log_repository(
    session: AsyncSession = Depends(get_db_session),
) -> FetchLogRepository:
    """Get fetch log repository instance."""
    return FetchLogRepository(session)


async def get_ingestion_service(
    registry: SupplierRegistry = Depends(get_supplier_registry),
    verification: VerificationChain = Depends(get_verification_chain),
    repository: TelemetryRepository = Depends(get_telemetry_repository),
    queue: DeliveryQueue = Depends(get_delivery_queue),
    tenant_resolver: TenantResolver = Depends(get_tenant_resolver),
) -> IngestionService:
    """Get ingestion service instance."""
    return IngestionService(
        registry=registry,
        verification=verification,
        repository=repository,
        queue=queue,
        tenant_resolver=tenant_resolver,
    )
