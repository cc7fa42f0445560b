"""
Repository for processed telemetry and per-tenant deliveries.

Status changes are compare-and-set updates guarded by the allowed
transition graph, so concurrent workers can never move a record or a
delivery backwards.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.telemetry_model import ProcessedTelemetryModel, TelemetryDeliveryModel
from ....domain.entities.telemetry import (
    DeliveryStatus,
    TelemetryRecord,
    TenantDelivery,
)

logger = logging.getLogger(__name__)


class TelemetryRepository:
    """
    Repository for processed telemetry.

    Records are keyed by ``(supplier, event_id)``; deliveries by
    ``(supplier, event_id, tenant)``.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    # =========================================================================
    # Records
    # =========================================================================

    async def upsert_pending(self, record: TelemetryRecord) -> TelemetryRecord:
        """
        Insert a record as pending, or refresh its content if it exists.

        The status of an existing row is left untouched.
        """
        now = datetime.now(timezone.utc)
        stmt = pg_insert(ProcessedTelemetryModel).values(
            id=uuid4(),
            supplier=record.supplier,
            event_id=record.event_id,
            type=record.type,
            device_id=record.device_id,
            occurred_at=record.occurred_at,
            payload=record.payload,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["supplier", "event_id"],
            set_={
                "type": stmt.excluded.type,
                "device_id": stmt.excluded.device_id,
                "occurred_at": stmt.excluded.occurred_at,
                "payload": stmt.excluded.payload,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(ProcessedTelemetryModel)

        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        model = result.scalar_one()
        logger.debug(f"Upserted {record.supplier}/{record.event_id} (status={model.status})")
        return self._model_to_entity(model)

    async def get(self, supplier: str, event_id: str) -> Optional[TelemetryRecord]:
        stmt = select(ProcessedTelemetryModel).where(
            ProcessedTelemetryModel.supplier == supplier.lower(),
            ProcessedTelemetryModel.event_id == str(event_id),
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def list_pending(self, supplier: str, limit: int = 500) -> List[TelemetryRecord]:
        """Oldest pending records of a supplier."""
        stmt = (
            select(ProcessedTelemetryModel)
            .where(
                ProcessedTelemetryModel.supplier == supplier.lower(),
                ProcessedTelemetryModel.status == DeliveryStatus.PENDING.value,
            )
            .order_by(ProcessedTelemetryModel.occurred_at, ProcessedTelemetryModel.created_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def transition(
        self,
        supplier: str,
        event_id: str,
        target: DeliveryStatus,
        error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Move a record to ``target`` if its current status allows it.

        Returns:
            True if the row changed, False if the current status does not
            lead to ``target`` (or the record does not exist).
        """
        now = datetime.now(timezone.utc)
        values = {"status": target.value, "updated_at": now}
        if target == DeliveryStatus.FORWARDED:
            values["forwarded_at"] = now
        if target.is_failure:
            values["last_error"] = error
        if attempts is not None:
            values["attempts"] = func.greatest(ProcessedTelemetryModel.attempts, attempts)

        stmt = (
            update(ProcessedTelemetryModel)
            .where(
                ProcessedTelemetryModel.supplier == supplier.lower(),
                ProcessedTelemetryModel.event_id == str(event_id),
                ProcessedTelemetryModel.status.in_(
                    [s.value for s in DeliveryStatus.sources_of(target)]
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        changed = result.rowcount > 0
        if not changed:
            logger.debug(f"Record {supplier}/{event_id} not moved to {target.value}")
        return changed

    async def count_by_status(self, supplier: Optional[str] = None) -> Dict[str, int]:
        stmt = select(
            ProcessedTelemetryModel.status,
            func.count(ProcessedTelemetryModel.id),
        ).group_by(ProcessedTelemetryModel.status)
        if supplier:
            stmt = stmt.where(ProcessedTelemetryModel.supplier == supplier.lower())

        result = await self._session.execute(stmt)
        counts = {status.value: 0 for status in DeliveryStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    # =========================================================================
    # Tenant deliveries
    # =========================================================================

    async def claim_delivery(
        self,
        supplier: str,
        event_id: str,
        tenant: str,
    ) -> Optional[TenantDelivery]:
        """
        Start an attempt for one tenant.

        Creates the delivery row on first use, moves it to processing and
        counts the attempt. Returns None when the delivery has already
        reached a terminal status.
        """
        now = datetime.now(timezone.utc)
        supplier = supplier.lower()
        event_id = str(event_id)

        insert_stmt = pg_insert(TelemetryDeliveryModel).values(
            id=uuid4(),
            supplier=supplier,
            event_id=event_id,
            tenant=tenant,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["supplier", "event_id", "tenant"])
        await self._session.execute(insert_stmt)

        claim_stmt = (
            update(TelemetryDeliveryModel)
            .where(
                TelemetryDeliveryModel.supplier == supplier,
                TelemetryDeliveryModel.event_id == event_id,
                TelemetryDeliveryModel.tenant == tenant,
                TelemetryDeliveryModel.status.in_(
                    [s.value for s in DeliveryStatus.sources_of(DeliveryStatus.PROCESSING)]
                ),
            )
            .values(
                status=DeliveryStatus.PROCESSING.value,
                attempts=TelemetryDeliveryModel.attempts + 1,
                updated_at=now,
            )
            .returning(TelemetryDeliveryModel)
        )
        result = await self._session.execute(
            claim_stmt, execution_options={"populate_existing": True}
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None

        await self.transition(supplier, event_id, DeliveryStatus.PROCESSING)
        return self._delivery_to_entity(model)

    async def complete_delivery(
        self,
        supplier: str,
        event_id: str,
        tenant: str,
        target: DeliveryStatus,
        attempts: int,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record the result of an attempt for one tenant and fold it into
        the record status.

        Returns:
            False if another worker already moved the delivery elsewhere.
        """
        now = datetime.now(timezone.utc)
        supplier = supplier.lower()
        event_id = str(event_id)

        values = {"status": target.value, "updated_at": now}
        if target == DeliveryStatus.FORWARDED:
            values["forwarded_at"] = now
            values["last_error"] = None
        elif target.is_failure:
            values["last_error"] = error

        stmt = (
            update(TelemetryDeliveryModel)
            .where(
                TelemetryDeliveryModel.supplier == supplier,
                TelemetryDeliveryModel.event_id == event_id,
                TelemetryDeliveryModel.tenant == tenant,
                TelemetryDeliveryModel.status.in_(
                    [s.value for s in DeliveryStatus.sources_of(target)]
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            logger.info(
                f"Delivery {supplier}/{event_id} -> {tenant} not moved to "
                f"{target.value}; status changed concurrently"
            )
            return False

        await self.transition(supplier, event_id, target, error=error, attempts=attempts)
        return True

    async def get_delivery(
        self,
        supplier: str,
        event_id: str,
        tenant: str,
    ) -> Optional[TenantDelivery]:
        stmt = select(TelemetryDeliveryModel).where(
            TelemetryDeliveryModel.supplier == supplier.lower(),
            TelemetryDeliveryModel.event_id == str(event_id),
            TelemetryDeliveryModel.tenant == tenant,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._delivery_to_entity(model) if model else None

    async def list_deliveries(self, supplier: str, event_id: str) -> List[TenantDelivery]:
        stmt = (
            select(TelemetryDeliveryModel)
            .where(
                TelemetryDeliveryModel.supplier == supplier.lower(),
                TelemetryDeliveryModel.event_id == str(event_id),
            )
            .order_by(TelemetryDeliveryModel.tenant)
        )
        result = await self._session.execute(stmt)
        return [self._delivery_to_entity(m) for m in result.scalars().all()]

    # =========================================================================
    # Conversion
    # =========================================================================

    def _model_to_entity(self, model: ProcessedTelemetryModel) -> TelemetryRecord:
        return TelemetryRecord(
            id=model.id,
            supplier=model.supplier,
            event_id=model.event_id,
            type=model.type,
            device_id=model.device_id,
            occurred_at=model.occurred_at,
            payload=model.payload or {},
            status=DeliveryStatus(model.status),
            forwarded_at=model.forwarded_at,
            attempts=model.attempts or 0,
            last_error=model.last_error,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _delivery_to_entity(self, model: TelemetryDeliveryModel) -> TenantDelivery:
        return TenantDelivery(
            supplier=model.supplier,
            event_id=model.event_id,
            tenant=model.tenant,
            status=DeliveryStatus(model.status),
            attempts=model.attempts or 0,
            last_error=model.last_error,
            forwarded_at=model.forwarded_at,
            updated_at=model.updated_at,
        )
