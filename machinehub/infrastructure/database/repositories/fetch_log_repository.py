"""
Repository for supplier fetch watermarks.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.telemetry_model import SupplierFetchLogModel
from ....domain.entities.telemetry import FetchWatermark

logger = logging.getLogger(__name__)


class FetchLogRepository:
    """Reads and advances ``(supplier, resource)`` watermarks."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def get_watermark(self, supplier: str, resource: str) -> Optional[FetchWatermark]:
        stmt = select(SupplierFetchLogModel).where(
            SupplierFetchLogModel.supplier == supplier.lower(),
            SupplierFetchLogModel.resource == resource,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def list_watermarks(self, supplier: Optional[str] = None) -> List[FetchWatermark]:
        stmt = select(SupplierFetchLogModel).order_by(
            SupplierFetchLogModel.supplier, SupplierFetchLogModel.resource
        )
        if supplier:
            stmt = stmt.where(SupplierFetchLogModel.supplier == supplier.lower())
        result = await self._session.execute(stmt)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def advance(
        self,
        supplier: str,
        resource: str,
        fetched_until: datetime,
        item_count: int = 0,
    ) -> FetchWatermark:
        """
        Move the watermark to ``fetched_until``.

        Creates the watermark on first use. An older timestamp never
        replaces a newer one.
        """
        now = datetime.now(timezone.utc)
        stmt = pg_insert(SupplierFetchLogModel).values(
            id=uuid4(),
            supplier=supplier.lower(),
            resource=resource,
            last_fetched_at=fetched_until,
            last_item_count=item_count,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["supplier", "resource"],
            set_={
                "last_fetched_at": func.greatest(
                    SupplierFetchLogModel.last_fetched_at,
                    stmt.excluded.last_fetched_at,
                ),
                "last_item_count": stmt.excluded.last_item_count,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(SupplierFetchLogModel)

        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        model = result.scalar_one()
        logger.debug(f"Watermark {supplier}/{resource} -> {model.last_fetched_at}")
        return self._model_to_entity(model)

    def _model_to_entity(self, model: SupplierFetchLogModel) -> FetchWatermark:
        return FetchWatermark(
            supplier=model.supplier,
            resource=model.resource,
            last_fetched_at=model.last_fetched_at,
            last_item_count=model.last_item_count or 0,
            updated_at=model.updated_at,
        )
