"""
Supplier API endpoints.
"""
from fastapi import APIRouter, Depends

from ..dependencies import get_supplier_registry
from ..schemas import SupplierListResponse, SupplierResponse
from ...domain.entities import SupplierMode
from ...suppliers import SupplierRegistry

router = APIRouter(prefix="/suppliers", tags=["Suppliers"])


@router.get(
    "",
    response_model=SupplierListResponse,
    summary="List registered suppliers",
)
async def list_suppliers(
    registry: SupplierRegistry = Depends(get_supplier_registry),
) -> SupplierListResponse:
    suppliers = [SupplierResponse(**adapter.config.to_dict()) for adapter in registry]
    return SupplierListResponse(
        suppliers=suppliers,
        total=len(suppliers),
        webhook_count=len(registry.list_by_mode(SupplierMode.WEBHOOK)),
        api_poll_count=len(registry.list_by_mode(SupplierMode.API_POLL)),
    )
