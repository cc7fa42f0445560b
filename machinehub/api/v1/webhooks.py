"""
Webhook endpoints for push-based suppliers.

``/webhook/{supplier}/{tenant}`` is the canonical form; ``/webhook/{supplier}``
takes the tenant from the ``tenant`` query parameter or ``X-Tenant`` header.
"""
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from ..dependencies import get_ingestion_service
from ..schemas import WebhookResponse
from ...application.services import IngestionService
from ...config import get_settings
from ...suppliers.base import InboundRequest

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhooks"])


def _client_ip(request: Request) -> Optional[str]:
    if settings.ingestion.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Invalid JSON body on {request.url.path}")
        return None


async def to_inbound_request(request: Request) -> InboundRequest:
    return InboundRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        query=dict(request.query_params),
        body=await _read_body(request),
        client_ip=_client_ip(request),
    )


async def _handle(
    supplier: str,
    request: Request,
    service: IngestionService,
) -> Response:
    inbound = await to_inbound_request(request)
    result = await service.handle(supplier, inbound)

    if result.body is None:
        return Response(status_code=result.status_code, headers=dict(result.headers))
    return JSONResponse(
        status_code=result.status_code,
        content=result.body,
        headers=dict(result.headers),
    )


@router.api_route(
    "/{supplier}/{tenant}",
    methods=["POST", "OPTIONS"],
    response_model=WebhookResponse,
    summary="Receive supplier webhook for a tenant",
)
async def receive_tenant_webhook(
    supplier: str,
    tenant: str,
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
) -> Response:
    """
    Accept a webhook batch, an Event Grid validation or a CloudEvents
    abuse protection preflight.
    """
    return await _handle(supplier, request, service)


@router.api_route(
    "/{supplier}",
    methods=["POST", "OPTIONS"],
    response_model=WebhookResponse,
    summary="Receive supplier webhook",
)
async def receive_webhook(
    supplier: str,
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
) -> Response:
    return await _handle(supplier, request, service)
