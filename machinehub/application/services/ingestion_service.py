"""
Webhook ingestion service.

Drives one inbound webhook request through
``received -> verified -> parsed -> dispatched -> responded``:
resolve the supplier, run the guard chain and the adapter's verification,
map every event, store the records as pending and enqueue one delivery
task per record.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ...domain.entities import DeliveryTask, SupplierMode, TelemetryRecord
from ...domain.exceptions import SupplierModeException
from ...infrastructure.database.repositories import TelemetryRepository
from ...infrastructure.messaging.delivery_queue import DeliveryQueue
from ...suppliers.base import InboundRequest, SupplierAdapter, is_subscription_validation
from ...suppliers.registry import SupplierRegistry
from .tenant_resolver import TenantResolver
from .verification import VerificationChain

logger = logging.getLogger(__name__)


class IngestionState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    PARSED = "parsed"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"


@dataclass
class IngestionResponse:
    """HTTP answer for the webhook caller."""
    status_code: int
    body: Optional[Dict[str, Any]] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    state: IngestionState = IngestionState.RESPONDED


def extract_events(body: Any) -> List[Dict[str, Any]]:
    """
    Normalize a webhook body into a list of event objects.

    A single object is one event; a list keeps its object items.
    Subscription validation events are dropped.
    """
    if isinstance(body, dict):
        candidates = [body] if body else []
    elif isinstance(body, list):
        candidates = body
    else:
        return []

    events = []
    for item in candidates:
        if is_subscription_validation(item):
            logger.debug("Dropping subscription validation event from batch")
            continue
        events.append(item)
    return events


class IngestionService:
    """
    Application service for inbound webhooks.

    Collaborators are injected; the service holds no per-request state.
    """

    def __init__(
        self,
        registry: SupplierRegistry,
        verification: VerificationChain,
        repository: TelemetryRepository,
        queue: DeliveryQueue,
        tenant_resolver: Optional[TenantResolver] = None,
    ):
        self._registry = registry
        self._verification = verification
        self._repository = repository
        self._queue = queue
        self._tenant_resolver = tenant_resolver or TenantResolver()

    async def handle(self, supplier: str, request: InboundRequest) -> IngestionResponse:
        """
        Process one webhook request.

        Raises:
            UnknownSupplierException: If the supplier is not registered.
            SupplierModeException: If the supplier is not webhook based.
        """
        adapter = self._registry.resolve(supplier)
        if adapter.mode != SupplierMode.WEBHOOK:
            raise SupplierModeException(adapter.name, adapter.mode.value,
                                        f"{adapter.config.label} does not support webhooks")

        tenant = self._tenant_resolver.resolve(request)
        self._trace(adapter, IngestionState.RECEIVED, request.method, tenant)

        stages = VerificationChain.PREFLIGHT_STAGES if request.method == "OPTIONS" else None
        guard = await self._verification.check(adapter.config, request, tenant, stages=stages)
        if not guard.is_accepted:
            return IngestionResponse(guard.status_code, guard.body)

        verification = adapter.verify(request)
        if verification.is_handshake:
            logger.info(f"[{adapter.name}] Handshake answered, no events processed")
            return IngestionResponse(
                verification.status_code,
                verification.body,
                verification.headers,
            )
        if verification.is_rejected:
            logger.warning(f"[{adapter.name}] Verification failed: {verification.reason}")
            return IngestionResponse(verification.status_code, verification.body)

        if request.method != "POST":
            return IngestionResponse(405, {"error": "Method not allowed"}, {"Allow": "POST"})

        self._trace(adapter, IngestionState.VERIFIED, request.method, tenant)

        if tenant is None:
            logger.warning(f"[{adapter.name}] Unable to determine tenant for {request.path}")
            return IngestionResponse(400, {
                "error": "Tenant not found",
                "message": "Unable to determine tenant from request",
            })

        if not isinstance(request.body, (dict, list)):
            return IngestionResponse(400, {"error": "Invalid payload"})

        events = extract_events(request.body)
        self._trace(adapter, IngestionState.PARSED, request.method, tenant)

        if not events:
            return IngestionResponse(200, {
                "message": "No events to process",
                "supplier": adapter.name,
                "tenant": tenant,
                "processed_count": 0,
                "total_events": 0,
            })

        records, errors = self._map_events(adapter, events)

        stored: List[TelemetryRecord] = []
        for record in records:
            stored.append(await self._repository.upsert_pending(record))
        await self._repository.commit()

        if stored:
            await self._queue.enqueue_many(
                DeliveryTask(supplier=adapter.name, tenant=tenant, event_id=record.event_id)
                for record in stored
            )
        self._trace(adapter, IngestionState.DISPATCHED, request.method, tenant)

        logger.info(
            f"[{adapter.name}] Webhook for tenant {tenant}: "
            f"{len(stored)}/{len(events)} events processed"
        )

        body: Dict[str, Any] = {
            "message": f"{adapter.config.label} webhook processed",
            "supplier": adapter.name,
            "tenant": tenant,
            "processed_count": len(stored),
            "total_events": len(events),
        }
        if errors:
            body["errors"] = errors
        return IngestionResponse(200, body)

    def _map_events(self, adapter: SupplierAdapter, events: List[Any]):
        records: List[TelemetryRecord] = []
        errors: List[Dict[str, Any]] = []

        for index, event in enumerate(events):
            event_id = event.get("id") if isinstance(event, dict) else None
            try:
                record = adapter.handle_event(event)
            except Exception as e:
                logger.error(
                    f"[{adapter.name}] Mapping event {index} ({event_id}) raised: {e}",
                    exc_info=True,
                )
                errors.append({"index": index, "event_id": event_id, "error": str(e)})
                continue

            if record is None:
                errors.append({
                    "index": index,
                    "event_id": event_id,
                    "error": "Event could not be mapped",
                })
                continue
            records.append(record)

        return records, errors

    def _trace(self, adapter: SupplierAdapter, state: IngestionState, method: str, tenant) -> None:
        logger.debug(f"[{adapter.name}] {method} webhook ({tenant or '-'}) {state.value}")
