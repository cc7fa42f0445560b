"""
WMF supplier adapter.

WMF pushes machine telemetry through Azure Event Grid. Besides the Event
Grid subscription validation, WMF endpoints answer the CloudEvents abuse
protection preflight.
"""
import logging
from typing import Any, Dict, Optional

from ..domain.entities import SupplierConfig, SupplierMode, TelemetryRecord
from . import event_grid
from .base import (
    InboundRequest,
    VerificationResult,
    abuse_protection_preflight,
    dispatch_event,
)

logger = logging.getLogger(__name__)


class WMFAdapter:
    """Maps WMF Event Grid events onto telemetry records."""

    name = "wmf"
    mode = SupplierMode.WEBHOOK
    generic_type = "WMFEvent"

    def __init__(self, config: SupplierConfig, allowed_webhook_rate: int = 1000):
        self.config = config
        self.name = config.name
        self._allowed_webhook_rate = allowed_webhook_rate
        self._handlers = event_grid.build_handlers(self.name)

    @property
    def event_types(self):
        return sorted(self._handlers)

    def verify(self, request: InboundRequest) -> VerificationResult:
        if request.method == "OPTIONS":
            return abuse_protection_preflight(request, self._allowed_webhook_rate)

        handshake = event_grid.subscription_handshake(self.name, request)
        if handshake is not None:
            return handshake

        return VerificationResult.accepted()

    def handle_event(self, event: Dict[str, Any]) -> Optional[TelemetryRecord]:
        return dispatch_event(self.name, self._handlers, event, self._map_generic)

    def _map_generic(self, event: Dict[str, Any]) -> TelemetryRecord:
        return event_grid.generic_record(self.name, self.generic_type, event)
