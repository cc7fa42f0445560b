"""
Schaerer supplier adapter.

Schaerer publishes the same Azure Event Grid machine event family as WMF.
Validation happens through the Event Grid handshake only.
"""
from typing import Any, Dict, Optional

from ..domain.entities import SupplierConfig, SupplierMode, TelemetryRecord
from . import event_grid
from .base import InboundRequest, VerificationResult, dispatch_event


class SchaererAdapter:
    name = "schaerer"
    mode = SupplierMode.WEBHOOK
    generic_type = "SchaererEvent"

    def __init__(self, config: SupplierConfig):
        self.config = config
        self.name = config.name
        self._handlers = event_grid.build_handlers(self.name)

    def verify(self, request: InboundRequest) -> VerificationResult:
        if request.method == "OPTIONS":
            return VerificationResult.rejected(405, "Method not allowed")

        handshake = event_grid.subscription_handshake(self.name, request)
        return handshake or VerificationResult.accepted()

    def handle_event(self, event: Dict[str, Any]) -> Optional[TelemetryRecord]:
        return dispatch_event(
            self.name,
            self._handlers,
            event,
            lambda e: event_grid.generic_record(self.name, self.generic_type, e),
        )
