"""
Franke supplier adapter.

Franke posts flat JSON events. There is no typed handler table: every
event is mapped to a generic ``FrankeEvent`` record carrying the original
event as payload.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..domain.entities import SupplierConfig, SupplierMode, TelemetryRecord
from .base import (
    InboundRequest,
    VerificationResult,
    abuse_protection_preflight,
    dispatch_event,
    optional_str,
    parse_timestamp,
    synthesize_event_id,
)

logger = logging.getLogger(__name__)


class FrankeAdapter:
    name = "franke"
    mode = SupplierMode.WEBHOOK
    generic_type = "FrankeEvent"

    def __init__(self, config: SupplierConfig, allowed_webhook_rate: int = 1000):
        self.config = config
        self.name = config.name
        self._allowed_webhook_rate = allowed_webhook_rate

    def verify(self, request: InboundRequest) -> VerificationResult:
        if request.method == "OPTIONS":
            return abuse_protection_preflight(request, self._allowed_webhook_rate)
        return VerificationResult.accepted()

    def handle_event(self, event: Dict[str, Any]) -> Optional[TelemetryRecord]:
        return dispatch_event(self.name, {}, event, self._map_event, require_type=False)

    def _map_event(self, event: Dict[str, Any]) -> TelemetryRecord:
        device_id = event.get("device_id", event.get("deviceId"))
        occurred_at = parse_timestamp(event.get("timestamp"))
        return TelemetryRecord(
            supplier=self.name,
            event_id=optional_str(event.get("id")) or synthesize_event_id(self.name, event),
            type=self.generic_type,
            device_id=optional_str(device_id),
            occurred_at=occurred_at or datetime.now(timezone.utc),
            payload=event,
        )
