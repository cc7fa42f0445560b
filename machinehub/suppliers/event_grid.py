"""
Azure Event Grid helpers shared by the Event Grid based suppliers.

Covers the subscription validation handshake and the typed machine
telemetry events (Dispensing, MachineEvent, ...) these vendors publish.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from ..domain.entities import TelemetryRecord
from .base import (
    EventHandler,
    InboundRequest,
    VerificationResult,
    dig,
    is_subscription_validation,
    optional_str,
    parse_timestamp,
    synthesize_event_id,
)

logger = logging.getLogger(__name__)


VALIDATION_HEADER = "aeg-event-type"
VALIDATION_HEADER_VALUE = "SubscriptionValidation"

# Event type -> path of the field holding the event time.
# None means the vendor sends no event time for that type.
TIMESTAMP_PATHS: Dict[str, Optional[Tuple[str, ...]]] = {
    "Dispensing": ("data", "TelemetryInformation", "Timestamp"),
    "MachineEvent": ("eventTime",),
    "Diagnostics": ("eventTime",),
    "ModemMessage": ("data", "TelemetryInformation", "Timestamp"),
    "Statistics": ("data", "TelemetryInformation", "Timestamp"),
    "MachineTwin": ("data", "Time"),
    "MachineModemTwin": None,
}


def first_event(body: Any) -> Optional[Dict[str, Any]]:
    if isinstance(body, list):
        return body[0] if body and isinstance(body[0], dict) else None
    if isinstance(body, dict):
        return body
    return None


def subscription_handshake(
    supplier: str,
    request: InboundRequest,
) -> Optional[VerificationResult]:
    """
    Detect an Event Grid subscription validation request.

    Returns None for ordinary event deliveries. Otherwise returns the
    handshake response echoing ``validationCode``, or a 400 rejection when
    the code is missing.
    """
    event = first_event(request.body)
    signaled_by_header = request.header(VALIDATION_HEADER) == VALIDATION_HEADER_VALUE

    if not signaled_by_header and not is_subscription_validation(event):
        return None

    validation_code = dig(event, "data", "validationCode")
    validation_url = dig(event, "data", "validationUrl")
    if validation_url:
        logger.info(f"[{supplier}] Validation URL offered: {validation_url}")

    if not validation_code:
        logger.warning(f"[{supplier}] Subscription validation without validationCode")
        return VerificationResult.rejected(400, "Missing validation code")

    logger.info(f"[{supplier}] Subscription validation handshake answered")
    return VerificationResult.handshake(body={"validationResponse": validation_code})


def build_handlers(
    supplier: str,
    timestamp_paths: Mapping[str, Optional[Tuple[str, ...]]] = TIMESTAMP_PATHS,
) -> Dict[str, EventHandler]:
    """Build the type -> handler table for typed machine events."""
    return {
        event_type: _typed_handler(supplier, event_type, path)
        for event_type, path in timestamp_paths.items()
    }


def _typed_handler(
    supplier: str,
    event_type: str,
    timestamp_path: Optional[Tuple[str, ...]],
) -> EventHandler:
    def handle(event: Dict[str, Any]) -> Optional[TelemetryRecord]:
        data = event.get("data")
        if not isinstance(data, dict):
            data = {}

        occurred_at = parse_timestamp(dig(event, *timestamp_path)) if timestamp_path else None

        return TelemetryRecord(
            supplier=supplier,
            event_id=optional_str(event.get("id")) or synthesize_event_id(supplier, event),
            type=event_type,
            device_id=optional_str(data.get("DeviceId")),
            occurred_at=occurred_at or datetime.now(timezone.utc),
            payload=data,
        )

    handle.__name__ = f"handle_{event_type}"
    return handle


def generic_record(
    supplier: str,
    generic_type: str,
    event: Dict[str, Any],
) -> TelemetryRecord:
    """Best-effort record for event types without a dedicated handler."""
    occurred_at = (
        parse_timestamp(event.get("eventTime"))
        or parse_timestamp(dig(event, "data", "Timestamp"))
        or datetime.now(timezone.utc)
    )
    return TelemetryRecord(
        supplier=supplier,
        event_id=optional_str(event.get("id")) or synthesize_event_id(supplier, event),
        type=generic_type,
        device_id=optional_str(dig(event, "data", "DeviceId")),
        occurred_at=occurred_at,
        payload=event,
    )
