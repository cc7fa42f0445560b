"""
Supplier adapter contract and shared mapping helpers.

Every supplier ships one adapter implementing the capability set
``verify`` / ``handle_event`` and, for API-polled suppliers,
``fetch_since``. Adapters are plain classes composed from the helpers
below; they are looked up through a SupplierRegistry instance.
"""
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from ..domain.entities import SupplierConfig, SupplierMode, TelemetryRecord

logger = logging.getLogger(__name__)


EventHandler = Callable[[Dict[str, Any]], Optional[TelemetryRecord]]

SUBSCRIPTION_VALIDATION_EVENT = "Microsoft.EventGrid.SubscriptionValidationEvent"


@dataclass
class InboundRequest:
    """
    Framework-independent view of a webhook request.

    Header names are stored lower-cased.
    """
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    client_ip: Optional[str] = None

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)


class VerificationOutcome(str, Enum):
    """What the ingestion path should do after verification."""
    ACCEPTED = "accepted"
    HANDSHAKE = "handshake"
    REJECTED = "rejected"


@dataclass(frozen=True)
class VerificationResult:
    """Result of a guard stage or of ``SupplierAdapter.verify``."""
    outcome: VerificationOutcome
    status_code: int = 200
    body: Optional[Dict[str, Any]] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    reason: Optional[str] = None

    @classmethod
    def accepted(cls) -> "VerificationResult":
        return cls(outcome=VerificationOutcome.ACCEPTED)

    @classmethod
    def handshake(
        cls,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        status_code: int = 200,
    ) -> "VerificationResult":
        return cls(
            outcome=VerificationOutcome.HANDSHAKE,
            status_code=status_code,
            body=body,
            headers=dict(headers or {}),
        )

    @classmethod
    def rejected(cls, status_code: int, reason: str) -> "VerificationResult":
        return cls(
            outcome=VerificationOutcome.REJECTED,
            status_code=status_code,
            body={"error": reason},
            reason=reason,
        )

    @property
    def is_accepted(self) -> bool:
        return self.outcome == VerificationOutcome.ACCEPTED

    @property
    def is_handshake(self) -> bool:
        return self.outcome == VerificationOutcome.HANDSHAKE

    @property
    def is_rejected(self) -> bool:
        return self.outcome == VerificationOutcome.REJECTED


@runtime_checkable
class SupplierAdapter(Protocol):
    """Capabilities every supplier adapter provides."""

    name: str
    mode: SupplierMode
    config: SupplierConfig

    def verify(self, request: InboundRequest) -> VerificationResult:
        ...

    def handle_event(self, event: Dict[str, Any]) -> Optional[TelemetryRecord]:
        ...


@runtime_checkable
class PollingAdapter(SupplierAdapter, Protocol):
    """Adapter for suppliers whose telemetry is pulled from a vendor API."""

    resources: Tuple[str, ...]

    async def fetch_since(
        self,
        resource: str,
        start: datetime,
        end: datetime,
    ) -> List[TelemetryRecord]:
        ...


# =============================================================================
# Mapping helpers
# =============================================================================

def event_type_of(event: Dict[str, Any]) -> Optional[str]:
    """Vendor event type, read from ``eventType`` or ``event``."""
    for key in ("eventType", "event"):
        value = event.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def is_subscription_validation(event: Any) -> bool:
    return isinstance(event, dict) and event_type_of(event) == SUBSCRIPTION_VALIDATION_EVENT


def dig(mapping: Any, *path: str) -> Any:
    """Walk nested dictionaries, returning None on the first miss."""
    current = mapping
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


_FRACTION = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a vendor timestamp.

    Accepts ISO 8601 strings (``Z`` suffix and 7-digit Azure fractions
    included) and Unix epoch seconds. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda m: "." + m.group(1), text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def synthesize_event_id(supplier: str, event: Dict[str, Any]) -> str:
    """
    Stable identifier for events without a vendor id.

    Derived from the event content, so a re-delivered event maps to the
    same record.
    """
    canonical = json.dumps(event, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    return f"{supplier}_{digest}"


def dispatch_event(
    supplier: str,
    handlers: Mapping[str, EventHandler],
    event: Dict[str, Any],
    fallback: EventHandler,
    require_type: bool = True,
) -> Optional[TelemetryRecord]:
    """
    Route one vendor event through a type -> handler table.

    Unknown types are logged and mapped by ``fallback``. Events without a
    type are logged and skipped unless ``require_type`` is False.
    """
    if not isinstance(event, dict):
        logger.warning(f"[{supplier}] Ignoring non-object event: {type(event).__name__}")
        return None

    event_type = event_type_of(event)
    if event_type is None:
        if require_type:
            logger.warning(f"[{supplier}] Event has no type field, skipping: keys={sorted(event)}")
            return None
        return fallback(event)

    if event_type == SUBSCRIPTION_VALIDATION_EVENT:
        logger.debug(f"[{supplier}] Subscription validation event is not telemetry")
        return None

    handler = handlers.get(event_type)
    if handler is None:
        logger.warning(f"[{supplier}] No handler for event type '{event_type}', mapping generically")
        return fallback(event)

    return handler(event)


def abuse_protection_preflight(
    request: InboundRequest,
    allowed_rate: int = 1000,
) -> VerificationResult:
    """Answer a CloudEvents webhook validation ``OPTIONS`` request."""
    origin = request.header("WebHook-Request-Origin")
    if not origin:
        logger.warning("OPTIONS request without WebHook-Request-Origin header")
        return VerificationResult.rejected(400, "Missing WebHook-Request-Origin header")

    logger.info(f"Abuse protection handshake from origin {origin}")
    return VerificationResult.handshake(
        body=None,
        headers={
            "WebHook-Allowed-Origin": origin,
            "WebHook-Allowed-Rate": str(allowed_rate),
            "Allow": "POST",
        },
    )
