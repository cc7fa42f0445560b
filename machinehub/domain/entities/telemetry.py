"""
Telemetry entities for MachineHub.

A TelemetryRecord is one normalized vendor event together with its
aggregate delivery status. Per-tenant progress is tracked by TenantDelivery.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
from uuid import UUID


class DeliveryStatus(str, Enum):
    """Delivery state of a telemetry record or a tenant delivery."""
    PENDING = "pending"
    PROCESSING = "processing"
    FORWARDED = "forwarded"
    FAILED = "failed"
    ERROR = "error"

    @property
    def label(self) -> str:
        return {
            DeliveryStatus.PENDING: "Pending",
            DeliveryStatus.PROCESSING: "Processing",
            DeliveryStatus.FORWARDED: "Forwarded",
            DeliveryStatus.FAILED: "Failed",
            DeliveryStatus.ERROR: "Error",
        }[self]

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.FORWARDED, DeliveryStatus.FAILED)

    @property
    def is_success(self) -> bool:
        return self == DeliveryStatus.FORWARDED

    @property
    def is_failure(self) -> bool:
        return self in (DeliveryStatus.FAILED, DeliveryStatus.ERROR)

    @property
    def should_retry(self) -> bool:
        return self == DeliveryStatus.ERROR

    def can_transition_to(self, target: "DeliveryStatus") -> bool:
        """Check whether ``target`` is reachable in one step."""
        return target in _TRANSITIONS[self]

    @classmethod
    def sources_of(cls, target: "DeliveryStatus") -> FrozenSet["DeliveryStatus"]:
        """All statuses from which ``target`` may be entered."""
        return frozenset(
            source for source, targets in _TRANSITIONS.items()
            if target in targets
        )


# processing -> processing covers queue redelivery after a worker crash.
# error -> failed is the escalation once the attempt ceiling is reached.
_TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.PROCESSING}),
    DeliveryStatus.PROCESSING: frozenset({
        DeliveryStatus.PROCESSING,
        DeliveryStatus.FORWARDED,
        DeliveryStatus.FAILED,
        DeliveryStatus.ERROR,
    }),
    DeliveryStatus.ERROR: frozenset({DeliveryStatus.PROCESSING, DeliveryStatus.FAILED}),
    DeliveryStatus.FORWARDED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
}


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class TelemetryRecord:
    """
    Canonical normalized event.

    ``(supplier, event_id)`` is unique; re-ingesting the same vendor event
    updates the stored row instead of creating a new one.
    """
    supplier: str
    event_id: str
    type: Optional[str] = None
    device_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    status: DeliveryStatus = DeliveryStatus.PENDING
    forwarded_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.supplier = self.supplier.lower()
        self.event_id = str(self.event_id)

    @property
    def key(self) -> tuple:
        return (self.supplier, self.event_id)

    def to_event_dict(self) -> Dict[str, Any]:
        """Canonical event shape sent to tenant destinations."""
        return {
            "type": self.type,
            "eventId": self.event_id,
            "deviceId": self.device_id,
            "occurredAt": _isoformat(self.occurred_at),
            "payload": self.payload,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supplier": self.supplier,
            "event_id": self.event_id,
            "type": self.type,
            "device_id": self.device_id,
            "occurred_at": _isoformat(self.occurred_at),
            "status": self.status.value,
            "forwarded_at": _isoformat(self.forwarded_at),
            "attempts": self.attempts,
            "last_error": self.last_error,
        }


@dataclass
class TenantDelivery:
    """Delivery progress of one record towards one tenant."""
    supplier: str
    event_id: str
    tenant: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    forwarded_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant": self.tenant,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "forwarded_at": _isoformat(self.forwarded_at),
        }


@dataclass(frozen=True)
class FetchWindow:
    """Half-open polling window handed to the vendor API."""
    start: datetime
    end: datetime


@dataclass
class FetchWatermark:
    """Last successfully processed point for a (supplier, resource) pair."""
    supplier: str
    resource: str
    last_fetched_at: datetime
    last_item_count: int = 0
    updated_at: Optional[datetime] = None

    @staticmethod
    def next_window(
        watermark: Optional["FetchWatermark"],
        now: Optional[datetime] = None,
        default_lookback: timedelta = timedelta(minutes=60),
    ) -> FetchWindow:
        """
        Compute the next poll window.

        With a watermark ``T`` the window starts one second after ``T``;
        without one it starts ``default_lookback`` before ``now``.
        """
        now = now or datetime.now(timezone.utc)
        if watermark is None:
            return FetchWindow(start=now - default_lookback, end=now)
        return FetchWindow(start=watermark.last_fetched_at + timedelta(seconds=1), end=now)


@dataclass
class DeliveryTask:
    """Unit of work: forward one record to one tenant."""
    supplier: str
    tenant: str
    event_id: str
    attempt: int = 1
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def next_attempt(self) -> "DeliveryTask":
        return DeliveryTask(
            supplier=self.supplier,
            tenant=self.tenant,
            event_id=self.event_id,
            attempt=self.attempt + 1,
        )

    def to_message(self) -> Dict[str, Any]:
        return {
            "supplier": self.supplier,
            "tenant": self.tenant,
            "event_id": self.event_id,
            "attempt": self.attempt,
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_message(cls, data: Dict[str, Any]) -> "DeliveryTask":
        enqueued_at = data.get("enqueued_at")
        return cls(
            supplier=data["supplier"],
            tenant=data["tenant"],
            event_id=str(data["event_id"]),
            attempt=int(data.get("attempt", 1)),
            enqueued_at=(
                datetime.fromisoformat(enqueued_at)
                if enqueued_at else datetime.now(timezone.utc)
            ),
        )
