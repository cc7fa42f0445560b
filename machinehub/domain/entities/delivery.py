"""
Delivery outcome entities.

TenantForwarder reports what happened as a value; DeliveryWorker maps the
value onto the status state machine and the retry policy.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .telemetry import DeliveryStatus


class FailureKind(str, Enum):
    """Classification of an unsuccessful delivery attempt."""
    CONFIGURATION = "configuration_error"  # No tenant config or destination URL
    REJECTED = "rejected"                  # Destination answered 4xx
    TRANSIENT = "transient_error"          # Timeout, network failure, 5xx

    @property
    def is_permanent(self) -> bool:
        return self != FailureKind.TRANSIENT


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of a single forwarding attempt."""
    delivered: bool
    failure: Optional[FailureKind] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, status_code: int) -> "DeliveryOutcome":
        return cls(delivered=True, status_code=status_code)

    @classmethod
    def configuration_error(cls, error: str) -> "DeliveryOutcome":
        return cls(delivered=False, failure=FailureKind.CONFIGURATION, error=error)

    @classmethod
    def rejected(cls, status_code: int, error: str) -> "DeliveryOutcome":
        return cls(
            delivered=False,
            failure=FailureKind.REJECTED,
            status_code=status_code,
            error=error,
        )

    @classmethod
    def transient(cls, error: str, status_code: Optional[int] = None) -> "DeliveryOutcome":
        return cls(
            delivered=False,
            failure=FailureKind.TRANSIENT,
            status_code=status_code,
            error=error,
        )

    @property
    def is_retryable(self) -> bool:
        return not self.delivered and self.failure == FailureKind.TRANSIENT

    @property
    def target_status(self) -> DeliveryStatus:
        """Status this attempt moves the delivery to, before retry escalation."""
        if self.delivered:
            return DeliveryStatus.FORWARDED
        if self.is_retryable:
            return DeliveryStatus.ERROR
        return DeliveryStatus.FAILED
