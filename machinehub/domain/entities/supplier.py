"""
Supplier configuration entities.

Loaded once at startup from YAML and shared read-only across workers.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class SupplierMode(str, Enum):
    """How telemetry reaches MachineHub."""
    WEBHOOK = "webhook"
    API_POLL = "api-poll"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Token bucket sizing for one supplier."""
    requests: int = 30
    per_seconds: int = 60

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.requests / self.per_seconds


@dataclass(frozen=True)
class TenantConfig:
    """Destination of one tenant for one supplier."""
    name: str
    destination_url: Optional[str] = None
    api_key: Optional[str] = None


@dataclass(frozen=True)
class SupplierConfig:
    """Static configuration of one supplier."""
    name: str
    mode: SupplierMode
    adapter: str
    display_name: Optional[str] = None
    enabled: bool = True
    subscription_name: Optional[str] = None
    allowed_ips: Tuple[str, ...] = ()
    skip_ip_check: bool = False
    rate_limit: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    tenants: Mapping[str, TenantConfig] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.display_name or self.name.upper()

    def tenant(self, name: Optional[str]) -> Optional[TenantConfig]:
        if not name:
            return None
        return self.tenants.get(name.lower())

    @property
    def tenant_names(self) -> Tuple[str, ...]:
        return tuple(self.tenants.keys())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "mode": self.mode.value,
            "adapter": self.adapter,
            "enabled": self.enabled,
            "tenants": list(self.tenant_names),
            "subscription_verified": self.subscription_name is not None,
            "rate_limit": {
                "requests": self.rate_limit.requests,
                "per_seconds": self.rate_limit.per_seconds,
            },
        }
