# Application Services
from .tenant_resolver import TenantResolver
from .verification import (
    IpAllowListGuard,
    SubscriptionNameGuard,
    RateLimitGuard,
    VerificationChain,
)
from .ingestion_service import (
    IngestionState,
    IngestionResponse,
    IngestionService,
    extract_events,
)

__all__ = [
    "TenantResolver",
    "IpAllowListGuard",
    "SubscriptionNameGuard",
    "RateLimitGuard",
    "VerificationChain",
    "IngestionState",
    "IngestionResponse",
    "IngestionService",
    "extract_events",
]
