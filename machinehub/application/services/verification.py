"""
Webhook verification guard chain.

Runs before any event is parsed. Stages, in order:
1. Source IP allow-list
2. Subscription name header
3. Per supplier and tenant rate limit

The first failing stage short-circuits the chain.
"""
import ipaddress
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import redis.asyncio as redis

from ...domain.entities import SupplierConfig
from ...infrastructure.cache import RateLimiter
from ...suppliers.base import InboundRequest, VerificationResult

logger = logging.getLogger(__name__)


SUBSCRIPTION_HEADER = "aeg-subscription-name"


class IpAllowListGuard:
    """Rejects callers outside the supplier's allow-list (default deny)."""

    name = "ip_allow_list"

    async def check(
        self,
        config: SupplierConfig,
        request: InboundRequest,
        tenant: Optional[str],
    ) -> VerificationResult:
        if config.skip_ip_check:
            return VerificationResult.accepted()

        if not config.allowed_ips:
            logger.warning(f"[{config.name}] Empty IP allow-list, rejecting {request.client_ip}")
            return VerificationResult.rejected(403, "Forbidden")

        try:
            address = ipaddress.ip_address(request.client_ip or "")
        except ValueError:
            logger.warning(f"[{config.name}] Unparseable client address {request.client_ip!r}")
            return VerificationResult.rejected(403, "Forbidden")

        for entry in config.allowed_ips:
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return VerificationResult.accepted()
            except ValueError:
                logger.error(f"[{config.name}] Invalid allow-list entry {entry!r}")

        logger.warning(f"[{config.name}] Webhook from non-allowed address {address}")
        return VerificationResult.rejected(403, "Forbidden")


class SubscriptionNameGuard:
    """Compares ``aeg-subscription-name`` with the configured subscription."""

    name = "subscription_name"

    async def check(
        self,
        config: SupplierConfig,
        request: InboundRequest,
        tenant: Optional[str],
    ) -> VerificationResult:
        expected = config.subscription_name
        if not expected:
            logger.warning(f"[{config.name}] No subscription name configured, skipping check")
            return VerificationResult.accepted()

        received = request.header(SUBSCRIPTION_HEADER)
        # Event Grid upper-cases subscription names in this header
        if not received or received.strip().lower() != expected.lower():
            logger.warning(
                f"[{config.name}] Subscription name mismatch: "
                f"expected={expected!r} received={received!r}"
            )
            return VerificationResult.rejected(403, "Invalid subscription name")

        return VerificationResult.accepted()


class RateLimitGuard:
    """Shared request budget per supplier and tenant."""

    name = "rate_limit"

    def __init__(self, limiter: Optional[RateLimiter] = None):
        self.limiter = limiter or RateLimiter()

    async def check(
        self,
        config: SupplierConfig,
        request: InboundRequest,
        tenant: Optional[str],
    ) -> VerificationResult:
        identifier = f"{config.name}:{tenant or '-'}"
        allowed, _ = await self.limiter.is_allowed(identifier, config.rate_limit)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {identifier}")
            return VerificationResult.rejected(429, "Too many requests")
        return VerificationResult.accepted()


class VerificationChain:
    """Ordered guard chain applied to every inbound webhook request."""

    PREFLIGHT_STAGES: Tuple[str, ...] = (IpAllowListGuard.name,)

    def __init__(self, guards: Optional[Sequence] = None, client: Optional[redis.Redis] = None):
        self.guards: List = list(guards) if guards is not None else [
            IpAllowListGuard(),
            SubscriptionNameGuard(),
            RateLimitGuard(RateLimiter(client=client)),
        ]

    async def check(
        self,
        config: SupplierConfig,
        request: InboundRequest,
        tenant: Optional[str] = None,
        stages: Optional[Iterable[str]] = None,
    ) -> VerificationResult:
        """
        Run the guards, optionally restricted to the named ``stages``.

        Returns the first rejection, or an accepted result.
        """
        selected = set(stages) if stages is not None else None
        for guard in self.guards:
            if selected is not None and guard.name not in selected:
                continue
            result = await guard.check(config, request, tenant)
            if not result.is_accepted:
                logger.info(
                    f"[{config.name}] Request rejected by {guard.name}: "
                    f"{result.status_code} {result.reason}"
                )
                return result
        return VerificationResult.accepted()
