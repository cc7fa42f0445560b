"""
Token bucket rate limiter shared by every API process through Redis.
"""
import logging
import time
from typing import Callable, Optional, Tuple

import redis.asyncio as redis

from ...config import get_settings
from ...domain.entities import RateLimitPolicy
from ..messaging.redis_streams import RedisStreamManager

settings = get_settings()
logger = logging.getLogger(__name__)


class RateLimiter:
    """
    One bucket per identifier, stored as a Redis hash.

    A bucket holds up to ``policy.requests`` tokens and refills at
    ``requests / per_seconds`` tokens per second. Reading and writing the
    bucket happen in one WATCH/MULTI transaction, so concurrent API
    processes never spend the same token twice. An idle bucket expires once
    it would be full again.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        key_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        max_retries: int = 5,
    ):
        self._client = client
        self.key_prefix = key_prefix or settings.redis.rate_limit_prefix
        self._clock = clock
        self.max_retries = max_retries

    async def _redis(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        return await RedisStreamManager.get_client()

    def _key(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"

    async def is_allowed(self, identifier: str, policy: RateLimitPolicy) -> Tuple[bool, int]:
        """
        Take one token for ``identifier``.

        Returns:
            Tuple of (allowed, remaining_tokens)
        """
        client = await self._redis()
        key = self._key(identifier)
        capacity = float(policy.requests)

        for _ in range(self.max_retries):
            async with client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    bucket = await pipe.hgetall(key)
                    now = self._clock()

                    tokens = capacity
                    if bucket:
                        elapsed = max(0.0, now - float(bucket["updated_at"]))
                        tokens = min(capacity, float(bucket["tokens"]) + elapsed * policy.refill_rate)

                    allowed = tokens >= 1.0
                    if allowed:
                        tokens -= 1.0

                    pipe.multi()
                    pipe.hset(key, mapping={"tokens": tokens, "updated_at": now})
                    pipe.expire(key, max(1, int(policy.per_seconds)))
                    await pipe.execute()
                except redis.WatchError:
                    continue
            return allowed, int(tokens)

        logger.warning(f"Rate limit bucket {key} contended {self.max_retries} times, rejecting")
        return False, 0

    async def reset(self, identifier: str) -> None:
        client = await self._redis()
        await client.delete(self._key(identifier))
