"""
Redis Streams plumbing for the delivery queue.

Every entry carries a single ``data`` field holding the JSON-encoded
task. Consumers belong to one group so each task is handed to exactly one
delivery worker; entries are acked only once their handler returns.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

from ...config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

MessageHandler = Callable[['StreamMessage'], Awaitable[Any]]

# XREADGROUP start ids: new entries, or this consumer's unacked backlog
NEW_ENTRIES = '>'
OWN_BACKLOG = '0'
# XAUTOCLAIM scan start
GROUP_START = '0-0'


def encode_fields(data: Dict[str, Any]) -> Dict[str, str]:
    return {'data': json.dumps(data, default=str)}


@dataclass
class StreamMessage:
    """One stream entry with its decoded payload."""
    stream: str
    message_id: str
    data: Dict[str, Any]
    enqueued_at: datetime

    @classmethod
    def from_raw(cls, stream: str, message_id: str, fields: Dict[str, str]) -> 'StreamMessage':
        # Entry ids are "<ms since epoch>-<seq>"
        millis = int(message_id.partition('-')[0])
        return cls(
            stream=stream,
            message_id=message_id,
            data=json.loads(fields.get('data') or '{}'),
            enqueued_at=datetime.fromtimestamp(millis / 1000, tz=timezone.utc),
        )


class RedisStreamManager:
    """Shared Redis client for the process."""

    _client: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> redis.Redis:
        if cls._client is None:
            cls._client = redis.from_url(settings.redis.url, decode_responses=True)
            logger.debug(f"Redis client created for {settings.redis.host}:{settings.redis.port}")
        return cls._client

    @classmethod
    async def close(cls) -> None:
        if cls._client is None:
            return
        await cls._client.aclose()
        cls._client = None


class _StreamEndpoint:
    """Resolves the injected client, falling back to the shared one."""

    def __init__(self, stream_name: str, client: Optional[redis.Redis] = None):
        self.stream_name = stream_name
        self._client = client

    async def _redis(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        return await RedisStreamManager.get_client()


class StreamProducer(_StreamEndpoint):
    """Appends entries to a capped stream."""

    def __init__(
        self,
        stream_name: str,
        max_len: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(stream_name, client)
        self.max_len = max_len or settings.redis.stream_max_len

    async def add(self, data: Dict[str, Any]) -> str:
        """Append one entry and return its id."""
        client = await self._redis()
        return await client.xadd(
            self.stream_name,
            encode_fields(data),
            maxlen=self.max_len,
            approximate=True,
        )

    async def add_batch(self, entries: List[Dict[str, Any]]) -> List[str]:
        """Append several entries in one round trip, ids in input order."""
        if not entries:
            return []

        client = await self._redis()
        pipe = client.pipeline(transaction=False)
        for data in entries:
            pipe.xadd(
                self.stream_name,
                encode_fields(data),
                maxlen=self.max_len,
                approximate=True,
            )
        return await pipe.execute()


class StreamConsumer(_StreamEndpoint):
    """
    Member of a consumer group.

    A handler that raises leaves its entry unacked. Once it has been idle
    for ``claim_idle_ms`` it is claimed again, by this consumer or any other
    member of the group, so entries left behind by a crashed or renamed
    consumer are not lost.
    """

    def __init__(
        self,
        stream_name: str,
        group_name: str,
        consumer_name: str,
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(stream_name, client)
        self.group_name = group_name
        self.consumer_name = consumer_name
        self._running = False

    async def ensure_group(self) -> None:
        """Create the group (and the stream) unless it already exists."""
        client = await self._redis()
        try:
            await client.xgroup_create(self.stream_name, self.group_name, id='0', mkstream=True)
        except redis.ResponseError as e:
            if 'BUSYGROUP' not in str(e):
                raise
        else:
            logger.info(f"Created consumer group {self.group_name} on {self.stream_name}")

    async def read(self, count: int = 10, block: int = 5000) -> List[StreamMessage]:
        """New entries, waiting up to ``block`` ms for some to arrive."""
        return await self._read(NEW_ENTRIES, count, block)

    async def read_pending(self, count: int = 10) -> List[StreamMessage]:
        """Entries delivered to this consumer but never acked."""
        return await self._read(OWN_BACKLOG, count, None)

    async def _read(self, start: str, count: int, block: Optional[int]) -> List[StreamMessage]:
        client = await self._redis()
        response = await client.xreadgroup(
            self.group_name,
            self.consumer_name,
            {self.stream_name: start},
            count=count,
            block=block,
        )
        return [
            StreamMessage.from_raw(stream, message_id, fields)
            for stream, entries in response or []
            for message_id, fields in entries
            # trimmed entries come back with no fields
            if fields
        ]

    async def ack(self, message_id: str) -> int:
        client = await self._redis()
        return await client.xack(self.stream_name, self.group_name, message_id)

    async def process(
        self,
        handler: MessageHandler,
        count: int = 10,
        block: int = 5000,
        pending: bool = False,
    ) -> int:
        """
        Handle one batch.

        Returns:
            Number of entries handled and acked.
        """
        if pending:
            batch = await self.read_pending(count=count)
        else:
            batch = await self.read(count=count, block=block)
        return await self._handle(handler, batch)

    async def claim_idle(self, min_idle_ms: int, count: int = 10) -> List[StreamMessage]:
        """
        Take over entries left unacked for at least ``min_idle_ms`` by any
        consumer of the group, this one included.
        """
        client = await self._redis()
        response = await client.xautoclaim(
            self.stream_name,
            self.group_name,
            self.consumer_name,
            min_idle_time=min_idle_ms,
            start_id=GROUP_START,
            count=count,
        )
        # [next start id, claimed entries, deleted ids (Redis 7+)]
        entries = response[1] if response else []
        return [
            StreamMessage.from_raw(self.stream_name, message_id, fields)
            for message_id, fields in entries
            if message_id and fields
        ]

    async def process_idle(self, handler: MessageHandler, min_idle_ms: int, count: int = 10) -> int:
        """Claim idle entries and handle them like new ones."""
        batch = await self.claim_idle(min_idle_ms, count=count)
        if batch:
            logger.info(
                f"Consumer {self.consumer_name} claimed {len(batch)} idle entries "
                f"from {self.stream_name}"
            )
        return await self._handle(handler, batch)

    async def _handle(self, handler: MessageHandler, batch: List[StreamMessage]) -> int:
        handled = 0
        for message in batch:
            try:
                await handler(message)
            except Exception as e:
                logger.error(
                    f"Handler failed for {self.stream_name} entry {message.message_id}, "
                    f"leaving it pending: {e}",
                    exc_info=True,
                )
                continue
            await self.ack(message.message_id)
            handled += 1
        return handled

    async def run_forever(
        self,
        handler: MessageHandler,
        count: int = 10,
        block: int = 5000,
        claim_idle_ms: int = 60000,
        claim_interval: float = 30.0,
    ) -> None:
        """
        Replay the backlog, then handle new entries until ``stop()``.

        Every ``claim_interval`` seconds, entries idle for ``claim_idle_ms``
        are claimed first.
        """
        await self.ensure_group()
        self._running = True

        replayed = 0
        while self._running:
            handled = await self.process(handler, count=count, pending=True)
            if not handled:
                break
            replayed += handled
        if replayed:
            logger.info(f"Consumer {self.consumer_name} replayed {replayed} pending entries")

        last_claim: Optional[float] = None
        while self._running:
            try:
                if last_claim is None or time.monotonic() - last_claim >= claim_interval:
                    last_claim = time.monotonic()
                    await self.process_idle(handler, claim_idle_ms, count=count)
                await self.process(handler, count=count, block=block)
            except asyncio.CancelledError:
                break
            except redis.RedisError as e:
                logger.error(f"Stream read on {self.stream_name} failed: {e}")
                await asyncio.sleep(1)

    def stop(self) -> None:
        self._running = False


async def health_check() -> bool:
    """Check Redis connectivity."""
    try:
        client = await RedisStreamManager.get_client()
        return bool(await client.ping())
    except (redis.RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return False
