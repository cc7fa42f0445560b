"""
Durable delivery task queue.

Tasks live on a Redis stream consumed by a consumer group. Retries are
parked in a sorted set scored by their due time and moved back onto the
stream once due.
"""
import json
import logging
import os
import socket
import time
from typing import Iterable, List, Optional

import redis.asyncio as redis

from ...config import get_settings
from ...domain.entities.telemetry import DeliveryTask
from .redis_streams import RedisStreamManager, StreamConsumer, StreamProducer, encode_fields

settings = get_settings()
logger = logging.getLogger(__name__)


def retry_delay(attempt: int, base: float, cap: float) -> float:
    """
    Delay before retrying after ``attempt`` failed.

    Exponential: base, 2*base, 4*base, ... capped at ``cap``.
    """
    return min(base * (2 ** max(attempt - 1, 0)), cap)


class DeliveryQueue:
    """Producer side of the delivery queue plus the retry schedule."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        stream_name: Optional[str] = None,
        retry_set: Optional[str] = None,
        group_name: Optional[str] = None,
    ):
        self._client = client
        self.stream_name = stream_name or settings.redis.delivery_stream
        self.retry_set = retry_set or settings.redis.retry_set
        self.group_name = group_name or settings.redis.consumer_group
        self._producer = StreamProducer(self.stream_name, client=client)

    async def _get_client(self) -> redis.Redis:
        return self._client or await RedisStreamManager.get_client()

    async def enqueue(self, task: DeliveryTask) -> str:
        message_id = await self._producer.add(task.to_message())
        logger.debug(
            f"Enqueued delivery {task.supplier}/{task.event_id} -> {task.tenant} "
            f"(attempt {task.attempt}, id={message_id})"
        )
        return message_id

    async def enqueue_many(self, tasks: Iterable[DeliveryTask]) -> List[str]:
        messages = [task.to_message() for task in tasks]
        message_ids = await self._producer.add_batch(messages)
        if message_ids:
            logger.info(f"Enqueued {len(message_ids)} delivery tasks")
        return message_ids

    async def schedule_retry(self, task: DeliveryTask, delay_seconds: float) -> float:
        """
        Park ``task`` until ``delay_seconds`` from now.

        Returns:
            Unix timestamp at which the task becomes due.
        """
        client = await self._get_client()
        due_at = time.time() + delay_seconds
        member = json.dumps(task.to_message(), sort_keys=True, default=str)
        await client.zadd(self.retry_set, {member: due_at})
        logger.info(
            f"Retry of {task.supplier}/{task.event_id} -> {task.tenant} "
            f"(attempt {task.attempt}) scheduled in {delay_seconds:.0f}s"
        )
        return due_at

    async def promote_due_retries(self, now: Optional[float] = None, limit: int = 100) -> int:
        """
        Move due retries onto the delivery stream.

        Each move is one MULTI transaction: ZREM and XADD both apply or
        neither does. WATCH on the retry set makes a concurrent promoter's
        move abort this one, so a task is never enqueued twice; an aborted
        member stays parked for the next pass.
        """
        client = await self._get_client()
        now = now if now is not None else time.time()
        due = await client.zrangebyscore(self.retry_set, '-inf', now, start=0, num=limit)

        promoted = 0
        for member in due:
            if await self._move_to_stream(client, member):
                promoted += 1

        if promoted:
            logger.debug(f"Promoted {promoted} due retries")
        return promoted

    async def _move_to_stream(self, client: redis.Redis, member: str) -> bool:
        task = DeliveryTask.from_message(json.loads(member))
        async with client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.retry_set)
                if await pipe.zscore(self.retry_set, member) is None:
                    return False
                pipe.multi()
                pipe.zrem(self.retry_set, member)
                pipe.xadd(
                    self.stream_name,
                    encode_fields(task.to_message()),
                    maxlen=self._producer.max_len,
                    approximate=True,
                )
                await pipe.execute()
            except redis.WatchError:
                logger.debug(f"Retry set changed while promoting {task.supplier}/{task.event_id}, deferring")
                return False
        return True

    async def scheduled_retries(self) -> int:
        client = await self._get_client()
        return await client.zcard(self.retry_set)

    def consumer(self, consumer_name: Optional[str] = None) -> StreamConsumer:
        """Consumer bound to this queue's stream and group."""
        name = (
            consumer_name
            or settings.redis.consumer_name
            or f"{socket.gethostname()}-{os.getpid()}"
        )
        return StreamConsumer(
            self.stream_name,
            self.group_name,
            name,
            client=self._client,
        )
