"""
Messaging infrastructure for MachineHub.

Redis Streams carry delivery tasks from ingestion and polling to the
delivery workers.
"""
from .redis_streams import (
    StreamMessage,
    RedisStreamManager,
    StreamProducer,
    StreamConsumer,
    health_check,
)
from .delivery_queue import DeliveryQueue, retry_delay

__all__ = [
    "StreamMessage",
    "RedisStreamManager",
    "StreamProducer",
    "StreamConsumer",
    "health_check",
    "DeliveryQueue",
    "retry_delay",
]
