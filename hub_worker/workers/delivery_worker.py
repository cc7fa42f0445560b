"""
Delivery worker.

Consumes delivery tasks from the Redis stream, forwards each record to its
tenant and applies the retry policy:

- 2xx: forwarded
- 4xx or configuration error: failed, no retry
- 5xx, timeout or network error: error, retried with backoff until the
  attempt ceiling, then failed
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from machinehub.config import AppSettings, get_settings
from machinehub.domain.entities import (
    DeliveryOutcome,
    DeliveryStatus,
    DeliveryTask,
    FailureKind,
    TelemetryRecord,
    TenantDelivery,
)
from machinehub.infrastructure.database.repositories import TelemetryRepository
from machinehub.infrastructure.messaging import DeliveryQueue, StreamMessage, retry_delay

from ..delivery import TenantForwarder
from ..storage import TelemetryScope, telemetry_repository_scope

logger = logging.getLogger(__name__)


class DeliveryWorker:
    """
    Background worker for tenant deliveries.

    Runs two loops: the stream consumer and the retry pump that moves due
    retries back onto the stream.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        forwarder: TenantForwarder,
        repository_scope: TelemetryScope = telemetry_repository_scope,
        settings: Optional[AppSettings] = None,
        consumer_name: Optional[str] = None,
    ):
        """
        Initialize the delivery worker.

        Args:
            queue: Delivery task queue.
            forwarder: Client for tenant destinations.
            repository_scope: Factory for a transactional TelemetryRepository.
            settings: Application settings.
            consumer_name: Name within the consumer group; defaults to
                REDIS_CONSUMER_NAME, then host and pid.
        """
        self.queue = queue
        self.forwarder = forwarder
        self.settings = settings or get_settings()
        self._repository_scope = repository_scope
        self._consumer = queue.consumer(consumer_name or self.settings.redis.consumer_name)

        # State
        self._running = False
        self._consume_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        # Stats
        self._tasks_processed = 0
        self._forwarded = 0
        self._failed = 0
        self._retries_scheduled = 0
        self._configuration_errors = 0
        self._skipped = 0
        self._last_task_time: Optional[datetime] = None

    async def start(self) -> None:
        """Start the consumer and retry loops."""
        if self._running:
            logger.warning("Delivery worker already running")
            return

        logger.info(
            f"Starting delivery worker {self._consumer.consumer_name} "
            f"(log_only={self.settings.delivery.log_only})"
        )
        self._running = True
        self._shutdown_event.clear()

        self._consume_task = asyncio.create_task(self._consume_loop(), name="delivery_consumer")
        self._retry_task = asyncio.create_task(self._retry_loop(), name="delivery_retry_pump")

    async def stop(self) -> None:
        """Stop the worker."""
        if not self._running:
            return

        logger.info("Stopping delivery worker")
        self._running = False
        self._shutdown_event.set()
        self._consumer.stop()

        for task in (self._consume_task, self._retry_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        logger.info(
            f"Delivery worker stopped. Processed: {self._tasks_processed}, "
            f"Forwarded: {self._forwarded}, Failed: {self._failed}, "
            f"Retries: {self._retries_scheduled}"
        )

    async def _consume_loop(self) -> None:
        delivery = self.settings.delivery
        while self._running:
            try:
                await self._consumer.run_forever(
                    self._handle_message,
                    count=delivery.batch_size,
                    block=delivery.block_ms,
                    claim_idle_ms=delivery.claim_idle_ms,
                    claim_interval=delivery.claim_interval,
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Delivery consumer crashed, restarting: {e}", exc_info=True)
                await asyncio.sleep(5)

    async def _retry_loop(self) -> None:
        """Promote due retries onto the stream."""
        interval = self.settings.delivery.retry_poll_interval
        while self._running:
            try:
                await self.queue.promote_due_retries()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error promoting retries: {e}")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

    async def _handle_message(self, message: StreamMessage) -> None:
        task = DeliveryTask.from_message(message.data)
        await self.process_task(task)

    async def process_task(self, task: DeliveryTask) -> Optional[DeliveryStatus]:
        """
        Run one delivery attempt.

        Returns:
            The status the delivery moved to, or None if the task was a
            no-op (unknown record, or the delivery already finished).
        """
        self._tasks_processed += 1
        self._last_task_time = datetime.now(timezone.utc)
        label = f"{task.supplier}/{task.event_id} -> {task.tenant}"

        async with self._repository_scope() as repository:
            record = await repository.get(task.supplier, task.event_id)
            if record is None:
                logger.warning(f"Delivery {label}: record not found, dropping task")
                self._skipped += 1
                return None

            delivery = await repository.claim_delivery(task.supplier, task.event_id, task.tenant)
            if delivery is None:
                logger.info(f"Delivery {label} already finished, skipping")
                self._skipped += 1
                return None
            await repository.commit()

            logger.debug(f"Delivery {label}: attempt {delivery.attempts}")
            outcome = await self._attempt(record, task.tenant)
            return await self._apply_outcome(repository, task, delivery, outcome)

    async def _attempt(self, record: TelemetryRecord, tenant: str) -> DeliveryOutcome:
        if self.settings.delivery.log_only:
            logger.info(
                f"[log-only] Would forward {record.supplier}/{record.event_id} to {tenant}: "
                f"{self.forwarder.build_envelope(record, tenant)}"
            )
            return DeliveryOutcome(delivered=True)

        try:
            return await self.forwarder.forward(record, tenant)
        except Exception as e:
            logger.error(
                f"Unexpected error forwarding {record.supplier}/{record.event_id} to {tenant}: {e}",
                exc_info=True,
            )
            return DeliveryOutcome.transient(f"Unexpected error: {e}")

    async def _apply_outcome(
        self,
        repository: TelemetryRepository,
        task: DeliveryTask,
        delivery: TenantDelivery,
        outcome: DeliveryOutcome,
    ) -> Optional[DeliveryStatus]:
        label = f"{task.supplier}/{task.event_id} -> {task.tenant}"
        max_attempts = self.settings.delivery.max_attempts
        attempts = delivery.attempts
        target = outcome.target_status

        if outcome.failure == FailureKind.CONFIGURATION:
            self._configuration_errors += 1
            logger.error(f"configuration_error: delivery {label} failed: {outcome.error}")
        elif outcome.failure == FailureKind.REJECTED:
            logger.warning(f"Delivery {label} rejected by destination: {outcome.error}")
        elif outcome.failure == FailureKind.TRANSIENT:
            logger.warning(
                f"transient_error: delivery {label} attempt {attempts}/{max_attempts}: "
                f"{outcome.error}"
            )
            if attempts >= max_attempts:
                target = DeliveryStatus.FAILED
                logger.error(f"Delivery {label} failed after {attempts} attempts")

        changed = await repository.complete_delivery(
            task.supplier,
            task.event_id,
            task.tenant,
            target,
            attempts=attempts,
            error=outcome.error,
        )
        await repository.commit()
        if not changed:
            self._skipped += 1
            return None

        if target == DeliveryStatus.FORWARDED:
            self._forwarded += 1
            logger.info(f"Delivery {label} forwarded")
        elif target == DeliveryStatus.FAILED:
            self._failed += 1
        elif target == DeliveryStatus.ERROR:
            delay = retry_delay(
                attempts,
                self.settings.delivery.backoff_base_seconds,
                self.settings.delivery.backoff_max_seconds,
            )
            await self.queue.schedule_retry(task.next_attempt(), delay)
            self._retries_scheduled += 1

        return target

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics."""
        return {
            "running": self._running,
            "consumer": self._consumer.consumer_name,
            "tasks_processed": self._tasks_processed,
            "forwarded": self._forwarded,
            "failed": self._failed,
            "retries_scheduled": self._retries_scheduled,
            "configuration_errors": self._configuration_errors,
            "skipped": self._skipped,
            "last_task_time": self._last_task_time.isoformat() if self._last_task_time else None,
            "log_only": self.settings.delivery.log_only,
        }

    @property
    def is_running(self) -> bool:
        """Check if worker is running."""
        return self._running
