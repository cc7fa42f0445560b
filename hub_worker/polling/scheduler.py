"""
Fetch scheduler for api-poll suppliers.

Two independent loops:
- fetch: pull new items per (supplier, resource) since the watermark and
  store them as pending records
- forward: fan pending records out to every configured tenant as delivery
  tasks
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from machinehub.config import AppSettings, get_settings
from machinehub.domain.entities import DeliveryStatus, DeliveryTask, FetchWatermark
from machinehub.domain.exceptions import SupplierFetchException
from machinehub.infrastructure.messaging import DeliveryQueue
from machinehub.suppliers import PollingAdapter, SupplierRegistry

from ..storage import (
    FetchLogScope,
    TelemetryScope,
    fetch_log_repository_scope,
    telemetry_repository_scope,
)

logger = logging.getLogger(__name__)


class FetchScheduler:
    """
    Runs the fetch and forwarding loops for all api-poll suppliers.

    A failure for one supplier resource is logged and leaves its watermark
    where it was; the other resources are still processed.
    """

    def __init__(
        self,
        registry: SupplierRegistry,
        queue: DeliveryQueue,
        telemetry_scope: TelemetryScope = telemetry_repository_scope,
        fetch_log_scope: FetchLogScope = fetch_log_repository_scope,
        settings: Optional[AppSettings] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the fetch scheduler.

        Args:
            registry: Supplier registry.
            queue: Delivery task queue.
            telemetry_scope: Factory for a transactional TelemetryRepository.
            fetch_log_scope: Factory for a transactional FetchLogRepository.
            settings: Application settings.
            clock: Source of the current time, the end of every window.
        """
        self.registry = registry
        self.queue = queue
        self.settings = settings or get_settings()
        self._telemetry_scope = telemetry_scope
        self._fetch_log_scope = fetch_log_scope
        self._clock = clock

        # State
        self._running = False
        self._fetch_task: Optional[asyncio.Task] = None
        self._forward_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        # Stats
        self._fetch_cycles = 0
        self._forward_sweeps = 0
        self._items_fetched = 0
        self._tasks_enqueued = 0
        self._fetch_errors = 0
        self._last_fetch_time: Optional[datetime] = None
        self._last_sweep_time: Optional[datetime] = None

    async def start(self) -> None:
        """Start the fetch and forwarding loops."""
        if self._running:
            logger.warning("Fetch scheduler already running")
            return

        polling = self.settings.polling
        logger.info(
            f"Starting fetch scheduler (fetch every {polling.fetch_interval:.0f}s, "
            f"forward every {polling.forward_interval:.0f}s)"
        )
        self._running = True
        self._shutdown_event.clear()

        self._fetch_task = asyncio.create_task(
            self._loop(self.run_fetch_cycle, polling.fetch_interval),
            name="supplier_fetch",
        )
        self._forward_task = asyncio.create_task(
            self._loop(self.run_forward_sweep, polling.forward_interval),
            name="forwarding_sweep",
        )

    async def stop(self) -> None:
        """Stop both loops."""
        if not self._running:
            return

        logger.info("Stopping fetch scheduler")
        self._running = False
        self._shutdown_event.set()

        for task in (self._fetch_task, self._forward_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        logger.info("Fetch scheduler stopped")

    async def _loop(self, cycle: Callable, interval: float) -> None:
        while self._running:
            try:
                await cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {cycle.__name__}: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break  # Shutdown requested
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # Fetch
    # =========================================================================

    async def run_fetch_cycle(self) -> Dict[str, int]:
        """
        Fetch every resource of every api-poll supplier once.

        Returns:
            Items stored per ``supplier/resource``; failed resources are absent.
        """
        self._fetch_cycles += 1
        self._last_fetch_time = self._clock()

        results: Dict[str, int] = {}
        for adapter in self.registry.polling_adapters():
            for resource in adapter.resources:
                try:
                    results[f"{adapter.name}/{resource}"] = await self.fetch_resource(
                        adapter, resource
                    )
                except SupplierFetchException as e:
                    self._fetch_errors += 1
                    logger.error(f"[{adapter.name}] Fetch of {resource} failed: {e.message}")
                except Exception as e:
                    self._fetch_errors += 1
                    logger.error(
                        f"[{adapter.name}] Unexpected error fetching {resource}: {e}",
                        exc_info=True,
                    )
        return results

    async def fetch_resource(self, adapter: PollingAdapter, resource: str) -> int:
        """
        Fetch one window of ``resource`` and advance its watermark.

        The watermark only moves after every record of the window has been
        stored and committed.
        """
        async with self._fetch_log_scope() as fetch_logs:
            watermark = await fetch_logs.get_watermark(adapter.name, resource)

        window = FetchWatermark.next_window(
            watermark,
            now=self._clock(),
            default_lookback=timedelta(minutes=self.settings.polling.default_lookback_minutes),
        )
        logger.debug(f"[{adapter.name}] Fetching {resource} {window.start} - {window.end}")

        records = await adapter.fetch_since(resource, window.start, window.end)

        async with self._telemetry_scope() as repository:
            for record in records:
                await repository.upsert_pending(record)
            await repository.commit()

        async with self._fetch_log_scope() as fetch_logs:
            await fetch_logs.advance(adapter.name, resource, window.end, len(records))
            await fetch_logs.commit()

        self._items_fetched += len(records)
        if records:
            logger.info(f"[{adapter.name}] Stored {len(records)} {resource} items")
        return len(records)

    # =========================================================================
    # Forwarding sweep
    # =========================================================================

    async def run_forward_sweep(self) -> Dict[str, int]:
        """
        Enqueue delivery tasks for pending records of every api-poll supplier.

        Returns:
            Tasks enqueued per supplier.
        """
        self._forward_sweeps += 1
        self._last_sweep_time = self._clock()

        results: Dict[str, int] = {}
        for adapter in self.registry.polling_adapters():
            try:
                results[adapter.name] = await self.forward_pending(adapter)
            except Exception as e:
                logger.error(f"[{adapter.name}] Forwarding sweep failed: {e}", exc_info=True)
        return results

    async def forward_pending(self, adapter: PollingAdapter) -> int:
        """
        Fan the oldest pending records of ``adapter`` out to its tenants.

        Swept records move to processing so the next sweep skips them.
        """
        tenants = adapter.config.tenant_names
        if not tenants:
            logger.warning(f"[{adapter.name}] No tenants configured, nothing to forward")
            return 0

        async with self._telemetry_scope() as repository:
            records = await repository.list_pending(
                adapter.name, limit=self.settings.polling.sweep_batch_size
            )
            if not records:
                return 0

            tasks = [
                DeliveryTask(supplier=adapter.name, tenant=tenant, event_id=record.event_id)
                for record in records
                for tenant in tenants
            ]
            await self.queue.enqueue_many(tasks)

            for record in records:
                await repository.transition(adapter.name, record.event_id, DeliveryStatus.PROCESSING)
            await repository.commit()

        self._tasks_enqueued += len(tasks)
        logger.info(
            f"[{adapter.name}] Enqueued {len(tasks)} deliveries for "
            f"{len(records)} records to {len(tenants)} tenants"
        )
        return len(tasks)

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "suppliers": [adapter.name for adapter in self.registry.polling_adapters()],
            "fetch_cycles": self._fetch_cycles,
            "forward_sweeps": self._forward_sweeps,
            "items_fetched": self._items_fetched,
            "tasks_enqueued": self._tasks_enqueued,
            "fetch_errors": self._fetch_errors,
            "last_fetch_time": self._last_fetch_time.isoformat() if self._last_fetch_time else None,
            "last_sweep_time": self._last_sweep_time.isoformat() if self._last_sweep_time else None,
        }

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
