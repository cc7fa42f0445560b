"""
MachineHub Worker - Main Entry Point.

Starts the background process that:
1. Delivers telemetry records to tenant destinations with retries
2. Polls api-poll suppliers for new items
3. Sweeps pending polled records into delivery tasks
"""
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from machinehub.config import AppSettings, get_settings
from machinehub.domain.exceptions import ConfigurationException
from machinehub.infrastructure.database import DatabaseManager
from machinehub.infrastructure.messaging import DeliveryQueue, RedisStreamManager
from machinehub.suppliers import SupplierConfigLoader, SupplierRegistry

from .delivery import TenantForwarder
from .polling import FetchScheduler
from .workers import DeliveryWorker, WorkerManager

logger = logging.getLogger(__name__)


class HubWorker:
    """
    Background process orchestrator.

    Owns the supplier registry, the delivery queue, the tenant forwarder
    and the worker manager.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self.settings = settings or get_settings()

        self.registry: Optional[SupplierRegistry] = None
        self.queue: Optional[DeliveryQueue] = None
        self.forwarder: Optional[TenantForwarder] = None
        self.worker_manager: Optional[WorkerManager] = None

        # Adapters replaced by a reload; closed on shutdown
        self._retired_adapters: List = []

        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the worker process."""
        logger.info(f"Starting {self.settings.app_name} worker ({self.settings.environment})")
        DatabaseManager.configure("machinehub-worker")

        self.registry = SupplierRegistry.from_file(
            self.settings.ingestion.suppliers_file, self.settings
        )

        client = await RedisStreamManager.get_client()
        await client.ping()
        logger.info("Redis connection established")

        self.queue = DeliveryQueue()
        self.forwarder = TenantForwarder(self.registry, settings=self.settings)
        await self.forwarder.connect()

        fetch_scheduler = None
        if self.settings.polling.enabled:
            fetch_scheduler = FetchScheduler(self.registry, self.queue, settings=self.settings)
        else:
            logger.info("Polling disabled")

        self.worker_manager = WorkerManager(
            delivery_worker=DeliveryWorker(self.queue, self.forwarder, settings=self.settings),
            fetch_scheduler=fetch_scheduler,
        )
        await self.worker_manager.start_all()

        self._running = True
        logger.info(
            f"Worker started with suppliers: {', '.join(self.registry.names()) or 'none'}"
        )

    async def stop(self) -> None:
        """Stop the worker process."""
        if not self._running:
            return

        logger.info("Stopping worker...")
        self._running = False
        self._shutdown_event.set()

        if self.worker_manager:
            await self.worker_manager.stop_all()

        if self.forwarder:
            await self.forwarder.disconnect()

        for adapter in list(self.registry or []) + self._retired_adapters:
            disconnect = getattr(adapter, "disconnect", None)
            if disconnect is not None:
                await disconnect()

        await DatabaseManager.close()
        await RedisStreamManager.close()
        logger.info("Worker stopped")

    async def serve_forever(self) -> None:
        """Run until shutdown."""
        await self._shutdown_event.wait()

    def reload_registry(self) -> bool:
        """
        Reload supplier configuration from disk.

        A configuration that fails to load leaves the current suppliers in
        place.
        """
        if self.registry is None:
            return False

        path = self.settings.ingestion.suppliers_file
        previous = list(self.registry)
        try:
            configs = SupplierConfigLoader.from_settings(self.settings).load_from_file(path)
            self.registry.reload(configs, self.settings)
        except (ConfigurationException, FileNotFoundError, ValueError) as e:
            logger.error(f"Supplier reload from {path} failed, keeping current suppliers: {e}")
            return False

        self._retired_adapters.extend(previous)
        return True

    def get_stats(self) -> dict:
        """Get worker statistics."""
        stats = {"running": self._running}
        if self.registry is not None:
            stats["suppliers"] = self.registry.names()
        if self.worker_manager:
            stats["workers"] = self.worker_manager.get_stats()
        return stats


def setup_signal_handlers(worker: HubWorker, loop: asyncio.AbstractEventLoop):
    """Setup signal handlers for graceful shutdown and reload."""
    def shutdown_handler():
        logger.info("Received shutdown signal")
        loop.create_task(worker.stop())

    def reload_handler():
        logger.info("Received reload signal")
        worker.reload_registry()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: shutdown_handler())

    if hasattr(signal, "SIGHUP"):
        try:
            loop.add_signal_handler(signal.SIGHUP, reload_handler)
        except NotImplementedError:
            pass


async def main():
    """Main entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    worker = HubWorker(settings)
    setup_signal_handlers(worker, asyncio.get_running_loop())

    try:
        await worker.start()
        await worker.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
