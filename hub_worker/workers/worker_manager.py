"""
Lifecycle for the worker process components.

The delivery worker consumes the queue; the fetch scheduler (optional)
feeds it. Producers start after and stop before the consumer.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..polling import FetchScheduler
from .delivery_worker import DeliveryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Starts, stops and watches the background components.

    A component found stopped while the manager is running is restarted
    by the watch loop.
    """

    def __init__(
        self,
        delivery_worker: DeliveryWorker,
        fetch_scheduler: Optional[FetchScheduler] = None,
        health_check_interval: float = 60.0,
    ):
        self.delivery_worker = delivery_worker
        self.fetch_scheduler = fetch_scheduler
        self._interval = health_check_interval

        self._running = False
        self._started_at: Optional[datetime] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._restarts: Dict[str, int] = {}

    def _components(self) -> List[Tuple[str, Any]]:
        components = [("delivery_worker", self.delivery_worker)]
        if self.fetch_scheduler is not None:
            components.append(("fetch_scheduler", self.fetch_scheduler))
        return components

    async def start_all(self) -> None:
        if self._running:
            logger.warning("Worker manager already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        for name, component in self._components():
            await component.start()
            logger.info(f"Started {name}")

        self._watch_task = asyncio.create_task(self._watch_loop(), name="worker_watch")

    async def stop_all(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

        for name, component in reversed(self._components()):
            await component.stop()
            logger.info(f"Stopped {name}")

    async def _watch_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.check_workers()
            except Exception as e:
                logger.error(f"Worker check failed: {e}", exc_info=True)

    async def check_workers(self) -> List[str]:
        """
        Restart components that are no longer running.

        Returns:
            Names of the restarted components.
        """
        restarted = []
        if not self._running:
            return restarted

        for name, component in self._components():
            if component.is_running:
                continue
            logger.warning(f"{name} is not running, restarting")
            await component.start()
            self._restarts[name] = self._restarts.get(name, 0) + 1
            restarted.append(name)
        return restarted

    def _status(self) -> Dict[str, bool]:
        return {name: component.is_running for name, component in self._components()}

    def get_health(self) -> Dict[str, Any]:
        status = self._status()
        uptime = 0.0
        if self._started_at is not None:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
        return {
            "healthy": all(status.values()),
            "status": "running" if self._running else "stopped",
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime,
            "workers": status,
            "restarts": dict(self._restarts),
        }

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "manager": {
                "running": self._running,
                "started_at": self._started_at.isoformat() if self._started_at else None,
                "restarts": dict(self._restarts),
            },
        }
        for name, component in self._components():
            stats[name] = component.get_stats()
        return stats

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_healthy(self) -> bool:
        return all(self._status().values())
