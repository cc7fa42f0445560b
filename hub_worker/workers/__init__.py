"""
Background workers for the MachineHub worker process.

Workers handle async processing tasks:
- Tenant delivery with retries
- Lifecycle and health of the polling loops
"""
from .delivery_worker import DeliveryWorker
from .worker_manager import WorkerManager

__all__ = [
    "DeliveryWorker",
    "WorkerManager",
]
