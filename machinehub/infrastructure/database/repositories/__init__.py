# Repository Implementations

from .telemetry_repository import TelemetryRepository
from .fetch_log_repository import FetchLogRepository

__all__ = [
    "TelemetryRepository",
    "FetchLogRepository",
]
