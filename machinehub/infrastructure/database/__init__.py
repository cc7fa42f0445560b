"""
Database infrastructure for MachineHub.
"""
from .connection import DatabaseManager, get_db, get_db_session, health_check
from .repositories import FetchLogRepository, TelemetryRepository

__all__ = [
    "DatabaseManager",
    "get_db",
    "get_db_session",
    "health_check",
    "FetchLogRepository",
    "TelemetryRepository",
]
