"""
Storage access for the background process.
"""
from .repository_scope import (
    FetchLogScope,
    TelemetryScope,
    fetch_log_repository_scope,
    telemetry_repository_scope,
)

__all__ = [
    "FetchLogScope",
    "TelemetryScope",
    "fetch_log_repository_scope",
    "telemetry_repository_scope",
]
