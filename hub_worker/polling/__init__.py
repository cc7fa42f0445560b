"""
Polling of vendor APIs for api-poll suppliers.
"""
from .scheduler import FetchScheduler

__all__ = ["FetchScheduler"]
