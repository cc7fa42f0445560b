"""
Redis-backed shared state for the API processes.
"""
from .rate_limiter import RateLimiter

__all__ = ["RateLimiter"]
