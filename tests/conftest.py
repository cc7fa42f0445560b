"""
Shared pytest fixtures for MachineHub tests.

Provides fixtures for:
- Supplier configurations and a registry built from them
- Redis (fakeredis) and the delivery queue
- In-memory repositories
- Settings with delivery defaults pinned
"""
import os
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from freezegun import freeze_time as _freeze_time

# Test environment configuration
os.environ.setdefault("ENVIRONMENT", "test")

from machinehub.config import AppSettings, DeliverySettings, PollingSettings
from machinehub.domain.entities import (
    RateLimitPolicy,
    SupplierConfig,
    SupplierMode,
    TenantConfig,
)
from machinehub.infrastructure.messaging import DeliveryQueue
from machinehub.suppliers import (
    DejongAdapter,
    FrankeAdapter,
    SupplierRegistry,
    WMFAdapter,
)

from tests.fakes import InMemoryFetchLogRepository, InMemoryTelemetryRepository


# ============================================================================
# Supplier Fixtures
# ============================================================================

@pytest.fixture
def wmf_config() -> SupplierConfig:
    return SupplierConfig(
        name="wmf",
        mode=SupplierMode.WEBHOOK,
        adapter="wmf",
        display_name="WMF",
        skip_ip_check=True,
        rate_limit=RateLimitPolicy(requests=30, per_seconds=60),
        tenants={
            "acme": TenantConfig("acme", "https://acme.example/hooks/telemetry", "acme-key"),
            "globex": TenantConfig("globex", "https://globex.example/in", None),
            "initech": TenantConfig("initech", None, None),
        },
    )


@pytest.fixture
def franke_config() -> SupplierConfig:
    return SupplierConfig(
        name="franke",
        mode=SupplierMode.WEBHOOK,
        adapter="franke",
        display_name="Franke",
        subscription_name="franke-sub",
        allowed_ips=("10.0.0.0/8", "192.168.1.20"),
        tenants={
            "acme": TenantConfig("acme", "https://acme.example/hooks/franke", None),
        },
    )


@pytest.fixture
def dejong_config() -> SupplierConfig:
    return SupplierConfig(
        name="dejong",
        mode=SupplierMode.API_POLL,
        adapter="dejong",
        display_name="Dejong",
        tenants={
            "acme": TenantConfig("acme", "https://acme.example/hooks/dejong", None),
            "globex": TenantConfig("globex", "https://globex.example/dejong", None),
        },
        options={"base_url": "https://api.dejong.test/v1", "api_key": "dejong-key"},
    )


@pytest.fixture
def registry(wmf_config, franke_config, dejong_config) -> SupplierRegistry:
    return SupplierRegistry([
        WMFAdapter(wmf_config),
        FrankeAdapter(franke_config),
        DejongAdapter(dejong_config),
    ])


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def test_settings() -> AppSettings:
    """Settings with delivery and polling values fixed for assertions."""
    return AppSettings(
        environment="test",
        delivery=DeliverySettings(
            timeout=5.0,
            max_attempts=3,
            backoff_base_seconds=30.0,
            backoff_max_seconds=900.0,
            log_only=False,
        ),
        polling=PollingSettings(
            default_lookback_minutes=60,
            sweep_batch_size=500,
        ),
    )


# ============================================================================
# Redis Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def mock_redis():
    """
    Redis client for unit tests.

    Uses fakeredis for realistic Redis behavior.
    """
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest_asyncio.fixture
async def delivery_queue(mock_redis) -> DeliveryQueue:
    return DeliveryQueue(
        client=mock_redis,
        stream_name="test:deliveries",
        retry_set="test:deliveries:retry",
        group_name="test_workers",
    )


@pytest.fixture
def mock_queue():
    """Delivery queue mock for tests that only check what was enqueued."""
    enqueued = []

    async def enqueue_many(tasks):
        tasks = list(tasks)
        enqueued.extend(tasks)
        return [f"{i}-0" for i in range(len(tasks))]

    queue = AsyncMock(spec=DeliveryQueue)
    queue.enqueue = AsyncMock(return_value="1-0")
    queue.enqueue_many = AsyncMock(side_effect=enqueue_many)
    queue.schedule_retry = AsyncMock(return_value=0.0)
    queue.consumer = MagicMock()
    queue.enqueued = enqueued
    return queue


# ============================================================================
# Repository Fixtures
# ============================================================================

@pytest.fixture
def telemetry_repository() -> InMemoryTelemetryRepository:
    return InMemoryTelemetryRepository()


@pytest.fixture
def fetch_log_repository() -> InMemoryFetchLogRepository:
    return InMemoryFetchLogRepository()


def scope_for(repository):
    """Repository scope factory that always yields ``repository``."""
    @asynccontextmanager
    async def scope():
        yield repository
    return scope


@pytest.fixture
def telemetry_scope(telemetry_repository):
    return scope_for(telemetry_repository)


@pytest.fixture
def fetch_log_scope(fetch_log_repository):
    return scope_for(fetch_log_repository)


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def freeze_time():
    """
    Freeze time for deterministic tests.

    Usage:
        def test_something(freeze_time):
            with freeze_time("2026-10-19 12:00:00"):
                ...
    """
    return _freeze_time
