"""
Configuration management for MachineHub.

Uses Pydantic settings for validation and environment variable support.
Supplier-specific configuration (modes, tenants, allow-lists) lives in the
YAML file referenced by ``IngestionSettings.suppliers_file``.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL configuration for telemetry and watermark storage."""

    model_config = SettingsConfigDict(
        env_prefix='DATABASE_',
        env_file='.env',
        extra='ignore'
    )

    host: str = Field(default='localhost', description='Database host')
    port: int = Field(default=5432, description='Database port')
    name: str = Field(default='machinehub', description='Database name')
    user: str = Field(default='postgres', description='Database user')
    password: str = Field(default='postgres', description='Database password')
    pool_size: int = Field(default=10, description='Connection pool size')
    max_overflow: int = Field(default=20, description='Max overflow connections')
    echo_sql: bool = Field(default=False, description='Echo SQL queries')
    statement_timeout_ms: int = Field(default=30000, description='Server-side statement timeout')

    @property
    def url(self) -> str:
        """Build database URL."""
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class RedisSettings(BaseSettings):
    """Redis configuration for the delivery task queue."""

    model_config = SettingsConfigDict(
        env_prefix='REDIS_',
        env_file='.env',
        extra='ignore'
    )

    host: str = Field(default='localhost', description='Redis host')
    port: int = Field(default=6379, description='Redis port')
    db: int = Field(default=0, description='Redis database number')
    password: Optional[str] = Field(default=None, description='Redis password')
    ssl: bool = Field(default=False, description='Use SSL connection')

    # Stream settings
    stream_max_len: int = Field(default=100000, description='Max stream length')
    delivery_stream: str = Field(default='machinehub:deliveries', description='Delivery task stream')
    retry_set: str = Field(default='machinehub:deliveries:retry', description='Sorted set of scheduled retries')
    consumer_group: str = Field(default='delivery_workers', description='Consumer group name')
    consumer_name: Optional[str] = Field(
        default=None,
        description='Stable consumer name within the group; defaults to host and pid'
    )
    rate_limit_prefix: str = Field(default='machinehub:ratelimit', description='Key prefix for webhook rate limits')

    @property
    def url(self) -> str:
        """Build Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class DeliverySettings(BaseSettings):
    """Outbound delivery to tenant destinations."""

    model_config = SettingsConfigDict(
        env_prefix='DELIVERY_',
        env_file='.env',
        extra='ignore'
    )

    timeout: float = Field(default=30.0, description='Per-attempt HTTP timeout in seconds')
    max_attempts: int = Field(default=3, description='Attempts before a delivery is marked failed')
    backoff_base_seconds: float = Field(default=30.0, description='Delay before the second attempt')
    backoff_max_seconds: float = Field(default=900.0, description='Upper bound for retry delay')
    log_only: bool = Field(
        default=False,
        description='Log the would-be payload and mark forwarded instead of posting'
    )
    user_agent: str = Field(default='MachineHub/1.0')
    batch_size: int = Field(default=10, description='Tasks read from the stream per batch')
    block_ms: int = Field(default=5000, description='Stream read block time in milliseconds')
    retry_poll_interval: float = Field(default=1.0, description='Seconds between retry promotions')
    claim_idle_ms: int = Field(
        default=60000,
        description='Unacked stream entries idle this long are handed out again'
    )
    claim_interval: float = Field(default=30.0, description='Seconds between idle entry claims')


class PollingSettings(BaseSettings):
    """API polling and forwarding sweep configuration."""

    model_config = SettingsConfigDict(
        env_prefix='POLLING_',
        env_file='.env',
        extra='ignore'
    )

    enabled: bool = Field(default=True)
    fetch_interval: float = Field(default=300.0, description='Seconds between vendor API fetches')
    forward_interval: float = Field(default=120.0, description='Seconds between forwarding sweeps')
    default_lookback_minutes: int = Field(default=60, description='Window used when no watermark exists')
    page_limit: int = Field(default=5000, description='Items requested per page')
    max_pages: int = Field(default=200, description='Hard stop for a single fetch window')
    sweep_batch_size: int = Field(default=500, description='Pending records enqueued per sweep')
    request_timeout: float = Field(default=30.0, description='Vendor API timeout in seconds')


class IngestionSettings(BaseSettings):
    """Webhook ingestion configuration."""

    model_config = SettingsConfigDict(
        env_prefix='INGESTION_',
        env_file='.env',
        extra='ignore'
    )

    suppliers_file: Path = Field(
        default=Path(__file__).parent.parent / 'config' / 'suppliers.yaml',
        description='Supplier configuration file'
    )
    default_rate_limit: int = Field(default=30, description='Requests per window per supplier and tenant')
    default_rate_window_seconds: int = Field(default=60)
    trust_forwarded_for: bool = Field(
        default=False,
        description='Take the client address from X-Forwarded-For'
    )
    allowed_webhook_rate: int = Field(default=1000, description='Value of WebHook-Allowed-Rate')


class AppSettings(BaseSettings):
    """Main application settings for MachineHub."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # Application
    app_name: str = Field(default='MachineHub')
    app_version: str = Field(default='1.0.0')
    debug: bool = Field(default=False)
    environment: str = Field(default='development')

    # Server
    host: str = Field(default='0.0.0.0')
    port: int = Field(default=8000)

    # API
    api_prefix: str = Field(default='/api')
    api_version: str = Field(default='v1')

    # Logging
    log_level: str = Field(default='INFO')

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return AppSettings()


settings = get_settings()
