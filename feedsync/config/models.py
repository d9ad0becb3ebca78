"""Configuration models."""

from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; feedsync/1.0; +https://github.com/feedsync/feedsync)"
)


class RedisConfig(BaseModel):
    """Redis connection used for the job queue and the article cache."""

    host: str = Field("localhost", description="Redis host")
    port: int = Field(6379, description="Redis port")
    password: Optional[str] = Field(None, description="Redis password")
    password_env: Optional[str] = Field(None, description="Environment variable for password")
    db: int = Field(0, description="Redis logical database", ge=0)
    key_prefix: str = Field("feedsync", description="Prefix for queue keys")


class PostgresConfig(BaseModel):
    """Postgres configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field("feedsync", description="Database name")
    user: str = Field("feedsync", description="Database user")
    password: Optional[str] = Field(None, description="Database password")
    password_env: Optional[str] = Field(None, description="Environment variable for password")
    min_pool_size: int = Field(1, ge=1)
    max_pool_size: int = Field(10, ge=1)


class HttpConfig(BaseModel):
    """Outbound HTTP settings."""

    user_agent: str = Field(DEFAULT_USER_AGENT, description="User-Agent header")
    timeout: float = Field(10.0, description="Article fetch timeout in seconds", gt=0)
    feed_timeout: float = Field(40.0, description="Feed fetch timeout in seconds", gt=0)


class CacheConfig(BaseModel):
    """Article cache TTLs."""

    metadata_ttl_seconds: int = Field(24 * 60 * 60, description="TTL of article metadata", ge=1)
    readable_ttl_seconds: int = Field(60 * 60, description="TTL of readable articles", ge=1)


class SyncConfig(BaseModel):
    """Per-feed sync burst control."""

    chunk_size: int = Field(10, description="Articles processed concurrently per chunk", ge=1)
    chunk_delay_ms: int = Field(1000, description="Pause between chunks", ge=0)


class WorkerConfig(BaseModel):
    """Worker pool and retry policy."""

    concurrency: int = Field(5, description="Jobs processed concurrently per worker", ge=1)
    rate_limit_max: int = Field(100, description="Jobs per rate-limit window", ge=1)
    rate_limit_duration_ms: int = Field(60_000, description="Rate-limit window", ge=1)
    max_attempts: int = Field(3, description="Attempts before a job fails", ge=1)
    backoff_delay_ms: int = Field(1000, description="Initial exponential backoff", ge=0)
    lock_duration_ms: int = Field(30_000, description="Job lock lease", ge=1000)
    stalled_interval_ms: int = Field(30_000, description="Stalled job check period", ge=1000)
    max_stalled_count: int = Field(1, description="Stalls tolerated before failing", ge=0)
    poll_interval_ms: int = Field(500, description="Idle poll period", ge=1)
    import_timeout_seconds: float = Field(60.0, description="Wait budget for imports", gt=0)


class SchedulerConfig(BaseModel):
    """Periodic feed scheduling."""

    interval_seconds: int = Field(120, description="Seconds between ticks", ge=1)
    page_size: int = Field(20, description="Feeds fetched per page", ge=1, le=100)
    stale_after_seconds: int = Field(600, description="Age before a feed is re-synced", ge=0)
    placeholder_prefix: str = Field(
        "default-feed", description="Link prefix of saved-articles pseudo feeds"
    )


class ConfigModel(BaseModel):
    """Main configuration model."""

    redis: RedisConfig = Field(default_factory=RedisConfig)
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
