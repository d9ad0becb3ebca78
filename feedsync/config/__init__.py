"""Configuration management for feedsync."""

from .loader import Config, load_config, save_config
from .models import (
    CacheConfig,
    ConfigModel,
    HttpConfig,
    PostgresConfig,
    RedisConfig,
    SchedulerConfig,
    SyncConfig,
    WorkerConfig,
)

__all__ = [
    "Config",
    "ConfigModel",
    "CacheConfig",
    "HttpConfig",
    "PostgresConfig",
    "RedisConfig",
    "SchedulerConfig",
    "SyncConfig",
    "WorkerConfig",
    "load_config",
    "save_config",
]
