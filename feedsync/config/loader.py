"""Configuration loader."""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from .models import ConfigModel

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "REDIS_HOST": ("redis", "host"),
    "REDIS_PORT": ("redis", "port"),
    "REDIS_PASSWORD": ("redis", "password"),
    "USER_AGENT": ("http", "user_agent"),
    "CACHE_TTL_SECONDS": ("cache", "readable_ttl_seconds"),
    "SYNC_CHUNK_SIZE": ("sync", "chunk_size"),
    "SYNC_CHUNK_DELAY_MS": ("sync", "chunk_delay_ms"),
    "WORKER_CONCURRENCY": ("worker", "concurrency"),
    "RATE_LIMIT_MAX": ("worker", "rate_limit_max"),
    "RATE_LIMIT_DURATION_MS": ("worker", "rate_limit_duration_ms"),
    "POSTGRES_HOST": ("postgres", "host"),
    "POSTGRES_PORT": ("postgres", "port"),
    "POSTGRES_DB": ("postgres", "database"),
    "POSTGRES_USER": ("postgres", "user"),
    "POSTGRES_PASSWORD": ("postgres", "password"),
}


class Config:
    """Configuration manager."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Initialize config manager."""
        if config_path is None:
            config_path = Path.home() / ".config" / "feedsync" / "config.yaml"
        self.config_path = config_path
        self.environ = os.environ if environ is None else environ
        self._config: Optional[ConfigModel] = None

    @property
    def config(self) -> ConfigModel:
        """Get loaded config."""
        if self._config is None:
            self._config = load_config(self.config_path, self.environ)
        return self._config

    def get_redis_password(self) -> Optional[str]:
        """Resolve the Redis password, preferring ``password_env``."""
        redis = self.config.redis
        if redis.password_env:
            password = self.environ.get(redis.password_env)
            if password:
                return password
        return redis.password or None

    def get_db_config(self) -> Dict[str, Any]:
        """Get database configuration dict."""
        db_config = self.config.postgres.model_dump()

        # Handle password from environment if specified
        if db_config.get("password_env"):
            password = self.environ.get(db_config["password_env"])
            if password:
                db_config["password"] = password

        return db_config


def apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlay env-style settings on top of file values."""
    for env_name, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value.strip() == "":
            continue
        data.setdefault(section, {})
        if data[section] is None:
            data[section] = {}
        data[section][field] = value
    return data


def load_config(
    config_path: Path, environ: Optional[Mapping[str, str]] = None
) -> ConfigModel:
    """Load configuration from an optional YAML file plus environment."""
    environ = os.environ if environ is None else environ
    config_data: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}")

    config_data = apply_env_overrides(config_data, environ)

    try:
        return ConfigModel(**config_data)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}")


def save_config(config: ConfigModel, config_path: Path) -> None:
    """Save configuration to YAML file."""
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
