"""Database connection management."""

import os
from typing import Any, Dict

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool


class DatabaseConfig:
    """Database configuration."""

    def __init__(self, config: Dict[str, Any]) -> None:
        """Initialize database config from dict."""
        self.host = config.get("host", "localhost")
        self.port = config.get("port", 5432)
        self.database = config.get("database", "feedsync")
        self.user = config.get("user", "feedsync")
        self.min_size = config.get("min_pool_size", 1)
        self.max_size = config.get("max_pool_size", 10)

        # Handle password from environment variable if specified
        password_env = config.get("password_env")
        if password_env and os.environ.get(password_env):
            self.password = os.environ[password_env]
        else:
            self.password = config.get("password") or ""

    @property
    def connection_string(self) -> str:
        """Get psycopg connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


def create_connection_pool(config: Dict[str, Any]) -> AsyncConnectionPool:
    """Create a closed pool; the caller opens and closes it."""
    db_config = DatabaseConfig(config)
    return AsyncConnectionPool(
        db_config.connection_string,
        min_size=db_config.min_size,
        max_size=db_config.max_size,
        kwargs={"row_factory": dict_row},
        open=False,
    )
