"""Postgres persistence for feeds and articles."""

from .connection import DatabaseConfig, create_connection_pool
from .init import init_database, validate_connection
from .repository import FeedRepository, PostgresRepository

__all__ = [
    "DatabaseConfig",
    "FeedRepository",
    "PostgresRepository",
    "create_connection_pool",
    "init_database",
    "validate_connection",
]
