"""Article cache over a TTL key-value store."""

from .article_cache import ArticleCache, hash_link
from .store import CacheStore, RedisCacheStore

__all__ = ["ArticleCache", "CacheStore", "RedisCacheStore", "hash_link"]
