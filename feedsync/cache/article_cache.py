"""Advisory cache of article metadata and readable articles."""

import hashlib
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from ..models import ArticleMetadata, ReadableArticle
from .store import CacheStore

logger = logging.getLogger(__name__)

METADATA_NAMESPACE = "article-metadata"
READABLE_NAMESPACE = "article"


def hash_link(link: str) -> str:
    """First 16 hex characters of SHA-256(link)."""
    return hashlib.sha256(link.encode("utf-8")).hexdigest()[:16]


class ArticleCache:
    """Per-link cache; a miss means "recompute", never "does not exist"."""

    def __init__(
        self,
        store: CacheStore,
        metadata_ttl: int = 24 * 60 * 60,
        readable_ttl: int = 60 * 60,
    ) -> None:
        """Initialize cache with TTLs in seconds."""
        self.store = store
        self.metadata_ttl = metadata_ttl
        self.readable_ttl = readable_ttl

    @staticmethod
    def metadata_key(link: str) -> str:
        return f"{METADATA_NAMESPACE}:{hash_link(link)}"

    @staticmethod
    def readable_key(link: str) -> str:
        return f"{READABLE_NAMESPACE}:{hash_link(link)}"

    async def _read(self, key: str) -> Optional[str]:
        try:
            return await self.store.get(key)
        except RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

    async def _write(self, key: str, value: str, ttl: int) -> bool:
        try:
            await self.store.set(key, value, ttl_seconds=ttl)
            return True
        except RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)
            return False

    async def _delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    # Article metadata

    async def get_metadata(self, link: str) -> Optional[ArticleMetadata]:
        if not link:
            return None
        cached = await self._read(self.metadata_key(link))
        if not cached:
            return None
        try:
            return ArticleMetadata.model_validate_json(cached)
        except PydanticValidationError:
            logger.warning("Discarding malformed cached metadata for %s", link)
            return None

    async def put_metadata(self, link: str, metadata: ArticleMetadata) -> bool:
        return await self._write(self.metadata_key(link), metadata.to_wire_json(), self.metadata_ttl)

    async def delete_metadata(self, link: str) -> None:
        await self._delete(self.metadata_key(link))

    # Readable article

    async def get_readable(self, link: str) -> Optional[ReadableArticle]:
        if not link:
            return None
        cached = await self._read(self.readable_key(link))
        if not cached:
            return None
        try:
            return ReadableArticle.model_validate_json(cached)
        except PydanticValidationError:
            logger.warning("Discarding malformed cached readable article for %s", link)
            return None

    async def put_readable(self, link: str, article: ReadableArticle) -> bool:
        return await self._write(self.readable_key(link), article.to_wire_json(), self.readable_ttl)

    async def has_readable(self, link: str) -> bool:
        try:
            return await self.store.exists(self.readable_key(link))
        except RedisError as e:
            logger.warning("Cache lookup failed for %s: %s", link, e)
            return False

    async def delete_readable(self, link: str) -> None:
        await self._delete(self.readable_key(link))
