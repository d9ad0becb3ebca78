"""Feed and article persistence."""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

import pendulum
from psycopg_pool import AsyncConnectionPool

from ..models import ArticleMetadata, Feed, NewArticle

ARTICLE_COLUMNS = (
    "feed_id",
    "title",
    "link",
    "description",
    "image",
    "author",
    "site_name",
    "readable",
    "published_at",
)

INSERT_ARTICLE_SQL = """
    INSERT INTO articles ({columns})
    VALUES ({values})
    ON CONFLICT (link) DO NOTHING
    RETURNING id
""".format(
    columns=", ".join(ARTICLE_COLUMNS),
    values=", ".join(f"%({name})s" for name in ARTICLE_COLUMNS),
)


class FeedRepository(Protocol):
    """Storage operations the pipeline depends on."""

    async def find_outdated_feeds(
        self, limit: int, offset: int, stale_before: datetime
    ) -> List[Feed]:
        ...

    async def mark_synced(self, feed_id: str, synced_at: Optional[datetime] = None) -> None:
        ...

    async def create_articles(self, feed_id: str, articles: Sequence[ArticleMetadata]) -> int:
        ...

    async def exists_article_with_link(self, link: str) -> bool:
        ...


class PostgresRepository:
    """FeedRepository backed by Postgres."""

    def __init__(self, pool: AsyncConnectionPool, placeholder_prefix: str = "default-feed") -> None:
        """Initialize repository."""
        self.pool = pool
        self.placeholder_prefix = placeholder_prefix

    async def find_outdated_feeds(
        self, limit: int, offset: int, stale_before: datetime
    ) -> List[Feed]:
        """Feeds not synced since ``stale_before``, least recently synced first."""
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT id, name, link, type, synced_at, created_at, updated_at
                    FROM feeds
                    WHERE link NOT LIKE %s
                      AND (synced_at IS NULL OR synced_at < %s)
                    ORDER BY synced_at ASC NULLS FIRST, id
                    LIMIT %s OFFSET %s
                    """,
                    (f"{self.placeholder_prefix}%", stale_before, limit, offset),
                )
                rows = await cur.fetchall()
        return [Feed.model_validate(row) for row in rows]

    async def mark_synced(self, feed_id: str, synced_at: Optional[datetime] = None) -> None:
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    "UPDATE feeds SET synced_at = %s WHERE id = %s",
                    (synced_at or pendulum.now("UTC"), feed_id),
                )
            await conn.commit()

    async def create_articles(self, feed_id: str, articles: Sequence[ArticleMetadata]) -> int:
        """
        Insert articles for a feed, skipping links that already exist.

        Returns:
            Number of rows inserted
        """
        rows = [NewArticle(feed_id=feed_id, **article.model_dump()) for article in articles]
        inserted = 0
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                for row in rows:
                    await cur.execute(
                        INSERT_ARTICLE_SQL, row.model_dump(include=set(ARTICLE_COLUMNS))
                    )
                    if await cur.fetchone() is not None:
                        inserted += 1
            await conn.commit()
        return inserted

    async def exists_article_with_link(self, link: str) -> bool:
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 FROM articles WHERE link = %s LIMIT 1", (link,))
                return await cur.fetchone() is not None
