"""Per-article processing shared by the job handlers."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import pendulum
from pendulum.parsing.exceptions import ParserError

from ..cache import ArticleCache
from ..db import FeedRepository
from ..errors import ValidationError
from ..ingestion import HttpFetcher, MetadataExtractor, ReadabilityExtractor
from ..models import ArticleMetadata, RawFeedEntry, ReadableArticle
from ..result import Err, Ok, Result
from ..utils import is_valid_link, site_name_from_link

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"


def _parse_page_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = pendulum.parse(value, strict=False)
    except (ParserError, ValueError, TypeError):
        return None
    return parsed if isinstance(parsed, datetime) else None


class ArticleProcessor:
    """Turn article links into metadata, caching readable views on the way."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        readability: ReadabilityExtractor,
        metadata: MetadataExtractor,
        cache: ArticleCache,
        repository: Optional[FeedRepository] = None,
    ) -> None:
        """Initialize processor."""
        self.fetcher = fetcher
        self.readability = readability
        self.metadata = metadata
        self.cache = cache
        self.repository = repository

    def build_default_metadata(
        self,
        link: str,
        title: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> ArticleMetadata:
        """Degraded record for pages that could not be fetched or parsed."""
        return ArticleMetadata(
            title=title or UNTITLED,
            link=link,
            readable=False,
            published_at=published_at or pendulum.now("UTC"),
            site_name=site_name_from_link(link),
        )

    def compose_metadata(
        self,
        link: str,
        extracted: Dict[str, Any],
        readable: bool,
        title: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> ArticleMetadata:
        """Merge feed-provided values over extracted page metadata."""
        return ArticleMetadata(
            title=title or extracted.get("title") or UNTITLED,
            link=link,
            description=extracted.get("description"),
            image=extracted.get("image"),
            author=extracted.get("author"),
            site_name=extracted.get("site_name") or site_name_from_link(link),
            readable=readable,
            published_at=(
                published_at
                or _parse_page_date(extracted.get("published_at"))
                or pendulum.now("UTC")
            ),
        )

    async def is_known(self, link: str) -> bool:
        """Whether the link was already processed, per cache or database."""
        if await self.cache.get_metadata(link) is not None:
            return True
        if self.repository is None:
            return False
        return await self.repository.exists_article_with_link(link)

    async def retrieve_readable_article(self, link: str, html: str) -> Optional[ReadableArticle]:
        """Readable article for a page, or None when it is not readable."""
        result = await self.readability.extract(link, html)
        if result.is_err():
            logger.warning("Readable extraction failed: %s", result.error)
            return None
        return result.value or None

    async def create_readable_article_cache(self, link: str, article: ReadableArticle) -> bool:
        return await self.cache.put_readable(link, article)

    async def refresh_readable_article(self, link: str, html: str) -> Optional[ReadableArticle]:
        """Re-extract a page; None when it is not readable or its content is unchanged."""
        article = await self.retrieve_readable_article(link, html)
        if article is None:
            return None

        cached = await self.cache.get_readable(link)
        if cached is not None and cached.content_hash == article.content_hash:
            logger.debug("Readable content unchanged for %s", link)
            return None

        await self.create_readable_article_cache(link, article)
        return article

    async def retrieve_article_metadata(
        self,
        entry: RawFeedEntry,
        make_readable: bool = True,
        use_cache: bool = True,
    ) -> Result[ArticleMetadata, ValidationError]:
        """Metadata for one entry; degraded but never missing for a valid link."""
        link = entry.link
        if not is_valid_link(link):
            return Err(ValidationError(link, "Invalid article link"))

        if use_cache:
            cached = await self.cache.get_metadata(link)
            if cached is not None:
                return Ok(cached)

        fetched = await self.fetcher.fetch(link)
        if fetched.is_err():
            logger.warning("Error fetching article: %s", fetched.error)
            return Ok(self.build_default_metadata(link, entry.title, entry.published_at))

        page = fetched.value
        if not page.is_html:
            logger.warning("Article not HTML (%s): %s", page.mime_type, link)
            return Ok(self.build_default_metadata(link, entry.title, entry.published_at))

        html = page.text
        readable = False
        if make_readable:
            article = await self.retrieve_readable_article(link, html)
            if article is not None:
                await self.create_readable_article_cache(link, article)
                readable = True
            else:
                logger.info("Readable article not found: %s", link)

        extracted = await asyncio.to_thread(self.metadata.extract, html, link)
        if extracted.is_err():
            logger.warning("Using default metadata for %s: %s", link, extracted.error)
            default = self.build_default_metadata(link, entry.title, entry.published_at)
            return Ok(default.model_copy(update={"readable": readable}))

        return Ok(
            self.compose_metadata(
                link,
                extracted.value,
                readable,
                title=entry.title,
                published_at=entry.published_at,
            )
        )
