"""Job handlers, one per queue."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..db import FeedRepository
from ..errors import FetchError, ValidationError
from ..ingestion import FeedParser
from ..models import (
    ArticleMetadata,
    ExtractArticleMetadataInput,
    ImportArticleInput,
    RawFeedEntry,
    RefreshArticleContentInput,
    SyncFeedArticlesInput,
    WireModel,
)
from ..queue import Job, JobHandler, QueueName
from ..utils import chunked, is_valid_link
from .articles import ArticleProcessor

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=WireModel)

Sleep = Callable[[float], Awaitable[Any]]


def parse_payload(model: Type[M], job: Job) -> M:
    """Validate a job payload; malformed payloads are not retried."""
    try:
        return model.model_validate(job.payload)
    except PydanticValidationError as e:
        raise ValidationError(job.payload, f"Invalid {job.queue} payload") from e


class SyncFeedArticlesHandler:
    """Fetch a feed and persist metadata for every article not seen before."""

    def __init__(
        self,
        parser: FeedParser,
        processor: ArticleProcessor,
        repository: FeedRepository,
        chunk_size: int = 10,
        chunk_delay_ms: int = 1000,
        sleep: Optional[Sleep] = None,
    ) -> None:
        """Initialize handler; ``sleep`` is the pause between chunks."""
        self.parser = parser
        self.processor = processor
        self.repository = repository
        self.chunk_size = chunk_size
        self.chunk_delay_ms = chunk_delay_ms
        self.sleep = sleep or asyncio.sleep

    async def _process_entry(self, job: Job, entry: RawFeedEntry) -> Optional[ArticleMetadata]:
        result = await self.processor.retrieve_article_metadata(entry, use_cache=False)
        if result.is_err():
            logger.warning("[%s] Skipping entry: %s", job.id, result.error)
            return None
        return result.value

    async def __call__(self, job: Job) -> Dict[str, Any]:
        feed = parse_payload(SyncFeedArticlesInput, job).feed
        logger.info("[%s] Syncing feed %s (%s)", job.id, feed.name, feed.link)

        entries_result = await self.parser.parse_feed(feed.link)
        if entries_result.is_err():
            logger.error(
                "[%s] Error retrieving articles from feed %s: %s",
                job.id,
                feed.name,
                entries_result.error,
            )
            raise entries_result.error
        entries = entries_result.value

        skipped_invalid = 0
        skipped_known = 0
        seen = set()
        candidates = []
        for entry in entries:
            if not is_valid_link(entry.link):
                logger.warning("[%s] Invalid link found: %s", job.id, entry.link)
                skipped_invalid += 1
                continue
            if entry.link in seen or await self.processor.is_known(entry.link):
                skipped_known += 1
                continue
            seen.add(entry.link)
            candidates.append(entry)

        articles = []
        for index, chunk in enumerate(chunked(candidates, self.chunk_size)):
            if index > 0 and self.chunk_delay_ms > 0:
                await self.sleep(self.chunk_delay_ms / 1000)
            results = await asyncio.gather(*(self._process_entry(job, entry) for entry in chunk))
            articles.extend(article for article in results if article is not None)

        inserted = 0
        if articles:
            inserted = await self.repository.create_articles(feed.id, articles)
            # Cache only after the rows exist so a failed insert is retried
            for article in articles:
                await self.processor.cache.put_metadata(article.link, article)

        logger.info(
            "[%s] %d new articles from %s (%d known, %d invalid)",
            job.id,
            inserted,
            feed.name,
            skipped_known,
            skipped_invalid,
        )
        return {
            "feedId": feed.id,
            "entries": len(entries),
            "processed": len(articles),
            "inserted": inserted,
            "skippedKnown": skipped_known,
            "skippedInvalid": skipped_invalid,
        }


class ImportArticleHandler:
    """Import a single article by URL."""

    def __init__(self, processor: ArticleProcessor) -> None:
        self.processor = processor

    async def __call__(self, job: Job) -> Dict[str, Any]:
        data = parse_payload(ImportArticleInput, job)
        if not is_valid_link(data.url):
            raise ValidationError(data.url, "Invalid url")

        logger.info("[%s] Processing article %s from %s", job.id, data.title, data.url)
        entry = RawFeedEntry(title=data.title, link=data.url)
        result = await self.processor.retrieve_article_metadata(
            entry, make_readable=data.make_readable, use_cache=False
        )
        return result.unwrap().to_wire()


class GetUpdatedArticleHandler:
    """Re-extract an article and report whether its readable content changed."""

    def __init__(self, processor: ArticleProcessor) -> None:
        self.processor = processor

    async def __call__(self, job: Job) -> Dict[str, Any]:
        data = parse_payload(RefreshArticleContentInput, job)
        if not is_valid_link(data.url):
            raise ValidationError(data.url, "Invalid link")

        page = (await self.processor.fetcher.fetch(data.url)).unwrap()
        if not page.is_html:
            raise FetchError(data.url, f"Invalid response content type {page.mime_type}")

        logger.info("[%s] Updating article %s from %s", job.id, data.slug, data.url)
        article = await self.processor.refresh_readable_article(data.url, page.text)
        if article is None:
            logger.info("[%s] No updated content found for article %s", job.id, data.slug)

        return {
            "isUpdated": article is not None,
            "article": article.to_wire() if article is not None else None,
        }


class ExtractMetadataHandler:
    """Metadata of a page without caching a readable view."""

    def __init__(self, processor: ArticleProcessor) -> None:
        self.processor = processor

    async def __call__(self, job: Job) -> Dict[str, Any]:
        url = parse_payload(ExtractArticleMetadataInput, job).url
        if not is_valid_link(url):
            raise ValidationError(url, "Invalid url")

        page = (await self.processor.fetcher.fetch(url)).unwrap()
        if not page.is_html:
            raise FetchError(url, "Article not HTML")

        html = page.text
        readable = await asyncio.to_thread(self.processor.readability.is_readable, html)
        extracted = await asyncio.to_thread(self.processor.metadata.extract, html, url)
        return self.processor.compose_metadata(url, extracted.unwrap(), readable).to_wire()


def build_handlers(
    parser: FeedParser,
    processor: ArticleProcessor,
    repository: FeedRepository,
    chunk_size: int = 10,
    chunk_delay_ms: int = 1000,
) -> Dict[str, JobHandler]:
    """Handler for every queue name."""
    return {
        QueueName.SYNC_FEED_ARTICLES: SyncFeedArticlesHandler(
            parser, processor, repository, chunk_size=chunk_size, chunk_delay_ms=chunk_delay_ms
        ),
        QueueName.IMPORT_ARTICLE: ImportArticleHandler(processor),
        QueueName.GET_UPDATED_ARTICLE: GetUpdatedArticleHandler(processor),
        QueueName.EXTRACT_METADATA: ExtractMetadataHandler(processor),
    }
