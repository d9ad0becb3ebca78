"""Runtime wiring: clients, queues, workers and the scheduler."""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

import httpx
from psycopg_pool import AsyncConnectionPool
from redis.asyncio import Redis

from ..cache import ArticleCache, RedisCacheStore
from ..config import Config
from ..db import FeedRepository, PostgresRepository, create_connection_pool
from ..ingestion import FeedParser, HttpFetcher, MetadataExtractor, ReadabilityExtractor
from ..models import ArticleMetadata, ImportArticleInput
from ..queue import Job, JobOptions, JobQueue, QueueName, RateLimit, Worker
from ..scheduler import Scheduler
from .articles import ArticleProcessor
from .jobs import build_handlers

logger = logging.getLogger(__name__)


class PipelineRuntime:
    """Owns every long-lived resource of a feedsync process."""

    def __init__(
        self,
        config: Config,
        redis: Optional[Redis] = None,
        pool: Optional[AsyncConnectionPool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        repository: Optional[FeedRepository] = None,
    ) -> None:
        """Initialize runtime; injected clients stay owned by the caller."""
        self.config = config
        settings = config.config

        self._owns_redis = redis is None
        self.redis = redis or Redis(
            host=settings.redis.host,
            port=settings.redis.port,
            password=config.get_redis_password(),
            db=settings.redis.db,
            decode_responses=True,
        )

        self._owns_pool = pool is None and repository is None
        self.pool = pool
        if self.pool is None and repository is None:
            self.pool = create_connection_pool(config.get_db_config())
        self.repository = repository or PostgresRepository(
            self.pool, placeholder_prefix=settings.scheduler.placeholder_prefix
        )

        self._owns_http = http_client is None
        self.http_client = http_client or httpx.AsyncClient(follow_redirects=True)

        self.fetcher = HttpFetcher(
            self.http_client,
            user_agent=settings.http.user_agent,
            timeout=settings.http.timeout,
        )
        self.parser = FeedParser(self.fetcher, timeout=settings.http.feed_timeout)
        self.cache = ArticleCache(
            RedisCacheStore(self.redis),
            metadata_ttl=settings.cache.metadata_ttl_seconds,
            readable_ttl=settings.cache.readable_ttl_seconds,
        )
        self.processor = ArticleProcessor(
            self.fetcher,
            ReadabilityExtractor(),
            MetadataExtractor(),
            self.cache,
            self.repository,
        )

        job_options = JobOptions(
            max_attempts=settings.worker.max_attempts,
            backoff_delay_ms=settings.worker.backoff_delay_ms,
        )
        self.queues: Dict[str, JobQueue] = {
            name: JobQueue(
                self.redis, name, prefix=settings.redis.key_prefix, default_options=job_options
            )
            for name in QueueName.ALL
        }
        self.handlers = build_handlers(
            self.parser,
            self.processor,
            self.repository,
            chunk_size=settings.sync.chunk_size,
            chunk_delay_ms=settings.sync.chunk_delay_ms,
        )
        self.scheduler = Scheduler(
            self.repository,
            self.queues[QueueName.SYNC_FEED_ARTICLES],
            settings.scheduler,
        )
        self.workers: List[Worker] = []
        self._opened = False

    async def open(self) -> None:
        """Open the database pool."""
        if self._opened:
            return
        if self._owns_pool and self.pool is not None:
            await self.pool.open()
        self._opened = True

    async def close(self) -> None:
        """Stop workers and release every owned client."""
        await self.stop_workers()
        if self._owns_http:
            await self.http_client.aclose()
        if self._owns_pool and self.pool is not None and self._opened:
            await self.pool.close()
        if self._owns_redis:
            await self.redis.aclose()
        self._opened = False

    async def __aenter__(self) -> "PipelineRuntime":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def queue(self, name: str) -> JobQueue:
        if name not in self.queues:
            raise KeyError(f"Unknown queue: {name}")
        return self.queues[name]

    def create_worker(self, name: str) -> Worker:
        """Worker for one queue using the configured policy."""
        settings = self.config.config.worker

        def on_failed(job: Job, error: Exception) -> None:
            logger.error("Job %s on %s failed: %s", job.id, name, error)

        return Worker(
            self.queue(name),
            self.handlers[name],
            concurrency=settings.concurrency,
            rate_limit=RateLimit(
                max=settings.rate_limit_max, duration_ms=settings.rate_limit_duration_ms
            ),
            lock_duration_ms=settings.lock_duration_ms,
            stalled_interval_ms=settings.stalled_interval_ms,
            max_stalled_count=settings.max_stalled_count,
            poll_interval_ms=settings.poll_interval_ms,
            on_failed=on_failed,
        )

    def start_workers(self, names: Optional[Iterable[str]] = None) -> List[Worker]:
        """Start a worker per queue, all queues by default."""
        for name in names or QueueName.ALL:
            worker = self.create_worker(name)
            worker.start()
            self.workers.append(worker)
        return self.workers

    async def stop_workers(self) -> None:
        if self.workers:
            await asyncio.gather(*(worker.stop() for worker in self.workers))
        self.workers = []

    async def run_workers(
        self, stop_event: asyncio.Event, names: Optional[Iterable[str]] = None
    ) -> None:
        """Process jobs until ``stop_event`` is set."""
        self.start_workers(names)
        await stop_event.wait()
        await self.stop_workers()

    async def submit_import(
        self,
        url: str,
        title: Optional[str] = None,
        make_readable: bool = True,
        wait_timeout: Optional[float] = None,
    ) -> ArticleMetadata:
        """Enqueue an article import and wait for its metadata."""
        timeout = wait_timeout or self.config.config.worker.import_timeout_seconds
        handle = await self.queue(QueueName.IMPORT_ARTICLE).enqueue(
            ImportArticleInput(url=url, title=title, make_readable=make_readable)
        )
        logger.info("Import of %s queued as job %s", url, handle.id)
        result = await handle.wait_until_finished(timeout)
        return ArticleMetadata.model_validate(result)
