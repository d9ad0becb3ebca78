"""Periodic enqueueing of feeds that are due for a sync."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import pendulum

from ..config.models import SchedulerConfig
from ..db import FeedRepository
from ..errors import QueueError
from ..models import SyncFeedArticlesInput
from ..queue import JobOptions, JobQueue

logger = logging.getLogger(__name__)


@dataclass
class TickStats:
    """Outcome of one scheduler tick."""

    pages: int = 0
    feeds_seen: int = 0
    enqueued: int = 0
    coalesced: int = 0
    skipped_placeholders: int = 0
    enqueue_failures: int = 0
    aborted: bool = False


class Scheduler:
    """Enqueue a sync job for every outdated feed, least recently synced first."""

    def __init__(
        self,
        repository: FeedRepository,
        queue: JobQueue,
        config: Optional[SchedulerConfig] = None,
        job_options: Optional[JobOptions] = None,
    ) -> None:
        """Initialize scheduler."""
        self.repository = repository
        self.queue = queue
        self.config = config or SchedulerConfig()
        self.job_options = job_options or queue.default_options

    def is_placeholder(self, link: str) -> bool:
        return link.startswith(self.config.placeholder_prefix)

    async def tick(self) -> TickStats:
        """Walk every page of outdated feeds once."""
        stats = TickStats()
        stale_before = pendulum.now("UTC").subtract(seconds=self.config.stale_after_seconds)
        offset = 0

        while True:
            try:
                feeds = await self.repository.find_outdated_feeds(
                    self.config.page_size, offset, stale_before
                )
            except Exception as e:
                logger.error("Could not load outdated feeds, aborting tick: %s", e)
                stats.aborted = True
                break

            stats.pages += 1
            stats.feeds_seen += len(feeds)
            unmarked = 0

            for feed in feeds:
                if self.is_placeholder(feed.link):
                    stats.skipped_placeholders += 1
                    unmarked += 1
                    continue

                options = self.job_options.model_copy(update={"dedup_key": feed.id})
                try:
                    handle = await self.queue.enqueue(SyncFeedArticlesInput(feed=feed), options)
                except QueueError as e:
                    logger.error("Could not enqueue sync for feed %s: %s", feed.id, e)
                    stats.enqueue_failures += 1
                    unmarked += 1
                    continue

                if handle.coalesced:
                    stats.coalesced += 1
                else:
                    stats.enqueued += 1

                try:
                    await self.repository.mark_synced(feed.id)
                except Exception as e:
                    logger.error("Could not mark feed %s as synced, aborting tick: %s", feed.id, e)
                    stats.aborted = True
                    return stats

            if len(feeds) < self.config.page_size:
                break
            # Marked feeds drop out of the outdated set
            offset += unmarked

        logger.info(
            "Scheduled %d feeds (%d already queued, %d failed)",
            stats.enqueued,
            stats.coalesced,
            stats.enqueue_failures,
        )
        return stats

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set."""
        logger.info("Scheduler started (every %ds)", self.config.interval_seconds)
        while not stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")
