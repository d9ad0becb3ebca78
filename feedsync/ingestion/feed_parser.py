"""RSS/Atom feed parsing with HTML fallback discovery."""

import calendar
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol
from urllib.parse import urljoin

import feedparser
import pendulum
from bs4 import BeautifulSoup
from pendulum.parsing.exceptions import ParserError

from ..errors import NoFeedFoundError
from ..models import FeedType, RawFeedEntry
from ..result import Err, Ok, Result
from .http_fetcher import FEED_ACCEPT, HTML_ACCEPT, HttpFetcher

logger = logging.getLogger(__name__)

FEED_LINK_TYPES = ("application/rss+xml", "application/atom+xml")


class FeedLinkDiscoverer(Protocol):
    """Finds the real feed URL behind a web page."""

    async def discover(self, url: str) -> Optional[str]:
        ...


class HtmlFeedLinkDiscoverer:
    """Scan ``<link rel="alternate">`` tags of an HTML page."""

    def __init__(self, fetcher: HttpFetcher) -> None:
        self.fetcher = fetcher

    async def discover(self, url: str) -> Optional[str]:
        result = await self.fetcher.fetch(url, accept=HTML_ACCEPT)
        if result.is_err():
            logger.warning("Could not load page for feed discovery: %s", result.error)
            return None
        return find_feed_link(result.value.text, result.value.url or url)


def find_feed_link(html: str, base_url: str) -> Optional[str]:
    """Return the first RSS, then Atom, alternate link of a document."""
    soup = BeautifulSoup(html, "lxml")
    for link_type in FEED_LINK_TYPES:
        for tag in soup.find_all("link", href=True):
            rel = [r.lower() for r in (tag.get("rel") or [])]
            if "alternate" in rel and (tag.get("type") or "").lower() == link_type:
                href = tag["href"].strip()
                if not href.startswith("http"):
                    # Assume relative URL
                    return urljoin(base_url, href)
                return href
    return None


@dataclass
class ParsedFeed:
    """Entries and format of a parsed feed document."""

    url: str
    type: Optional[FeedType]
    title: Optional[str]
    entries: List[RawFeedEntry] = field(default_factory=list)


def parse_entry_date(entry) -> Optional[datetime]:
    """Publication date of a feedparser entry, or None when unparseable."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
            except (OverflowError, ValueError, TypeError):
                continue

    for key in ("published", "updated"):
        raw = entry.get(key)
        if not raw:
            continue
        try:
            value = pendulum.parse(raw, strict=False)
        except (ParserError, ValueError, TypeError):
            continue
        if isinstance(value, datetime):
            return value
    return None


def _compare_entries(a: RawFeedEntry, b: RawFeedEntry) -> int:
    if a.published_at and b.published_at:
        delta = (b.published_at - a.published_at).total_seconds()
        return (delta > 0) - (delta < 0)
    # Undated entries have no order relative to anything
    return 0


def sort_entries(entries: List[RawFeedEntry]) -> List[RawFeedEntry]:
    """Newest first; stable, entries without a date keep their relative order."""
    return sorted(entries, key=functools.cmp_to_key(_compare_entries))


def parse_feed_document(content: bytes, url: str) -> Optional[ParsedFeed]:
    """Parse raw feed bytes; None when the document is not RSS/Atom."""
    parsed = feedparser.parse(content)

    if not parsed.get("version") and not parsed.entries:
        return None

    version = parsed.get("version") or ""
    feed_type: Optional[FeedType] = None
    if version.startswith("atom"):
        feed_type = "atom"
    elif version.startswith("rss"):
        feed_type = "rss"

    entries = []
    for entry in parsed.entries:
        entries.append(
            RawFeedEntry(
                title=entry.get("title"),
                link=entry.get("link"),
                published_at=parse_entry_date(entry),
                summary=entry.get("summary") or entry.get("description"),
            )
        )

    return ParsedFeed(
        url=url,
        type=feed_type,
        title=parsed.feed.get("title"),
        entries=entries,
    )


class FeedParser:
    """Fetch and parse feeds into ordered entries."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        discoverer: Optional[FeedLinkDiscoverer] = None,
        timeout: float = 40.0,
    ) -> None:
        """Initialize feed parser."""
        self.fetcher = fetcher
        self.discoverer = discoverer or HtmlFeedLinkDiscoverer(fetcher)
        self.timeout = timeout

    async def _load(self, url: str) -> Optional[ParsedFeed]:
        result = await self.fetcher.fetch(url, accept=FEED_ACCEPT, timeout=self.timeout)
        if result.is_err():
            logger.warning("Feed fetch failed: %s", result.error)
            return None
        return parse_feed_document(result.value.content, url)

    async def load_feed(self, feed_url: str) -> Result[ParsedFeed, NoFeedFoundError]:
        """Parse a feed, retrying once against a discovered alternate link."""
        feed = await self._load(feed_url)

        if feed is None:
            logger.info("No feed at %s, trying to discover feed URL", feed_url)
            discovered = await self.discoverer.discover(feed_url)

            if not discovered:
                return Err(NoFeedFoundError(feed_url, "No feed link found"))
            if discovered == feed_url:
                return Err(NoFeedFoundError(feed_url, "Feed URL is the same as the original URL"))

            feed = await self._load(discovered)
            if feed is None:
                return Err(NoFeedFoundError(feed_url, f"Failed to parse feed from {discovered}"))

        if not feed.entries:
            return Err(NoFeedFoundError(feed_url, "No items found in feed"))

        feed.entries = sort_entries(feed.entries)
        return Ok(feed)

    async def parse_feed(self, feed_url: str) -> Result[List[RawFeedEntry], NoFeedFoundError]:
        """Ordered entries of a feed, newest first."""
        return (await self.load_feed(feed_url)).map(lambda feed: feed.entries)
