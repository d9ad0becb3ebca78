"""Shared fixtures: in-memory Redis, repository and HTTP stubs."""

import fnmatch
import math
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx
import pendulum
import pytest

from feedsync.cache import ArticleCache, RedisCacheStore
from feedsync.ingestion import FeedParser, HttpFetcher, MetadataExtractor, ReadabilityExtractor
from feedsync.models import ArticleMetadata, Feed
from feedsync.pipeline import ArticleProcessor
from feedsync.queue.queue import COMPARE_AND_DELETE

PARAGRAPH = (
    "The city council approved the new transit plan on Tuesday after months of debate, "
    "committing funds to extend two light rail lines and to add frequent bus service "
    "across the eastern neighborhoods that have long lacked reliable connections."
)


class FakePipeline:
    """Queues commands and runs them in order on ``execute``."""

    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.commands = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands = []

    def __getattr__(self, name):
        method = getattr(self.redis, name)

        def queue(*args, **kwargs):
            self.commands.append((method, args, kwargs))
            return self

        return queue

    async def execute(self) -> list:
        results = []
        for method, args, kwargs in self.commands:
            results.append(await method(*args, **kwargs))
        self.commands = []
        return results


class FakeScript:
    """Registered server-side script, run without yielding to other tasks."""

    def __init__(self, redis: "FakeRedis", script: str) -> None:
        self.redis = redis
        self.script = script

    async def __call__(self, keys=None, args=None, client=None):
        return await self.redis.run_script(self.script, list(keys or []), list(args or []))


def _bound(value) -> float:
    if isinstance(value, str):
        if value in ("-inf", "-"):
            return -math.inf
        if value in ("+inf", "inf", "+"):
            return math.inf
    return float(value)


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` (decode_responses=True) kept in memory."""

    def __init__(self) -> None:
        self.data: Dict[str, object] = {}
        self.expiry: Dict[str, float] = {}
        self.offset = 0.0

    def advance(self, seconds: float) -> None:
        """Move the expiry clock forward."""
        self.offset += seconds

    def _now_ms(self) -> float:
        return (time.time() + self.offset) * 1000

    def _live(self, key: str):
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= self._now_ms():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return self.data.get(key)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        pass

    def register_script(self, script: str) -> FakeScript:
        return FakeScript(self, script)

    async def run_script(self, script: str, keys: list, args: list):
        if script == COMPARE_AND_DELETE:
            if await self.get(keys[0]) == args[0]:
                return await self.delete(keys[0])
            return 0
        raise NotImplementedError("unsupported script")

    async def keys(self, pattern: str = "*") -> List[str]:
        return [key for key in list(self.data) if self._live(key) is not None and fnmatch.fnmatch(key, pattern)]

    # Strings and keys

    async def get(self, key: str) -> Optional[str]:
        value = self._live(key)
        return value if isinstance(value, str) else None

    async def set(self, key, value, ex=None, px=None, nx=False):
        if nx and self._live(key) is not None:
            return None
        self.data[key] = str(value)
        self.expiry.pop(key, None)
        if ex is not None:
            self.expiry[key] = self._now_ms() + ex * 1000
        if px is not None:
            self.expiry[key] = self._now_ms() + px
        return True

    async def delete(self, *keys) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def exists(self, *keys) -> int:
        return sum(1 for key in keys if self._live(key) is not None)

    async def expire(self, key, seconds) -> int:
        return await self.pexpire(key, seconds * 1000)

    async def pexpire(self, key, milliseconds) -> int:
        if self._live(key) is None:
            return 0
        self.expiry[key] = self._now_ms() + milliseconds
        return 1

    async def ttl(self, key) -> int:
        if self._live(key) is None:
            return -2
        deadline = self.expiry.get(key)
        if deadline is None:
            return -1
        return int((deadline - self._now_ms()) / 1000)

    # Hashes

    def _hash(self, key: str) -> dict:
        value = self._live(key)
        if value is None:
            value = {}
            self.data[key] = value
        return value

    async def hset(self, key, field=None, value=None, mapping=None) -> int:
        target = self._hash(key)
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        added = sum(1 for name in items if name not in target)
        target.update({name: str(val) for name, val in items.items()})
        return added

    async def hget(self, key, field) -> Optional[str]:
        value = self._live(key)
        return value.get(field) if isinstance(value, dict) else None

    async def hgetall(self, key) -> dict:
        value = self._live(key)
        return dict(value) if isinstance(value, dict) else {}

    async def hincrby(self, key, field, amount=1) -> int:
        target = self._hash(key)
        target[field] = str(int(target.get(field, 0)) + amount)
        return int(target[field])

    # Lists

    def _list(self, key: str) -> list:
        value = self._live(key)
        if value is None:
            value = []
            self.data[key] = value
        return value

    async def rpush(self, key, *values) -> int:
        target = self._list(key)
        target.extend(str(value) for value in values)
        return len(target)

    async def lmove(self, source, destination, src="LEFT", dest="RIGHT") -> Optional[str]:
        items = self._live(source)
        if not items:
            return None
        value = items.pop(0) if src == "LEFT" else items.pop()
        if not items:
            await self.delete(source)
        target = self._list(destination)
        if dest == "RIGHT":
            target.append(value)
        else:
            target.insert(0, value)
        return value

    async def lrem(self, key, count, value) -> int:
        items = self._live(key)
        if not items:
            return 0
        removed = 0
        kept = []
        for item in items:
            if item == value and (count == 0 or removed < abs(count)):
                removed += 1
                continue
            kept.append(item)
        self.data[key] = kept
        return removed

    async def lrange(self, key, start, end) -> List[str]:
        items = self._live(key) or []
        end = len(items) if end == -1 else end + 1
        return list(items[start:end])

    async def llen(self, key) -> int:
        return len(self._live(key) or [])

    # Sorted sets

    def _zset(self, key: str) -> dict:
        value = self._live(key)
        if value is None:
            value = {}
            self.data[key] = value
        return value

    def _sorted(self, key: str) -> list:
        zset = self._live(key) or {}
        return sorted(zset.items(), key=lambda item: (item[1], item[0]))

    async def zadd(self, key, mapping) -> int:
        target = self._zset(key)
        added = sum(1 for member in mapping if member not in target)
        target.update({member: float(score) for member, score in mapping.items()})
        return added

    async def zrem(self, key, *members) -> int:
        target = self._live(key) or {}
        removed = 0
        for member in members:
            if member in target:
                del target[member]
                removed += 1
        return removed

    async def zcard(self, key) -> int:
        return len(self._live(key) or {})

    async def zscore(self, key, member) -> Optional[float]:
        return (self._live(key) or {}).get(member)

    async def zrangebyscore(self, key, min, max) -> List[str]:
        low, high = _bound(min), _bound(max)
        return [member for member, score in self._sorted(key) if low <= score <= high]

    async def zremrangebyscore(self, key, min, max) -> int:
        members = await self.zrangebyscore(key, min, max)
        return await self.zrem(key, *members) if members else 0

    async def zrange(self, key, start, end, withscores=False):
        items = self._sorted(key)
        end = len(items) if end == -1 else end + 1
        selected = items[start:end]
        if withscores:
            return [(member, score) for member, score in selected]
        return [member for member, _ in selected]

    # Sets

    def _set(self, key: str) -> set:
        value = self._live(key)
        if value is None:
            value = set()
            self.data[key] = value
        return value

    async def sadd(self, key, *members) -> int:
        target = self._set(key)
        added = sum(1 for member in members if member not in target)
        target.update(members)
        return added

    async def srem(self, key, *members) -> int:
        target = self._live(key) or set()
        removed = sum(1 for member in members if member in target)
        target.difference_update(members)
        return removed

    async def smembers(self, key) -> set:
        return set(self._live(key) or set())


class FakeRepository:
    """In-memory FeedRepository."""

    def __init__(self, feeds: Optional[List[Feed]] = None) -> None:
        self.feeds: Dict[str, Feed] = {feed.id: feed for feed in feeds or []}
        self.articles: Dict[str, ArticleMetadata] = {}
        self.article_feeds: Dict[str, str] = {}
        self.fail_find = False
        self.create_calls: List[List[ArticleMetadata]] = []

    def add_feed(self, feed_id: str, link: str, synced_at: Optional[datetime] = None) -> Feed:
        feed = Feed(id=feed_id, name=f"Feed {feed_id}", link=link, synced_at=synced_at)
        self.feeds[feed_id] = feed
        return feed

    async def find_outdated_feeds(self, limit: int, offset: int, stale_before: datetime) -> List[Feed]:
        if self.fail_find:
            raise RuntimeError("database unavailable")
        outdated = [
            feed
            for feed in self.feeds.values()
            if feed.synced_at is None or feed.synced_at < stale_before
        ]
        floor = datetime.min.replace(tzinfo=timezone.utc)
        outdated.sort(key=lambda feed: (feed.synced_at is not None, feed.synced_at or floor, feed.id))
        return outdated[offset : offset + limit]

    async def mark_synced(self, feed_id: str, synced_at: Optional[datetime] = None) -> None:
        feed = self.feeds[feed_id]
        self.feeds[feed_id] = feed.model_copy(update={"synced_at": synced_at or pendulum.now("UTC")})

    async def create_articles(self, feed_id: str, articles) -> int:
        self.create_calls.append(list(articles))
        inserted = 0
        for article in articles:
            if article.link in self.articles:
                continue
            self.articles[article.link] = article
            self.article_feeds[article.link] = feed_id
            inserted += 1
        return inserted

    async def exists_article_with_link(self, link: str) -> bool:
        return link in self.articles


class Routes:
    """URL -> canned response table for ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.responses: Dict[str, object] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        url: str,
        content="",
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
    ) -> None:
        self.responses[url] = (status, content, content_type)

    def fail(self, url: str) -> None:
        self.responses[url] = httpx.ConnectError

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        entry = self.responses.get(str(request.url))
        if entry is None:
            return httpx.Response(404, text="not found", headers={"content-type": "text/html"})
        if entry is httpx.ConnectError:
            raise httpx.ConnectError("connection refused", request=request)
        status, content, content_type = entry
        if isinstance(content, str):
            content = content.encode("utf-8")
        return httpx.Response(status, content=content, headers={"content-type": content_type})

    def urls(self) -> List[str]:
        return [str(request.url) for request in self.requests]


def article_html(title: str = "Transit plan approved", paragraphs: int = 4, extra_head: str = "") -> str:
    body = "\n".join(f"<p>{PARAGRAPH}</p>" for _ in range(paragraphs))
    return (
        "<html lang=\"en\"><head>"
        f"<title>{title}</title>"
        "<meta name=\"description\" content=\"Council approves transit expansion\">"
        "<meta property=\"og:site_name\" content=\"City Herald\">"
        "<meta property=\"og:image\" content=\"/images/rail.jpg\">"
        "<meta name=\"author\" content=\"Dana Reyes\">"
        "<meta property=\"article:published_time\" content=\"2024-03-05T10:00:00Z\">"
        f"{extra_head}"
        "</head><body>"
        "<nav class=\"menu\"><a href=\"/\">Home</a></nav>"
        f"<article><h1>{title}</h1>{body}</article>"
        "</body></html>"
    )


def rss_document(items: List[dict], title: str = "City Herald") -> str:
    rendered = []
    for item in items:
        parts = [f"<title>{item.get('title', '')}</title>"]
        if item.get("link"):
            parts.append(f"<link>{item['link']}</link>")
        if item.get("pubDate"):
            parts.append(f"<pubDate>{item['pubDate']}</pubDate>")
        rendered.append("<item>" + "".join(parts) + "</item>")
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<rss version=\"2.0\"><channel>"
        f"<title>{title}</title><link>https://news.example.com/</link>"
        + "".join(rendered)
        + "</channel></rss>"
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def routes() -> Routes:
    return Routes()


@pytest.fixture
async def http_client(routes):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(routes.handler), follow_redirects=True
    ) as client:
        yield client


@pytest.fixture
def fetcher(http_client) -> HttpFetcher:
    return HttpFetcher(http_client)


@pytest.fixture
def parser(fetcher) -> FeedParser:
    return FeedParser(fetcher)


@pytest.fixture
def cache(fake_redis) -> ArticleCache:
    return ArticleCache(RedisCacheStore(fake_redis))


@pytest.fixture
def processor(fetcher, cache, repository) -> ArticleProcessor:
    return ArticleProcessor(
        fetcher,
        ReadabilityExtractor(run_in_thread=False),
        MetadataExtractor(),
        cache,
        repository,
    )


@pytest.fixture
def make_article_html():
    return article_html


@pytest.fixture
def make_rss():
    return rss_document
