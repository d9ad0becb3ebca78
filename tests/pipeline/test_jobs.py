"""Tests for the queue job handlers."""

import pytest

from feedsync.errors import FetchError, NoFeedFoundError, ValidationError
from feedsync.models import Feed, ImportArticleInput
from feedsync.pipeline import (
    ExtractMetadataHandler,
    GetUpdatedArticleHandler,
    ImportArticleHandler,
    SyncFeedArticlesHandler,
    parse_payload,
)
from feedsync.queue import Job

FEED_URL = "https://news.example.com/feed.xml"


def make_job(queue, payload):
    return Job(id="job-1", queue=queue, name=queue, payload=payload)


def sync_job(feed_id="feed-1", link=FEED_URL):
    feed = Feed(id=feed_id, name="City Herald", link=link)
    return make_job("sync-feed-articles", {"feed": feed.to_wire()})


class TestParsePayload:
    """Tests for payload validation."""

    def test_accepts_wire_keys(self):
        data = parse_payload(
            ImportArticleInput,
            make_job("import-article", {"url": "https://x.example.com", "makeReadable": False}),
        )

        assert data.make_readable is False

    def test_rejects_malformed_payload(self):
        with pytest.raises(ValidationError):
            parse_payload(ImportArticleInput, make_job("import-article", {"title": "no url"}))


class TestSyncFeedArticlesHandler:
    """Tests for the sync-feed-articles handler."""

    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def handler(self, parser, processor, repository, routes, sleeps):
        async def fake_sleep(seconds):
            # Article pages fetched so far, at each pause between chunks
            fetched = [url for url in routes.urls() if url != FEED_URL]
            sleeps.append((seconds, len(fetched)))

        return SyncFeedArticlesHandler(parser, processor, repository, sleep=fake_sleep)

    def add_feed(self, routes, make_rss, make_article_html, count):
        items = [
            {"title": f"Story {n}", "link": f"https://news.example.com/story/{n}"}
            for n in range(count)
        ]
        routes.add(FEED_URL, make_rss(items), content_type="application/rss+xml")
        for item in items:
            routes.add(item["link"], make_article_html(title=item["title"]))
        return items

    async def test_processes_in_chunks(
        self, handler, routes, repository, cache, sleeps, make_rss, make_article_html
    ):
        items = self.add_feed(routes, make_rss, make_article_html, 25)

        summary = await handler(sync_job())

        assert summary["entries"] == 25
        assert summary["inserted"] == 25
        assert sleeps == [(1.0, 10), (1.0, 20)]
        assert len([url for url in routes.urls() if url != FEED_URL]) == 25
        assert set(repository.articles) == {item["link"] for item in items}
        assert all(repository.article_feeds[item["link"]] == "feed-1" for item in items)
        assert await cache.get_metadata(items[0]["link"]) is not None

    async def test_skips_known_and_invalid_links(
        self, handler, routes, repository, processor, cache, make_rss, make_article_html
    ):
        routes.add(
            FEED_URL,
            make_rss(
                [
                    {"title": "Known", "link": "https://news.example.com/known"},
                    {"title": "Cached", "link": "https://news.example.com/cached"},
                    {"title": "Broken", "link": "not-a-link"},
                    {"title": "Fresh", "link": "https://news.example.com/fresh"},
                ]
            ),
            content_type="application/rss+xml",
        )
        routes.add("https://news.example.com/fresh", make_article_html())
        await repository.create_articles(
            "feed-1", [processor.build_default_metadata("https://news.example.com/known")]
        )
        await cache.put_metadata(
            "https://news.example.com/cached",
            processor.build_default_metadata("https://news.example.com/cached"),
        )

        summary = await handler(sync_job())

        assert summary["skippedKnown"] == 2
        assert summary["skippedInvalid"] == 1
        assert summary["inserted"] == 1
        assert "https://news.example.com/known" not in routes.urls()
        assert "https://news.example.com/cached" not in routes.urls()

    async def test_unreachable_articles_get_default_records(
        self, handler, routes, repository, make_rss
    ):
        routes.add(
            FEED_URL,
            make_rss([{"title": "Gone", "link": "https://news.example.com/gone"}]),
            content_type="application/rss+xml",
        )

        summary = await handler(sync_job())

        assert summary["inserted"] == 1
        article = repository.articles["https://news.example.com/gone"]
        assert article.title == "Gone"
        assert article.readable is False

    async def test_missing_feed_raises(self, handler):
        with pytest.raises(NoFeedFoundError):
            await handler(sync_job(link="https://news.example.com/missing.xml"))

    async def test_second_run_finds_nothing_new(
        self, handler, routes, repository, make_rss, make_article_html
    ):
        self.add_feed(routes, make_rss, make_article_html, 3)
        await handler(sync_job())
        fetched = len(routes.requests)

        summary = await handler(sync_job())

        assert summary["skippedKnown"] == 3
        assert summary["inserted"] == 0
        # Only the feed itself is fetched again
        assert len(routes.requests) == fetched + 1


class TestImportArticleHandler:
    """Tests for the import-article handler."""

    async def test_returns_wire_metadata(self, processor, routes, cache, make_article_html):
        routes.add("https://news.example.com/a", make_article_html())

        result = await ImportArticleHandler(processor)(
            make_job("import-article", {"url": "https://news.example.com/a", "title": "Mine"})
        )

        assert result["title"] == "Mine"
        assert result["siteName"] == "City Herald"
        assert result["readable"] is True
        assert await cache.has_readable("https://news.example.com/a")

    async def test_unreachable_page_is_degraded(self, processor):
        result = await ImportArticleHandler(processor)(
            make_job("import-article", {"url": "https://www.down.example.com/a"})
        )

        assert result["title"] == "Untitled"
        assert result["readable"] is False
        assert result["siteName"] == "down.example.com"

    async def test_invalid_url_raises(self, processor):
        with pytest.raises(ValidationError):
            await ImportArticleHandler(processor)(make_job("import-article", {"url": "nope"}))


class TestGetUpdatedArticleHandler:
    """Tests for the get-updated-article handler."""

    async def test_reports_updates(self, processor, routes, make_article_html):
        routes.add("https://news.example.com/a", make_article_html())
        handler = GetUpdatedArticleHandler(processor)
        job = make_job("get-updated-article", {"slug": "a", "url": "https://news.example.com/a"})

        first = await handler(job)
        second = await handler(job)

        assert first["isUpdated"] is True
        assert first["article"]["contentHash"]
        assert second == {"isUpdated": False, "article": None}

    async def test_fetch_failure_raises(self, processor):
        job = make_job("get-updated-article", {"slug": "a", "url": "https://news.example.com/a"})

        with pytest.raises(FetchError):
            await GetUpdatedArticleHandler(processor)(job)

    async def test_non_html_raises(self, processor, routes):
        routes.add("https://news.example.com/a.pdf", b"%PDF", content_type="application/pdf")
        job = make_job("get-updated-article", {"slug": "a", "url": "https://news.example.com/a.pdf"})

        with pytest.raises(FetchError):
            await GetUpdatedArticleHandler(processor)(job)


class TestExtractMetadataHandler:
    """Tests for the extract-metadata handler."""

    async def test_extracts_without_caching_readable(self, processor, routes, cache, make_article_html):
        routes.add("https://news.example.com/a", make_article_html(title="Page title"))

        result = await ExtractMetadataHandler(processor)(
            make_job("extract-metadata", {"url": "https://news.example.com/a"})
        )

        assert result["title"] == "Page title"
        assert result["readable"] is True
        assert result["author"] == "Dana Reyes"
        assert not await cache.has_readable("https://news.example.com/a")

    async def test_fetch_failure_raises(self, processor):
        with pytest.raises(FetchError):
            await ExtractMetadataHandler(processor)(
                make_job("extract-metadata", {"url": "https://news.example.com/a"})
            )
