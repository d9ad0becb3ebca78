"""Tests for PipelineRuntime wiring with injected clients."""

import pytest

from feedsync.config import Config
from feedsync.errors import JobExhaustedError
from feedsync.pipeline import PipelineRuntime
from feedsync.queue import QueueName

CONFIG = """\
redis:
  key_prefix: runtime-test
worker:
  concurrency: 2
  poll_interval_ms: 10
  import_timeout_seconds: 5
sync:
  chunk_delay_ms: 0
"""


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return Config(path, environ={})


@pytest.fixture
async def runtime(config, fake_redis, repository, http_client):
    async with PipelineRuntime(
        config, redis=fake_redis, repository=repository, http_client=http_client
    ) as runtime:
        yield runtime


class TestPipelineRuntime:
    """Tests for the runtime facade."""

    def test_builds_a_queue_per_name(self, runtime):
        assert set(runtime.queues) == set(QueueName.ALL)
        assert runtime.queue(QueueName.IMPORT_ARTICLE).prefix == "runtime-test"
        assert runtime.pool is None

    def test_unknown_queue(self, runtime):
        with pytest.raises(KeyError):
            runtime.queue("nope")

    def test_worker_uses_configured_policy(self, runtime):
        worker = runtime.create_worker(QueueName.EXTRACT_METADATA)

        assert worker.concurrency == 2
        assert worker.poll_interval_ms == 10
        assert worker.limiter is not None

    async def test_submit_import(self, runtime, routes, make_article_html):
        routes.add("https://news.example.com/a", make_article_html())
        runtime.start_workers([QueueName.IMPORT_ARTICLE])

        metadata = await runtime.submit_import("https://news.example.com/a", title="Mine")

        assert metadata.title == "Mine"
        assert metadata.site_name == "City Herald"
        assert metadata.readable is True
        assert await runtime.cache.has_readable("https://news.example.com/a")

    async def test_submit_invalid_import_fails_fast(self, runtime):
        runtime.start_workers([QueueName.IMPORT_ARTICLE])

        with pytest.raises(JobExhaustedError) as exc_info:
            await runtime.submit_import("not a url")

        assert exc_info.value.attempts == 1

    async def test_close_stops_workers(self, config, fake_redis, repository, http_client):
        runtime = PipelineRuntime(
            config, redis=fake_redis, repository=repository, http_client=http_client
        )
        await runtime.open()
        workers = runtime.start_workers()

        await runtime.close()

        assert len(workers) == len(QueueName.ALL)
        assert not any(worker.running for worker in workers)
        assert runtime.workers == []
