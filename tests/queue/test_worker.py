"""Tests for Worker processing, retries and stall recovery."""

import asyncio
import time

import pytest

from feedsync.errors import JobExhaustedError, ValidationError
from feedsync.queue import JobOptions, JobQueue, JobState, RateLimit, Worker


@pytest.fixture
def queue(fake_redis):
    return JobQueue(fake_redis, "sync-feed-articles", prefix="test")


async def drain(worker, handle, timeout=5.0):
    """Run process_next until the job reaches a terminal state."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = await handle.get()
        if job.state.is_terminal:
            return job
        await worker.process_next()
        await asyncio.sleep(0.005)
    raise AssertionError("job did not finish")


class TestProcessing:
    """Tests for the success path."""

    async def test_completes_job_and_stores_result(self, queue):
        completed = []

        async def handler(job):
            return {"echo": job.payload["n"]}

        worker = Worker(queue, handler, on_completed=lambda job, result: completed.append(result))
        handle = await queue.enqueue({"n": 7})

        assert await worker.process_next() is True

        job = await handle.get()
        assert job.state == JobState.COMPLETED
        assert job.result == {"echo": 7}
        assert job.attempts_made == 1
        assert completed == [{"echo": 7}]
        assert (await queue.counts())["completed"] == 1

    async def test_empty_queue(self, queue):
        async def handler(job):
            raise AssertionError("should not run")

        worker = Worker(queue, handler)

        assert await worker.process_next() is False

    async def test_lock_is_released(self, queue, fake_redis):
        async def handler(job):
            assert await fake_redis.exists(queue.lock_key(job.id))
            return None

        worker = Worker(queue, handler)
        handle = await queue.enqueue({})

        await worker.process_next()

        assert not await fake_redis.exists(queue.lock_key(handle.id))
        assert await fake_redis.llen(queue.key("active")) == 0


class TestRetries:
    """Tests for retry with exponential backoff."""

    async def test_retries_with_backoff_then_fails(self, queue):
        attempts = []
        failures = []

        async def handler(job):
            attempts.append(time.monotonic())
            raise RuntimeError("feed unavailable")

        worker = Worker(queue, handler, on_failed=lambda job, error: failures.append(error))
        handle = await queue.enqueue({}, JobOptions(max_attempts=3, backoff_delay_ms=50))

        job = await drain(worker, handle)

        assert job.state == JobState.FAILED
        assert job.attempts_made == 3
        assert job.failed_reason == "feed unavailable"
        assert len(attempts) == 3
        # 1ms slack for millisecond truncation of scores
        assert attempts[1] - attempts[0] >= 0.049
        assert attempts[2] - attempts[1] >= 0.099
        assert len(failures) == 1
        assert isinstance(failures[0], JobExhaustedError)
        assert [j.id for j in await queue.failed_jobs()] == [handle.id]

    async def test_succeeds_on_second_attempt(self, queue):
        calls = []

        async def handler(job):
            calls.append(job.attempts_made)
            if len(calls) == 1:
                raise RuntimeError("transient")
            return "ok"

        worker = Worker(queue, handler)
        handle = await queue.enqueue({}, JobOptions(backoff_delay_ms=1))

        job = await drain(worker, handle)

        assert job.state == JobState.COMPLETED
        assert job.result == "ok"
        assert calls == [0, 1]

    async def test_validation_error_is_not_retried(self, queue):
        async def handler(job):
            raise ValidationError(job.payload, "Invalid payload")

        worker = Worker(queue, handler)
        handle = await queue.enqueue({"bad": True}, JobOptions(max_attempts=3))

        await worker.process_next()

        job = await handle.get()
        assert job.state == JobState.FAILED
        assert job.attempts_made == 1


class TestStalledJobs:
    """Tests for two-phase stall detection."""

    async def test_expired_lock_is_reclaimed_then_failed(self, queue, fake_redis):
        stalled = []

        async def handler(job):
            return None

        worker = Worker(queue, handler, max_stalled_count=1, on_stalled=stalled.append)
        handle = await queue.enqueue({})

        # A worker claims the job and dies without finishing it
        await worker._claim()
        assert await worker.check_stalled() == []

        fake_redis.advance(31)
        assert await worker.check_stalled() == [handle.id]
        job = await handle.get()
        assert job.state == JobState.PENDING
        assert job.stalled_count == 1
        assert stalled == [handle.id]

        await worker._claim()
        fake_redis.advance(31)
        await worker.check_stalled()
        fake_redis.advance(31)
        await worker.check_stalled()

        job = await handle.get()
        assert job.state == JobState.FAILED
        assert "stalled" in job.failed_reason

    async def test_locked_job_is_not_reclaimed(self, queue, fake_redis):
        async def handler(job):
            return None

        worker = Worker(queue, handler)
        await queue.enqueue({})
        await worker._claim()

        await worker.check_stalled()
        fake_redis.advance(31)
        # Heartbeat refreshed the lock in the meantime
        for job_id in await fake_redis.lrange(queue.key("active"), 0, -1):
            await fake_redis.set(queue.lock_key(job_id), "token", px=30_000)

        assert await worker.check_stalled() == []
        assert await fake_redis.llen(queue.key("active")) == 1

    async def test_only_one_checker_per_interval(self, queue):
        async def handler(job):
            return None

        first = Worker(queue, handler)
        second = Worker(queue, handler)
        await queue.enqueue({})
        await first._claim()

        await first.check_stalled()

        assert await second.check_stalled() == []


class TestLifecycle:
    """Tests for start/stop with concurrent slots."""

    async def test_processes_concurrently_and_stops(self, queue):
        running = 0
        peak = 0
        done = []

        async def handler(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1
            done.append(job.id)

        worker = Worker(
            queue,
            handler,
            concurrency=3,
            rate_limit=RateLimit(max=100, duration_ms=60_000),
            poll_interval_ms=5,
        )
        handles = [await queue.enqueue({"n": n}) for n in range(6)]

        worker.start()
        deadline = time.monotonic() + 5
        while len(done) < 6 and time.monotonic() < deadline:
            await asyncio.sleep(0.01)
        await worker.stop()

        assert sorted(done) == sorted(handle.id for handle in handles)
        assert peak <= 3
        assert peak > 1
        assert not worker.running

    async def test_rate_limit_caps_processing(self, queue):
        done = []

        async def handler(job):
            done.append(job.id)

        worker = Worker(
            queue,
            handler,
            concurrency=2,
            rate_limit=RateLimit(max=2, duration_ms=60_000),
            poll_interval_ms=5,
        )
        for n in range(4):
            await queue.enqueue({"n": n})

        worker.start()
        await asyncio.sleep(0.2)
        await worker.stop()

        assert len(done) == 2
        assert (await queue.counts())["pending"] == 2
