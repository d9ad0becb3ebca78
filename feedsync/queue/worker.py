"""Concurrent job processing with locks, heartbeats and stall recovery."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Tuple
from uuid import uuid4

from redis.exceptions import RedisError

from ..errors import JobExhaustedError, ValidationError
from .models import Job, JobState, RateLimit, compute_backoff_delay, now_ms
from .queue import JobQueue
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


class Worker:
    """Run ``handler`` for jobs of one queue with bounded concurrency."""

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 5,
        rate_limit: Optional[RateLimit] = None,
        lock_duration_ms: int = 30_000,
        stalled_interval_ms: int = 30_000,
        max_stalled_count: int = 1,
        poll_interval_ms: int = 500,
        on_completed: Optional[Callable[[Job, Any], None]] = None,
        on_failed: Optional[Callable[[Job, Exception], None]] = None,
        on_stalled: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize worker."""
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.limiter = (
            RateLimiter(queue.redis, queue.key("limiter"), rate_limit) if rate_limit else None
        )
        self.lock_duration_ms = lock_duration_ms
        self.stalled_interval_ms = stalled_interval_ms
        self.max_stalled_count = max_stalled_count
        self.poll_interval_ms = poll_interval_ms
        self.on_completed = on_completed
        self.on_failed = on_failed
        self.on_stalled = on_stalled

        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping.is_set()

    def start(self) -> None:
        """Spawn processing slots and the stall checker."""
        if self._tasks:
            return
        self._stopping.clear()
        for slot in range(self.concurrency):
            self._tasks.append(asyncio.create_task(self._run_slot(slot)))
        self._tasks.append(asyncio.create_task(self._run_stall_checker()))
        logger.info(
            "Worker started on %s (concurrency %d)", self.queue.name, self.concurrency
        )

    async def stop(self) -> None:
        """Finish in-flight jobs, then stop."""
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker stopped on %s", self.queue.name)

    async def run(self) -> None:
        """Process jobs until ``stop()`` is called."""
        self.start()
        await self._stopping.wait()
        await self.stop()

    async def _sleep(self, milliseconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=milliseconds / 1000)
        except asyncio.TimeoutError:
            pass

    async def _run_slot(self, slot: int) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.process_next()
            except RedisError as e:
                logger.error("Worker slot %d on %s: %s", slot, self.queue.name, e)
                await self._sleep(self.poll_interval_ms * 4)
                continue
            if not processed:
                await self._sleep(self.poll_interval_ms)

    async def process_next(self) -> bool:
        """Claim and process one job; False when none was available."""
        await self.queue.promote_delayed()

        permit = None
        if self.limiter is not None:
            permit = await self.limiter.acquire(self._stopping)
            if permit is None:
                return False

        claimed = await self._claim()
        if claimed is None:
            if permit is not None:
                await self.limiter.release(permit)
            return False

        job_id, token = claimed
        await self._process(job_id, token)
        return True

    async def _claim(self) -> Optional[Tuple[str, str]]:
        job_id = await self.queue.redis.lmove(
            self.queue.key("wait"), self.queue.key("active"), "LEFT", "RIGHT"
        )
        if job_id is None:
            return None

        token = uuid4().hex
        async with self.queue.redis.pipeline(transaction=True) as pipe:
            pipe.set(self.queue.lock_key(job_id), token, px=self.lock_duration_ms)
            pipe.srem(self.queue.key("stalled"), job_id)
            pipe.hset(
                self.queue.job_key(job_id),
                mapping={"state": JobState.ACTIVE.value, "processed_at": str(now_ms())},
            )
            await pipe.execute()
        return job_id, token

    async def _owns_lock(self, job_id: str, token: str) -> bool:
        return await self.queue.redis.get(self.queue.lock_key(job_id)) == token

    async def _heartbeat(self, job_id: str, token: str) -> None:
        interval = self.lock_duration_ms / 2
        while True:
            await asyncio.sleep(interval / 1000)
            try:
                if not await self._owns_lock(job_id, token):
                    logger.warning("Lost lock for job %s on %s", job_id, self.queue.name)
                    return
                await self.queue.redis.pexpire(self.queue.lock_key(job_id), self.lock_duration_ms)
            except RedisError as e:
                logger.warning("Heartbeat failed for job %s: %s", job_id, e)

    async def _process(self, job_id: str, token: str) -> None:
        job = await self.queue.get_job(job_id)
        if job is None:
            logger.warning("Job %s on %s vanished before processing", job_id, self.queue.name)
            await self.queue.redis.lrem(self.queue.key("active"), 1, job_id)
            await self.queue.redis.delete(self.queue.lock_key(job_id))
            return

        logger.info(
            "Job %s started on %s (attempt %d/%d)",
            job_id,
            self.queue.name,
            job.attempts_made + 1,
            job.max_attempts,
        )
        heartbeat = asyncio.create_task(self._heartbeat(job_id, token))
        started = time.monotonic()
        error: Optional[Exception] = None
        result = None
        try:
            result = await self.handler(job)
        except Exception as e:
            error = e
        finally:
            heartbeat.cancel()

        if error is not None:
            await self._handle_failure(job, token, error)
        else:
            await self._handle_success(job, token, result, time.monotonic() - started)

    async def _handle_success(self, job: Job, token: str, result: Any, elapsed: float) -> None:
        if not await self._owns_lock(job.id, token):
            logger.warning("Job %s finished after its lock expired; result dropped", job.id)
            return

        await self.queue.complete(job, result)
        logger.info("Job %s on %s completed in %.2fs", job.id, self.queue.name, elapsed)
        if self.on_completed:
            self.on_completed(job, result)

    async def _handle_failure(self, job: Job, token: str, error: Exception) -> None:
        if not await self._owns_lock(job.id, token):
            logger.warning("Job %s failed after its lock expired: %s", job.id, error)
            return

        reason = str(error) or error.__class__.__name__
        attempts = job.attempts_made + 1
        # Malformed input will not fix itself on retry
        unrecoverable = isinstance(error, ValidationError)

        if attempts < job.max_attempts and not unrecoverable:
            delay = compute_backoff_delay(attempts, job.backoff_delay_ms)
            logger.warning(
                "Job %s on %s failed (attempt %d/%d), retrying in %dms: %s",
                job.id,
                self.queue.name,
                attempts,
                job.max_attempts,
                delay,
                reason,
            )
            await self.queue.retry(job, reason, delay)
            return

        await self.queue.fail(job, reason)
        exhausted = JobExhaustedError(job.id, attempts, reason)
        logger.error("%s", exhausted)
        if self.on_failed:
            self.on_failed(job, exhausted)

    async def _run_stall_checker(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.check_stalled()
            except RedisError as e:
                logger.error("Stall check failed on %s: %s", self.queue.name, e)
            await self._sleep(self.stalled_interval_ms)

    async def check_stalled(self) -> List[str]:
        """Run one stall-detection pass unless another worker just did."""
        acquired = await self.queue.redis.set(
            self.queue.key("stalled-check"), "1", nx=True, px=self.stalled_interval_ms
        )
        if not acquired:
            return []

        reclaimed = await self.queue.reclaim_stalled(self.max_stalled_count)
        for job_id in reclaimed:
            if self.on_stalled:
                self.on_stalled(job_id)
        return reclaimed
