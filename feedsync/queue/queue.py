"""Redis-backed durable job queue."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel
from redis.exceptions import RedisError

from ..errors import JobExhaustedError, JobTimeoutError, QueueError
from .models import Job, JobOptions, JobState, now_ms

logger = logging.getLogger(__name__)

STALLED_REASON = "job stalled more than allowable limit"

# Deletes KEYS[1] only while it still holds ARGV[1]
COMPARE_AND_DELETE = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class JobHandle:
    """Reference to an enqueued job."""

    def __init__(self, queue: "JobQueue", job_id: str, coalesced: bool = False) -> None:
        """Initialize handle."""
        self.queue = queue
        self.id = job_id
        self.coalesced = coalesced

    def __repr__(self) -> str:
        return f"JobHandle(queue={self.queue.name!r}, id={self.id!r}, coalesced={self.coalesced})"

    async def get(self) -> Optional[Job]:
        return await self.queue.get_job(self.id)

    async def wait_until_finished(self, timeout: float, poll_interval: float = 0.2) -> Any:
        """Result of the job once completed.

        Raises JobExhaustedError when the job failed for good and
        JobTimeoutError when ``timeout`` seconds elapse first; the job
        itself keeps running in that case.
        """

        async def _poll() -> Any:
            while True:
                job = await self.queue.get_job(self.id)
                if job is None:
                    raise QueueError(f"Job {self.id} no longer exists on {self.queue.name}")
                if job.state == JobState.COMPLETED:
                    return job.result
                if job.state == JobState.FAILED:
                    raise JobExhaustedError(job.id, job.attempts_made, job.failed_reason or "")
                await asyncio.sleep(poll_interval)

        try:
            return await asyncio.wait_for(_poll(), timeout=timeout)
        except asyncio.TimeoutError:
            raise JobTimeoutError(self.id, timeout) from None


class JobQueue:
    """One named queue: job hashes plus wait, active, delayed and finished indexes.

    Keys live under ``{prefix}:{name}:``. Transitions that touch several
    keys run in MULTI pipelines.
    """

    def __init__(
        self,
        redis,
        name: str,
        prefix: str = "feedsync",
        default_options: Optional[JobOptions] = None,
    ) -> None:
        """Initialize queue."""
        self.redis = redis
        self.name = name
        self.prefix = prefix
        self.default_options = default_options or JobOptions()
        self._compare_and_delete = redis.register_script(COMPARE_AND_DELETE)

    def key(self, suffix: str) -> str:
        return f"{self.prefix}:{self.name}:{suffix}"

    def job_key(self, job_id: str) -> str:
        return self.key(f"job:{job_id}")

    def lock_key(self, job_id: str) -> str:
        return self.key(f"lock:{job_id}")

    def dedup_key(self, dedup_key: str) -> str:
        return self.key(f"dedup:{dedup_key}")

    async def enqueue(
        self,
        payload: Union[BaseModel, Dict[str, Any]],
        options: Optional[JobOptions] = None,
        name: Optional[str] = None,
    ) -> JobHandle:
        """Add a job, or coalesce onto a live job with the same dedup key."""
        options = options or self.default_options
        if isinstance(payload, BaseModel):
            data = json.loads(payload.model_dump_json(by_alias=True))
        else:
            data = dict(payload)

        job = Job(
            id=uuid4().hex,
            queue=self.name,
            name=name or self.name,
            payload=data,
            dedup_key=options.dedup_key,
            max_attempts=options.max_attempts,
            backoff_delay_ms=options.backoff_delay_ms,
            keep_finished_seconds=options.keep_finished_seconds,
        )

        try:
            if options.dedup_key:
                existing = await self._claim_dedup_key(options.dedup_key, job.id)
                if existing is not None:
                    logger.debug(
                        "Coalesced job on %s with dedup key %s into %s",
                        self.name,
                        options.dedup_key,
                        existing,
                    )
                    return JobHandle(self, existing, coalesced=True)

            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(self.job_key(job.id), mapping=job.to_hash())
                pipe.rpush(self.key("wait"), job.id)
                await pipe.execute()
        except RedisError as e:
            raise QueueError(f"Could not enqueue job on {self.name}: {e}") from e

        logger.debug("Enqueued job %s on %s", job.id, self.name)
        return JobHandle(self, job.id)

    async def _claim_dedup_key(self, dedup_key: str, job_id: str) -> Optional[str]:
        """None if ``job_id`` now owns the key, else the id of the live owner."""
        key = self.dedup_key(dedup_key)
        for _ in range(3):
            if await self.redis.set(key, job_id, nx=True):
                return None

            owner = await self.redis.get(key)
            if owner is None:
                continue

            state = await self.redis.hget(self.job_key(owner), "state")
            if state is not None and not JobState(state).is_terminal:
                return owner

            # Stale key left by a job that vanished or finished
            logger.warning("Dropping stale dedup key %s owned by %s", key, owner)
            await self._delete_if_owned(key, owner)

        raise QueueError(f"Could not acquire dedup key {dedup_key} on {self.name}")

    async def _delete_if_owned(self, key: str, owner: str) -> bool:
        return bool(await self._compare_and_delete(keys=[key], args=[owner]))

    async def release_dedup_key(self, job: Job) -> None:
        if not job.dedup_key:
            return
        await self._delete_if_owned(self.dedup_key(job.dedup_key), job.id)

    async def get_job(self, job_id: str) -> Optional[Job]:
        fields = await self.redis.hgetall(self.job_key(job_id))
        if not fields:
            return None
        return Job.from_hash(fields)

    async def promote_delayed(self) -> int:
        """Move retrying jobs whose backoff elapsed back to the wait list."""
        due = await self.redis.zrangebyscore(self.key("delayed"), "-inf", now_ms())
        promoted = 0
        for job_id in due:
            # Only the caller whose ZREM succeeds owns the promotion
            if await self.redis.zrem(self.key("delayed"), job_id):
                await self.redis.rpush(self.key("wait"), job_id)
                promoted += 1
        if promoted:
            logger.debug("Promoted %d delayed jobs on %s", promoted, self.name)
        return promoted

    async def complete(self, job: Job, result: Any) -> None:
        """Record a successful attempt."""
        finished = now_ms()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.key("active"), 1, job.id)
            pipe.hset(
                self.job_key(job.id),
                mapping={
                    "state": JobState.COMPLETED.value,
                    "attempts_made": str(job.attempts_made + 1),
                    "result": json.dumps(result),
                    "finished_at": str(finished),
                },
            )
            pipe.expire(self.job_key(job.id), job.keep_finished_seconds)
            pipe.zadd(self.key("completed"), {job.id: finished})
            pipe.zremrangebyscore(
                self.key("completed"), 0, finished - job.keep_finished_seconds * 1000
            )
            pipe.delete(self.lock_key(job.id))
            await pipe.execute()
        await self.release_dedup_key(job)

    async def retry(self, job: Job, reason: str, delay_ms: int) -> None:
        """Schedule another attempt after ``delay_ms``."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.key("active"), 1, job.id)
            pipe.hset(
                self.job_key(job.id),
                mapping={
                    "state": JobState.RETRYING.value,
                    "attempts_made": str(job.attempts_made + 1),
                    "failed_reason": reason,
                },
            )
            pipe.zadd(self.key("delayed"), {job.id: now_ms() + delay_ms})
            pipe.delete(self.lock_key(job.id))
            await pipe.execute()

    async def fail(self, job: Job, reason: str, count_attempt: bool = True) -> None:
        """Move a job to the failed set for good."""
        finished = now_ms()
        attempts = job.attempts_made + 1 if count_attempt else job.attempts_made
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.key("active"), 1, job.id)
            pipe.hset(
                self.job_key(job.id),
                mapping={
                    "state": JobState.FAILED.value,
                    "attempts_made": str(attempts),
                    "failed_reason": reason,
                    "finished_at": str(finished),
                },
            )
            pipe.zadd(self.key("failed"), {job.id: finished})
            pipe.delete(self.lock_key(job.id))
            await pipe.execute()
        await self.release_dedup_key(job)

    async def reclaim_stalled(self, max_stalled_count: int) -> List[str]:
        """Requeue active jobs whose lock expired since the previous check.

        Two-phase: active jobs are flagged on one pass and reclaimed on the
        next if no worker has refreshed their lock in between. Jobs that
        stall more than ``max_stalled_count`` times fail.
        """
        stalled_key = self.key("stalled")
        reclaimed = []

        for job_id in await self.redis.smembers(stalled_key):
            if await self.redis.exists(self.lock_key(job_id)):
                continue
            # A zero count means the job finished or was reclaimed elsewhere
            if not await self.redis.lrem(self.key("active"), 1, job_id):
                continue

            stalled_count = await self.redis.hincrby(self.job_key(job_id), "stalled_count", 1)
            job = await self.get_job(job_id)
            if job is None:
                continue

            if stalled_count > max_stalled_count:
                logger.error("Job %s on %s failed: %s", job_id, self.name, STALLED_REASON)
                await self.fail(job, STALLED_REASON, count_attempt=False)
            else:
                logger.warning("Job %s on %s stalled, moving back to wait", job_id, self.name)
                async with self.redis.pipeline(transaction=True) as pipe:
                    pipe.hset(self.job_key(job_id), mapping={"state": JobState.PENDING.value})
                    pipe.rpush(self.key("wait"), job_id)
                    await pipe.execute()
            reclaimed.append(job_id)

        active = await self.redis.lrange(self.key("active"), 0, -1)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(stalled_key)
            if active:
                pipe.sadd(stalled_key, *active)
            await pipe.execute()

        return reclaimed

    async def counts(self) -> Dict[str, int]:
        """Number of jobs per state."""
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self.key("wait"))
            pipe.llen(self.key("active"))
            pipe.zcard(self.key("delayed"))
            pipe.zcard(self.key("completed"))
            pipe.zcard(self.key("failed"))
            pending, active, retrying, completed, failed = await pipe.execute()
        return {
            JobState.PENDING.value: pending,
            JobState.ACTIVE.value: active,
            JobState.RETRYING.value: retrying,
            JobState.COMPLETED.value: completed,
            JobState.FAILED.value: failed,
        }

    async def failed_jobs(self, limit: int = 20) -> List[Job]:
        """Most recently failed jobs, newest first."""
        job_ids = await self.redis.zrange(self.key("failed"), 0, -1)
        jobs = []
        for job_id in reversed(job_ids):
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
            if len(jobs) >= limit:
                break
        return jobs
