"""Durable Redis job queues and workers."""

from .models import Job, JobOptions, JobState, QueueName, RateLimit, compute_backoff_delay
from .queue import JobHandle, JobQueue
from .rate_limiter import RateLimiter
from .worker import JobHandler, Worker

__all__ = [
    "Job",
    "JobHandle",
    "JobHandler",
    "JobOptions",
    "JobQueue",
    "JobState",
    "QueueName",
    "RateLimit",
    "RateLimiter",
    "Worker",
    "compute_backoff_delay",
]
