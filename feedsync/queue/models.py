"""Job records and options."""

import json
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class QueueName:
    """Named queues of the synchronization pipeline."""

    SYNC_FEED_ARTICLES = "sync-feed-articles"
    IMPORT_ARTICLE = "import-article"
    GET_UPDATED_ARTICLE = "get-updated-article"
    EXTRACT_METADATA = "extract-metadata"

    ALL = (SYNC_FEED_ARTICLES, IMPORT_ARTICLE, GET_UPDATED_ARTICLE, EXTRACT_METADATA)


class JobState(str, Enum):
    """Lifecycle: pending -> active -> completed | retrying -> active | failed."""

    PENDING = "pending"
    ACTIVE = "active"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_backoff_delay(attempts_made: int, base_delay_ms: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return base_delay_ms * 2 ** max(0, attempts_made - 1)


class JobOptions(BaseModel):
    """Per-job enqueue options."""

    dedup_key: Optional[str] = Field(None, description="Coalesces with a live job holding the same key")
    max_attempts: int = Field(3, ge=1)
    backoff_delay_ms: int = Field(1000, ge=0)
    keep_finished_seconds: int = Field(3600, ge=1, description="How long completed jobs stay readable")


class RateLimit(BaseModel):
    """At most ``max`` jobs per ``duration_ms`` window."""

    max: int = Field(100, ge=1)
    duration_ms: int = Field(60_000, ge=1)


class Job(BaseModel):
    """A unit of work stored as a Redis hash."""

    id: str
    queue: str
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    dedup_key: Optional[str] = None
    state: JobState = JobState.PENDING
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_delay_ms: int = 1000
    keep_finished_seconds: int = 3600
    stalled_count: int = 0
    failed_reason: Optional[str] = None
    result: Optional[Any] = None
    created_at: int = Field(default_factory=now_ms)
    processed_at: Optional[int] = None
    finished_at: Optional[int] = None

    def to_hash(self) -> Dict[str, str]:
        """Flatten into Redis hash fields, omitting unset values."""
        data = self.model_dump(mode="json")
        fields = {}
        for key, value in data.items():
            if value is None:
                continue
            if key in ("payload", "result"):
                fields[key] = json.dumps(value)
            else:
                fields[key] = str(value)
        return fields

    @classmethod
    def from_hash(cls, fields: Dict[str, str]) -> "Job":
        data: Dict[str, Any] = dict(fields)
        for key in ("payload", "result"):
            if key in data:
                data[key] = json.loads(data[key])
        return cls.model_validate(data)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.created_at
