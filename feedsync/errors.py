"""Error taxonomy for the synchronization pipeline."""

from typing import Optional


class FeedSyncError(Exception):
    """Base class for all pipeline errors."""


class FetchError(FeedSyncError):
    """Network failure or non-2xx response for an outbound request."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"{message} ({url})")


class NoFeedFoundError(FeedSyncError):
    """Neither the URL nor any discovered alternate link yielded feed entries."""

    def __init__(self, url: str, reason: str = "No feed found") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url}")


class ExtractionError(FeedSyncError):
    """DOM parsing or content extraction failed."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"{message} ({url})")


class ValidationError(FeedSyncError):
    """Malformed URL or job payload."""

    def __init__(self, value: object, message: str = "Invalid value") -> None:
        self.value = value
        super().__init__(f"{message}: {value!r}")


class QueueError(FeedSyncError):
    """Enqueue or queue-store connection failure."""


class JobExhaustedError(QueueError):
    """A job used up all of its attempts."""

    def __init__(self, job_id: str, attempts: int, reason: Optional[str]) -> None:
        self.job_id = job_id
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Job {job_id} failed after {attempts} attempt(s): {reason}")


class JobTimeoutError(QueueError):
    """The caller stopped waiting for a job; the job itself keeps running."""

    def __init__(self, job_id: str, timeout: float) -> None:
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.0f}s waiting for job {job_id}")
