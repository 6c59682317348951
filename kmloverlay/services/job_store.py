"""In-memory job registry with retention-based expiry.

Finished jobs stay queryable for a retention period and are then evicted.
Time comes from an injected clock (time.monotonic by default) so expiry can
be driven deterministically.
"""

import threading
import time
from typing import Callable, Optional

from kmloverlay.exceptions import JobNotFoundError
from kmloverlay.models.job import Job, JobState

Clock = Callable[[], float]


class JobStore:
    """Thread-safe job registry with TTL-based eviction of finished jobs."""

    def __init__(
        self,
        retention_seconds: float = 30.0,
        cancelled_retention_seconds: float = 5.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._retention = retention_seconds
        self._cancelled_retention = cancelled_retention_seconds
        self._clock = clock

    def add(self, job: Job) -> None:
        with self._lock:
            self._cleanup_expired()
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        """Get a job, or None if unknown or expired."""
        with self._lock:
            self._cleanup_expired()
            return self._jobs.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self) -> list[Job]:
        with self._lock:
            self._cleanup_expired()
            return list(self._jobs.values())

    def mark_finished(self, job: Job) -> None:
        """Start the retention countdown for a job that reached a terminal state."""
        with self._lock:
            job.finished_clock = self._clock()

    def __len__(self) -> int:
        with self._lock:
            self._cleanup_expired()
            return len(self._jobs)

    def _retention_for(self, job: Job) -> float:
        if job.state == JobState.CANCELLED:
            return self._cancelled_retention
        return self._retention

    def _cleanup_expired(self) -> None:
        """Remove expired entries (called under lock)."""
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_clock is not None
            and now - job.finished_clock >= self._retention_for(job)
        ]
        for job_id in expired:
            del self._jobs[job_id]
