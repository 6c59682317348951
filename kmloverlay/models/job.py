from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from kmloverlay.exceptions import InvalidStateTransitionError


class JobState(Enum):
    """Overlay job status."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED, JobState.CANCELLED)


_ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.RUNNING, JobState.CANCELLED}),
    JobState.RUNNING: frozenset({JobState.DONE, JobState.FAILED, JobState.CANCELLED}),
    JobState.DONE: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


@dataclass
class Job:
    """Overlay job information."""

    id: str
    state: JobState = JobState.PENDING
    percent: float = 0.0
    output_path: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    # Store clock reading when the job became terminal; drives eviction
    finished_clock: Optional[float] = None

    def transition_to(self, state: JobState) -> None:
        """Move to a new state, stamping start/finish times.

        Raises:
            InvalidStateTransitionError: If the move is not allowed
        """
        if state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(self.state.value, state.value)
        self.state = state
        now = datetime.now(UTC)
        if state == JobState.RUNNING:
            self.started_at = now
        elif state.is_terminal:
            self.finished_at = now

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "state": self.state.value,
            "percent": self.percent,
            "output_path": self.output_path,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
