"""Job events.

The event set is closed: Progress, Log, Done and Error. Done and Error are
terminal and exactly one of them ends every job's stream.
"""

import json
from dataclasses import asdict, dataclass
from typing import Literal, Optional, Union

LogStream = Literal["stdout", "stderr", "system"]


class _EventMixin:
    type: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type
        return data

    def to_sse(self) -> str:
        """Format as a Server-Sent Events message."""
        return f"event: {self.type}\ndata: {json.dumps(self.to_dict())}\n\n"


@dataclass(frozen=True)
class ProgressEvent(_EventMixin):
    percent: float
    message: Optional[str] = None

    type = "progress"


@dataclass(frozen=True)
class LogEvent(_EventMixin):
    stream: LogStream
    message: str

    type = "log"


@dataclass(frozen=True)
class DoneEvent(_EventMixin):
    success: bool
    cancelled: bool = False

    type = "done"


@dataclass(frozen=True)
class ErrorEvent(_EventMixin):
    message: str
    code: Optional[str] = None

    type = "error"


Event = Union[ProgressEvent, LogEvent, DoneEvent, ErrorEvent]


def is_terminal(event: Event) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))
