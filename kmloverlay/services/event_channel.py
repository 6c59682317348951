"""Broadcast channel for one job's events.

Every subscriber gets its own queue and sees every event published after it
subscribed. Subscribers that arrive late are first handed the latest progress
event and, once the job has finished, the terminal event, so a reconnecting
observer never waits on a stream that already ended.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Optional

from kmloverlay.schemas.events import Event, ProgressEvent, is_terminal

logger = logging.getLogger(__name__)


class EventChannel:
    """Fan-out of job events with terminal replay."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._subscribers: set[asyncio.Queue[Event]] = set()
        self._last_progress: Optional[ProgressEvent] = None
        self._terminal: Optional[Event] = None

    @property
    def closed(self) -> bool:
        return self._terminal is not None

    @property
    def terminal_event(self) -> Optional[Event]:
        return self._terminal

    @property
    def last_progress(self) -> Optional[ProgressEvent]:
        return self._last_progress

    def publish(self, event: Event) -> bool:
        """Deliver an event to all current subscribers.

        Returns False (and drops the event) once a terminal event was published.
        """
        if self._terminal is not None:
            logger.debug(f"[JOB {self.name}] Dropping {event.type} event after terminal event")
            return False

        if isinstance(event, ProgressEvent):
            self._last_progress = event
        if is_terminal(event):
            self._terminal = event

        for queue in self._subscribers:
            queue.put_nowait(event)

        if self._terminal is not None:
            # Every live subscriber already holds the terminal event
            self._subscribers.clear()
        return True

    def subscribe(self) -> AsyncIterator[Event]:
        """Attach a new observer.

        The observer is registered immediately, before the returned iterator
        is first awaited, so no event published in between is lost. Iteration
        ends after the terminal event.
        """
        queue: asyncio.Queue[Event] = asyncio.Queue()
        if self._last_progress is not None:
            queue.put_nowait(self._last_progress)
        if self._terminal is not None:
            queue.put_nowait(self._terminal)
        else:
            self._subscribers.add(queue)
        return self._iterate(queue)

    async def _iterate(self, queue: asyncio.Queue[Event]) -> AsyncIterator[Event]:
        try:
            while True:
                event = await queue.get()
                yield event
                if is_terminal(event):
                    return
        finally:
            self._subscribers.discard(queue)

    def get_subscriber_count(self) -> int:
        return len(self._subscribers)
