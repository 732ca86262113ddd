"""
agent/events.py - Per-Session Event Stream

Each session owns one EventStream. The engine publishes progress and
error events into it, the SessionManager publishes the single terminal
`complete` event, and any number of owners subscribe:

    stream = EventStream(session_id)
    sub = stream.subscribe()
    async for event in sub:          # ends after the complete event
        ...

Subscriber buffers are bounded. When one is full the oldest undelivered
progress event is dropped (and logged); error and complete events are
never dropped.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from taskforge.exceptions import EventStreamClosedError
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 256


class EventKind(str, Enum):
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    session_id: str
    payload: Any            # ProgressEvent | AgentError | ExecutionResult
    sequence: int


class EventSubscription:
    """Async iterator over one subscriber's view of an EventStream."""

    def __init__(self, stream: "EventStream", maxsize: int):
        self._stream = stream
        self._maxsize = maxsize
        self._buffer: deque[SessionEvent] = deque()
        self._ready = asyncio.Event()
        self._closed = False
        self._finished = False
        self._sealed = False
        self.dropped = 0

    def _offer(self, event: SessionEvent) -> None:
        # nothing is buffered once the complete event is in
        if self._closed or self._sealed:
            return
        if event.kind == EventKind.COMPLETE:
            self._sealed = True
        if len(self._buffer) >= self._maxsize:
            victim = next((e for e in self._buffer if e.kind == EventKind.PROGRESS), None)
            if victim is not None:
                self._buffer.remove(victim)
            elif event.kind == EventKind.PROGRESS:
                victim = event
            # terminal events may overflow the bound; they are never dropped
            if victim is not None:
                self.dropped += 1
                log.warning(
                    "events.progress_dropped",
                    session_id=event.session_id,
                    sequence=victim.sequence,
                    queue_size=self._maxsize,
                )
            if victim is event:
                return
        self._buffer.append(event)
        self._ready.set()

    def close(self) -> None:
        self._closed = True
        self._buffer.clear()
        self._ready.set()
        self._stream._detach(self)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> SessionEvent:
        if self._finished:
            raise StopAsyncIteration
        while not self._buffer:
            if self._finished or self._closed or self._stream.closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()

        event = self._buffer.popleft()
        if event.kind == EventKind.COMPLETE:
            self._finished = True
            self._stream._detach(self)
        return event


class EventStream:

    def __init__(self, session_id: str, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.session_id = session_id
        self._queue_size = max(1, queue_size)
        self._history: list[SessionEvent] = []
        self._subscribers: list[EventSubscription] = []
        self._sequence = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> list[SessionEvent]:
        return list(self._history)

    def publish(self, kind: EventKind, payload: Any) -> SessionEvent:
        if self._closed:
            raise EventStreamClosedError(f"Event stream for session {self.session_id} is closed")
        self._sequence += 1
        event = SessionEvent(kind=EventKind(kind), session_id=self.session_id,
                             payload=payload, sequence=self._sequence)
        self._history.append(event)
        for sub in list(self._subscribers):
            sub._offer(event)
        return event

    def subscribe(self, replay: bool = True) -> EventSubscription:
        sub = EventSubscription(self, self._queue_size)
        if replay:
            for event in self._history:
                sub._offer(event)
        if not self._closed:
            self._subscribers.append(sub)
        else:
            sub._ready.set()
        return sub

    def close(self) -> None:
        """Stop accepting events. Subscribers still drain what they buffered."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscribers:
            sub._ready.set()
        self._subscribers.clear()

    def last(self, kind: Optional[EventKind] = None) -> Optional[SessionEvent]:
        for event in reversed(self._history):
            if kind is None or event.kind == kind:
                return event
        return None

    def _detach(self, sub: EventSubscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
