"""Events describing the progress and outcome of an apply run.

Every phase of a run reports progress by emitting immutable `Event` records
onto a single `EventStream`. The stream is closed exactly once, after the
terminal event, and is consumed with `async for`:
```python
stream = applier.run(resources, options)
async for event in stream:
    print(event)
```
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
import logging
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .manifest import Identifier

__all__ = [
    "EventType",
    "Phase",
    "Event",
    "Failure",
    "RunOutcome",
    "EventStream",
    "EventSink",
]

_LOGGER = logging.getLogger(__name__)


class EventType(StrEnum):
    """The kind of an event."""

    APPLY_PENDING = "apply_pending"
    APPLY_SUCCEEDED = "apply_succeeded"
    APPLY_FAILED = "apply_failed"
    PRUNE_PENDING = "prune_pending"
    PRUNE_SKIPPED = "prune_skipped"
    PRUNE_SUCCEEDED = "prune_succeeded"
    PRUNE_FAILED = "prune_failed"
    STATUS_UPDATE = "status_update"
    ERROR = "error"
    COMPLETED = "completed"


PRUNE_EVENTS = {
    EventType.PRUNE_PENDING,
    EventType.PRUNE_SKIPPED,
    EventType.PRUNE_SUCCEEDED,
    EventType.PRUNE_FAILED,
}


class Phase(StrEnum):
    """A step of an apply run."""

    VALIDATE = "validate"
    APPLY = "apply"
    INVENTORY = "inventory"
    PRUNE = "prune"
    STATUS = "status"


@dataclass(frozen=True)
class Failure(DataClassDictMixin):
    """A failure of a single object or call during a run."""

    phase: Phase
    message: str
    identifier: Identifier | None = None

    def __str__(self) -> str:
        if self.identifier:
            return f"{self.phase} {self.identifier}: {self.message}"
        return f"{self.phase}: {self.message}"

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True)
class RunOutcome(DataClassDictMixin):
    """The final result of a run carried on the terminal event."""

    aborted: bool = False
    """True when the run stopped before all phases completed."""

    failures: list[Failure] = field(default_factory=list)
    """Per object and per call failures, in the order they were observed."""

    durations: dict[str, float] = field(default_factory=dict)
    """Seconds spent in each phase of the run."""

    @property
    def succeeded(self) -> bool:
        return not self.aborted and not self.failures

    @property
    def summary(self) -> str:
        """Return a human readable summary of the outcome."""
        if self.aborted:
            cause = self.failures[-1].message if self.failures else "unknown cause"
            return f"Aborted before completion: {cause}"
        if self.failures:
            return f"Completed with {len(self.failures)} failure(s)"
        return "Completed, all resources converged"


@dataclass(frozen=True)
class Event(DataClassDictMixin):
    """An immutable record of progress emitted during a run."""

    type: EventType
    """The kind of event."""

    identifier: Identifier | None = None
    """The object the event concerns, if any."""

    status: str | None = None
    """The observed status for status update events."""

    message: str | None = None
    """A human readable detail about the event."""

    error: str | None = None
    """The error for failure events."""

    outcome: RunOutcome | None = None
    """The outcome of the run, only set on the terminal event."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_failure(self) -> bool:
        return self.type in (
            EventType.APPLY_FAILED,
            EventType.PRUNE_FAILED,
            EventType.ERROR,
        )

    def __str__(self) -> str:
        """Return a single line description of the event."""
        parts = [str(self.type)]
        if self.identifier:
            parts.append(str(self.identifier))
        if self.status:
            parts.append(self.status)
        if self.message:
            parts.append(self.message)
        if self.error:
            parts.append(f"error: {self.error}")
        return " ".join(parts)

    class Config(BaseConfig):
        omit_none = True


EventSink = Callable[[Event], None]
"""A callable that accepts events emitted by a phase."""


class _Closed:
    """Sentinel marking the end of the stream."""


_CLOSED = _Closed()


class EventStream:
    """A single consumer, many producer stream of events.

    Producers call `emit` from any task; events are delivered to the consumer
    in the order they were emitted. The stream ends when `close` is called.
    """

    def __init__(self) -> None:
        """Initialize the EventStream."""
        self._queue: asyncio.Queue[Event | _Closed] = asyncio.Queue()
        self._closed = False
        self._producer: asyncio.Task[Any] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: Event) -> None:
        """Append an event to the stream."""
        if self._closed:
            raise RuntimeError(f"Event emitted on closed stream: {event}")
        _LOGGER.debug("Event: %s", event)
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Close the stream, ending iteration after all emitted events."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def attach(self, producer: asyncio.Task[Any]) -> None:
        """Associate the task producing events so the stream can be cancelled."""
        self._producer = producer

    def cancel(self) -> None:
        """Abort the run producing this stream.

        The producer emits a final event and closes the stream.
        """
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()

    async def __aiter__(self) -> AsyncIterator[Event]:
        """Yield events until the stream is closed."""
        try:
            while True:
                item = await self._queue.get()
                if isinstance(item, _Closed):
                    return
                yield item
        except asyncio.CancelledError:
            self.cancel()
            raise

    async def collect(self) -> list[Event]:
        """Consume the stream to completion and return all events."""
        return [event async for event in self]
