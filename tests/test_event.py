"""Tests for the event stream."""

import asyncio

import pytest

from kapply.event import (
    Event,
    EventStream,
    EventType,
    Failure,
    Phase,
    RunOutcome,
)
from kapply.manifest import Identifier


POD = Identifier("", "Pod", "default", "pod-1")


async def test_stream_order() -> None:
    """Test events are delivered in emit order until the stream is closed."""
    stream = EventStream()
    stream.emit(Event(EventType.APPLY_PENDING, POD))
    stream.emit(Event(EventType.APPLY_SUCCEEDED, POD))
    stream.close()

    events = await stream.collect()
    assert [event.type for event in events] == [
        EventType.APPLY_PENDING,
        EventType.APPLY_SUCCEEDED,
    ]
    assert stream.closed


async def test_stream_close_once() -> None:
    """Test closing is idempotent and emitting after close is rejected."""
    stream = EventStream()
    stream.close()
    stream.close()
    with pytest.raises(RuntimeError, match="closed stream"):
        stream.emit(Event(EventType.COMPLETED))
    assert await stream.collect() == []


async def test_stream_concurrent_producers() -> None:
    """Test events from concurrent producers are all delivered."""
    stream = EventStream()

    async def produce(name: str) -> None:
        identifier = Identifier("", "Pod", "default", name)
        for event_type in (EventType.PRUNE_PENDING, EventType.PRUNE_SUCCEEDED):
            stream.emit(Event(event_type, identifier))
            await asyncio.sleep(0)

    async def run() -> None:
        await asyncio.gather(*(produce(f"pod-{i}") for i in range(5)))
        stream.close()

    task = asyncio.create_task(run())
    events = await stream.collect()
    await task

    assert len(events) == 10
    for i in range(5):
        identifier = Identifier("", "Pod", "default", f"pod-{i}")
        types = [event.type for event in events if event.identifier == identifier]
        assert types == [EventType.PRUNE_PENDING, EventType.PRUNE_SUCCEEDED]


async def test_stream_cancel_producer() -> None:
    """Test cancelling the stream cancels the attached producer."""
    stream = EventStream()
    task = asyncio.create_task(asyncio.sleep(10))
    stream.attach(task)
    stream.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


def test_event_str() -> None:
    """Test the single line description of an event."""
    event = Event(EventType.PRUNE_FAILED, POD, error="forbidden")
    assert str(event) == "prune_failed Pod/default/pod-1 error: forbidden"
    assert event.is_failure
    assert not Event(EventType.PRUNE_SKIPPED, POD).is_failure


def test_event_to_dict() -> None:
    """Test events serialize without empty fields."""
    event = Event(EventType.STATUS_UPDATE, POD, status="Current")
    data = event.to_dict()
    assert data["type"] == "status_update"
    assert data["identifier"] == {
        "group": "",
        "kind": "Pod",
        "namespace": "default",
        "name": "pod-1",
    }
    assert data["status"] == "Current"
    assert "error" not in data
    assert "outcome" not in data
    assert "timestamp" in data


def test_outcome_summary() -> None:
    """Test the summary distinguishes the possible outcomes."""
    outcome = RunOutcome()
    assert outcome.succeeded
    assert outcome.summary == "Completed, all resources converged"

    failure = Failure(Phase.PRUNE, "forbidden", POD)
    assert str(failure) == "prune Pod/default/pod-1: forbidden"
    outcome = RunOutcome(failures=[failure, failure])
    assert not outcome.succeeded
    assert outcome.summary == "Completed with 2 failure(s)"

    outcome = RunOutcome(
        aborted=True, failures=[Failure(Phase.VALIDATE, "bad policy")]
    )
    assert not outcome.succeeded
    assert outcome.summary == "Aborted before completion: bad policy"
