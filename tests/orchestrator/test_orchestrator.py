"""Tests for the apply run orchestrator."""

import asyncio
from typing import Any

import pytest

from kapply.client import InMemoryClient
from kapply.event import Event, EventType, Phase, PRUNE_EVENTS, RunOutcome
from kapply.exceptions import ObjectNotFoundError, TransportError
from kapply.inventory import InventoryStore, InventoryTemplate
from kapply.manifest import Identifier, Resource
from kapply.options import ApplyOptions
from kapply.orchestrator import Applier


TEMPLATE = InventoryTemplate(namespace="default", name="inventory", label="podinfo")


def config_map(name: str) -> Resource:
    """Create a ConfigMap resource for tests."""
    return Resource.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": name},
            "data": {"key": name},
        }
    )


def job(name: str, status: dict[str, Any] | None = None) -> dict[str, Any]:
    """Create a Job document for tests."""
    doc: dict[str, Any] = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name, "namespace": "default"},
    }
    if status:
        doc["status"] = status
    return doc


A = config_map("a")
B = config_map("b")
C = config_map("c")


def cm_id(name: str) -> Identifier:
    return Identifier("", "ConfigMap", "default", name)


async def run(
    client: InMemoryClient, resources: list[Resource], **kwargs: Any
) -> list[Event]:
    """Run the applier to completion and return all events."""
    applier = Applier(client, TEMPLATE)
    return await applier.run(resources, ApplyOptions(**kwargs)).collect()


def of_type(events: list[Event], *types: EventType) -> list[Identifier | None]:
    return [event.identifier for event in events if event.type in types]


def outcome(events: list[Event]) -> RunOutcome:
    """Return the outcome carried by the terminal event."""
    assert events[-1].outcome is not None
    assert all(event.outcome is None for event in events[:-1])
    return events[-1].outcome


async def test_first_apply() -> None:
    """Test applying a collection for the first time."""
    client = InMemoryClient()

    events = await run(client, [A, B])

    assert [(event.type, event.identifier) for event in events[:-1]] == [
        (EventType.APPLY_PENDING, cm_id("a")),
        (EventType.APPLY_SUCCEEDED, cm_id("a")),
        (EventType.APPLY_PENDING, cm_id("b")),
        (EventType.APPLY_SUCCEEDED, cm_id("b")),
    ]
    assert events[-1].type == EventType.COMPLETED
    result = outcome(events)
    assert result.succeeded
    assert events[-1].message == "Completed, all resources converged"
    assert set(result.durations) == {"apply", "inventory", "prune"}

    inventory = await InventoryStore(client).load(TEMPLATE)
    assert set(inventory) == {cm_id("a"), cm_id("b")}
    assert client.contains(cm_id("a"))
    assert client.contains(cm_id("b"))


async def test_prune_removed_objects() -> None:
    """Test objects removed from the collection are pruned."""
    client = InMemoryClient()
    await run(client, [A, B])
    previous = await InventoryStore(client).load(TEMPLATE)

    events = await run(client, [B, C])

    assert of_type(events, *PRUNE_EVENTS) == [cm_id("a"), previous.marker]
    assert of_type(events, EventType.PRUNE_SUCCEEDED) == [cm_id("a"), previous.marker]
    assert outcome(events).succeeded
    assert not client.contains(cm_id("a"))
    assert not client.contains(previous.marker)

    inventory = await InventoryStore(client).load(TEMPLATE)
    assert set(inventory) == {cm_id("b"), cm_id("c")}


async def test_apply_unchanged() -> None:
    """Test applying the same collection again keeps its inventory."""
    client = InMemoryClient()
    await run(client, [A, B])
    previous = await InventoryStore(client).load(TEMPLATE)

    events = await run(client, [A, B])

    assert of_type(events, *PRUNE_EVENTS) == []
    assert outcome(events).succeeded
    inventory = await InventoryStore(client).load(TEMPLATE)
    assert inventory.marker == previous.marker
    assert client.count("replace") == 1


async def test_phase_order() -> None:
    """Test prune events follow apply events and precede status events."""
    client = InMemoryClient()
    await run(client, [A, B])

    events = await run(
        client, [B, C], reconcile_timeout=5, poll_interval=0.01
    )

    types = [event.type for event in events]
    last_apply = max(
        i for i, t in enumerate(types) if t == EventType.APPLY_SUCCEEDED
    )
    prunes = [i for i, t in enumerate(types) if t in PRUNE_EVENTS]
    statuses = [i for i, t in enumerate(types) if t == EventType.STATUS_UPDATE]
    assert prunes
    assert statuses
    assert last_apply < min(prunes)
    assert max(prunes) < min(statuses)
    assert types[-1] == EventType.COMPLETED
    assert set(of_type(events, EventType.STATUS_UPDATE)) == {cm_id("b"), cm_id("c")}
    assert all(
        event.status == "Current"
        for event in events
        if event.type == EventType.STATUS_UPDATE
    )
    assert "status" in outcome(events).durations


async def test_invalid_options() -> None:
    """Test invalid options abort the run before any call."""
    client = InMemoryClient()

    events = await run(client, [A], prune_propagation_policy="background")

    assert len(events) == 1
    assert events[0].type == EventType.ERROR
    assert events[0].error == (
        "prune propagation policy must be one of Background, Foreground, Orphan"
    )
    result = outcome(events)
    assert result.aborted
    assert not result.succeeded
    assert result.failures[0].phase == Phase.VALIDATE
    assert result.summary.startswith("Aborted before completion")
    assert client.calls == []


async def test_apply_failure() -> None:
    """Test a failed apply is reported and the run continues."""
    client = InMemoryClient()
    client.fail("apply", cm_id("a"), TransportError("forbidden"))

    events = await run(client, [A, B], reconcile_timeout=5, poll_interval=0.01)

    assert of_type(events, EventType.APPLY_FAILED) == [cm_id("a")]
    assert of_type(events, EventType.APPLY_SUCCEEDED) == [cm_id("b")]
    assert of_type(events, EventType.STATUS_UPDATE) == [cm_id("b")]
    assert events[-1].type == EventType.COMPLETED
    result = outcome(events)
    assert not result.succeeded
    assert not result.aborted
    assert [(f.phase, f.identifier) for f in result.failures] == [
        (Phase.APPLY, cm_id("a"))
    ]
    assert result.summary == "Completed with 1 failure(s)"


async def test_status_failure() -> None:
    """Test an object that fails to reconcile is a failure of the run."""
    failed = {
        "conditions": [
            {"type": "Failed", "status": "True", "message": "BackoffLimitExceeded"}
        ]
    }
    client = InMemoryClient([job("migrate", failed)])
    resource = Resource.parse_doc(job("migrate"))

    events = await run(client, [resource], reconcile_timeout=5, poll_interval=0.01)

    updates = [event for event in events if event.type == EventType.STATUS_UPDATE]
    assert [event.status for event in updates] == ["Failed"]
    result = outcome(events)
    assert [(f.phase, f.identifier) for f in result.failures] == [
        (Phase.STATUS, resource.identifier)
    ]


async def test_no_prune() -> None:
    """Test previously applied objects remain in the collection without pruning."""
    client = InMemoryClient()
    await run(client, [A, B])

    events = await run(client, [B, C], no_prune=True)

    assert of_type(events, *PRUNE_EVENTS) == []
    assert outcome(events).succeeded
    assert client.contains(cm_id("a"))
    inventory = await InventoryStore(client).load(TEMPLATE)
    assert set(inventory) == {cm_id("a"), cm_id("b"), cm_id("c")}
    assert "prune" not in outcome(events).durations


async def test_no_prune_marker_delete_failure() -> None:
    """Test a previous marker left behind without pruning is merged later."""
    client = InMemoryClient()
    await run(client, [A, B])
    first = await InventoryStore(client).load(TEMPLATE)
    client.fail("delete", first.marker, TransportError("connection refused"))

    events = await run(client, [B, C], no_prune=True)

    errors = [event for event in events if event.type == EventType.ERROR]
    assert [event.identifier for event in errors] == [first.marker]
    assert events[-1].type == EventType.COMPLETED
    assert client.contains(first.marker)

    client.clear_failures()
    events = await run(client, [B, C])

    assert outcome(events).succeeded
    assert cm_id("a") in of_type(events, EventType.PRUNE_SUCCEEDED)
    assert first.marker in of_type(events, EventType.PRUNE_SUCCEEDED)
    assert not client.contains(cm_id("a"))
    inventory = await InventoryStore(client).load(TEMPLATE)
    assert inventory.markers == [TEMPLATE.marker([cm_id("b"), cm_id("c")])]


async def test_dry_run() -> None:
    """Test a dry run reports changes without making them."""
    client = InMemoryClient()
    await run(client, [A, B])
    previous = await InventoryStore(client).load(TEMPLATE)
    mutations = len(client.mutating_calls)

    events = await run(
        client, [B, C], dry_run=True, reconcile_timeout=5, poll_interval=0.01
    )

    assert len(client.mutating_calls) == mutations
    assert of_type(events, EventType.APPLY_SUCCEEDED) == [cm_id("b"), cm_id("c")]
    assert of_type(events, EventType.PRUNE_SUCCEEDED) == [cm_id("a"), previous.marker]
    assert all(
        event.message == "(dry run)"
        for event in events
        if event.type in (EventType.APPLY_SUCCEEDED, EventType.PRUNE_SUCCEEDED)
    )
    assert of_type(events, EventType.STATUS_UPDATE) == []
    assert outcome(events).succeeded
    assert not client.contains(cm_id("c"))
    assert client.contains(cm_id("a"))
    inventory = await InventoryStore(client).load(TEMPLATE)
    assert inventory.marker == previous.marker


async def test_save_inventory_failure() -> None:
    """Test the previous marker is kept when the new inventory is not saved."""
    client = InMemoryClient()
    await run(client, [A, B])
    previous = await InventoryStore(client).load(TEMPLATE)
    new_marker = TEMPLATE.marker([cm_id("b"), cm_id("c")])
    client.fail("create", new_marker, TransportError("connection refused"))

    events = await run(client, [B, C])

    errors = [event for event in events if event.type == EventType.ERROR]
    assert [event.identifier for event in errors] == [new_marker]
    assert of_type(events, EventType.PRUNE_SUCCEEDED) == [cm_id("a")]
    assert client.contains(previous.marker)
    assert events[-1].type == EventType.COMPLETED
    result = outcome(events)
    assert [(f.phase, f.message) for f in result.failures] == [
        (Phase.INVENTORY, "connection refused")
    ]


async def test_merge_markers() -> None:
    """Test every marker left for the collection is merged then pruned."""
    client = InMemoryClient()
    store = InventoryStore(client)
    first = await store.save(TEMPLATE, [cm_id("a")])
    second = await store.save(TEMPLATE, [cm_id("b")])

    events = await run(client, [C])

    assert of_type(events, EventType.APPLY_SUCCEEDED) == [cm_id("c")]
    assert set(of_type(events, EventType.PRUNE_SUCCEEDED)) == {
        first.marker,
        second.marker,
    }
    assert events[-1].type == EventType.COMPLETED
    assert outcome(events).succeeded
    inventory = await store.load(TEMPLATE)
    assert inventory.markers == [TEMPLATE.marker([cm_id("c")])]
    assert set(inventory) == {cm_id("c")}


async def test_recover_from_failed_marker_prune() -> None:
    """Test a marker that could not be pruned does not block later runs."""
    client = InMemoryClient()
    await run(client, [A, B])
    first = await InventoryStore(client).load(TEMPLATE)
    second_marker = TEMPLATE.marker([cm_id("b"), cm_id("c")])
    client.fail("delete", first.marker, TransportError("connection refused"))

    events = await run(client, [B, C])

    assert of_type(events, EventType.PRUNE_SUCCEEDED) == [cm_id("a")]
    assert of_type(events, EventType.PRUNE_FAILED) == [first.marker]
    assert client.contains(first.marker)
    assert client.contains(second_marker)

    client.clear_failures()
    events = await run(client, [B, C])

    assert events[-1].type == EventType.COMPLETED
    assert outcome(events).succeeded
    assert of_type(events, EventType.PRUNE_SUCCEEDED) == [first.marker]
    assert not client.contains(first.marker)
    inventory = await InventoryStore(client).load(TEMPLATE)
    assert inventory.markers == [second_marker]

    events = await run(client, [B])

    assert events[-1].type == EventType.COMPLETED
    assert of_type(events, EventType.PRUNE_SUCCEEDED) == [cm_id("c"), second_marker]
    inventory = await InventoryStore(client).load(TEMPLATE)
    assert set(inventory) == {cm_id("b")}


async def test_unexpected_error() -> None:
    """Test an unexpected error aborts the run with a final event."""
    client = InMemoryClient()
    client.fail("apply", cm_id("a"), ValueError("boom"))
    applier = Applier(client, TEMPLATE)
    stream = applier.run([A, B], ApplyOptions())

    events = await stream.collect()

    assert [event.type for event in events] == [
        EventType.APPLY_PENDING,
        EventType.ERROR,
    ]
    assert events[-1].message == "aborted during apply"
    assert events[-1].error == "boom"
    result = outcome(events)
    assert result.aborted
    assert [(f.phase, f.message) for f in result.failures] == [
        (Phase.APPLY, "boom")
    ]
    assert stream.closed
    assert client.count("create") == 0


async def test_load_transport_error() -> None:
    """Test a failure reading the previous inventory aborts the run."""
    client = InMemoryClient()
    client.fail(
        "list",
        Identifier("", "ConfigMap", "default", ""),
        TransportError("connection refused"),
    )

    events = await run(client, [A])

    assert events[-1].type == EventType.ERROR
    assert events[-1].message == "aborted during inventory"
    assert outcome(events).aborted
    assert client.count("create") == 0


async def test_marker_removed_during_run() -> None:
    """Test the previous marker disappearing before it is pruned."""
    client = InMemoryClient()
    await run(client, [A, B])
    previous = await InventoryStore(client).load(TEMPLATE)
    client.fail("get", previous.marker, ObjectNotFoundError(str(previous.marker)))

    events = await run(client, [B])

    failed = [event for event in events if event.type == EventType.PRUNE_FAILED]
    assert [event.identifier for event in failed] == [previous.marker]
    assert failed[0].error is not None
    assert "removed by another actor" in failed[0].error
    result = outcome(events)
    assert [f.phase for f in result.failures] == [Phase.PRUNE]


async def test_cancel() -> None:
    """Test cancelling a run still ends the stream with an error."""
    client = InMemoryClient()
    applier = Applier(client, TEMPLATE)
    options = ApplyOptions(reconcile_timeout=None, poll_interval=0.01)
    stream = applier.run([Resource.parse_doc(job("migrate"))], options)

    events: list[Event] = []
    async for event in stream:
        events.append(event)
        if event.type == EventType.STATUS_UPDATE:
            stream.cancel()

    assert stream.closed
    assert events[-1].type == EventType.ERROR
    assert events[-1].message == "aborted"
    assert of_type(events, EventType.COMPLETED) == []
    result = outcome(events)
    assert result.aborted
    assert result.summary == "Aborted before completion: cancelled"

    fetches = client.count("get")
    await asyncio.sleep(0.05)
    assert client.count("get") == fetches


async def test_cancel_consumer() -> None:
    """Test cancelling the task consuming the stream cancels the run."""
    client = InMemoryClient()
    applier = Applier(client, TEMPLATE)
    options = ApplyOptions(reconcile_timeout=None, poll_interval=0.01)
    stream = applier.run([Resource.parse_doc(job("migrate"))], options)

    consumer = asyncio.create_task(stream.collect())
    while not client.count("get"):
        await asyncio.sleep(0.01)
    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer

    await asyncio.sleep(0.05)
    assert stream.closed
    fetches = client.count("get")
    await asyncio.sleep(0.05)
    assert client.count("get") == fetches
