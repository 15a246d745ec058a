"""Tests for the status readers."""

from typing import Any

import pytest

from kapply.manifest import Resource
from kapply.status import Status, StatusResult, StatusReaderRegistry, default_registry
from kapply.status.readers import (
    daemon_set_status,
    deployment_status,
    generic_status,
    job_status,
    pod_status,
    stateful_set_status,
)


def condition(name: str, status: str = "True", message: str | None = None) -> dict[str, Any]:
    """Create a status condition for tests."""
    cond = {"type": name, "status": status}
    if message:
        cond["message"] = message
    return cond


@pytest.mark.parametrize(
    ("doc", "expected"),
    [
        ({}, Status.CURRENT),
        ({"status": {"conditions": [condition("Ready")]}}, Status.CURRENT),
        ({"status": {"conditions": [condition("Ready", "False")]}}, Status.IN_PROGRESS),
        ({"status": {"conditions": [condition("Reconciling")]}}, Status.IN_PROGRESS),
        ({"status": {"conditions": [condition("Stalled")]}}, Status.FAILED),
        ({"status": {"conditions": [condition("Failed")]}}, Status.FAILED),
        (
            {"metadata": {"generation": 2}, "status": {"observedGeneration": 1}},
            Status.IN_PROGRESS,
        ),
        (
            {"metadata": {"generation": 2}, "status": {"observedGeneration": 2}},
            Status.CURRENT,
        ),
        ({"metadata": {"deletionTimestamp": "2024-01-01T00:00:00Z"}}, Status.IN_PROGRESS),
    ],
)
def test_generic_status(doc: dict[str, Any], expected: Status) -> None:
    """Test status computed from conditions and generations."""
    assert generic_status(doc).status == expected


def test_generic_status_message() -> None:
    """Test the condition message is carried on the result."""
    doc = {"status": {"conditions": [condition("Stalled", message="bad spec")]}}
    assert generic_status(doc) == StatusResult(Status.FAILED, "bad spec")


def deployment(spec_replicas: int, **status: Any) -> dict[str, Any]:
    return {
        "metadata": {"generation": 1},
        "spec": {"replicas": spec_replicas},
        "status": {"observedGeneration": 1, **status},
    }


@pytest.mark.parametrize(
    ("doc", "expected"),
    [
        (deployment(2), Status.IN_PROGRESS),
        (deployment(2, updatedReplicas=2, replicas=3), Status.IN_PROGRESS),
        (deployment(2, updatedReplicas=2, replicas=2, availableReplicas=1), Status.IN_PROGRESS),
        (
            deployment(2, updatedReplicas=2, replicas=2, availableReplicas=2, readyReplicas=2),
            Status.CURRENT,
        ),
        (
            deployment(
                2,
                conditions=[
                    {
                        "type": "Progressing",
                        "status": "False",
                        "reason": "ProgressDeadlineExceeded",
                    }
                ],
            ),
            Status.FAILED,
        ),
    ],
)
def test_deployment_status(doc: dict[str, Any], expected: Status) -> None:
    """Test the status of a Deployment."""
    assert deployment_status(doc).status == expected


def test_stateful_set_status() -> None:
    """Test the status of a StatefulSet."""
    doc = deployment(1, readyReplicas=1, updateRevision="b", currentRevision="a")
    assert stateful_set_status(doc).status == Status.IN_PROGRESS
    doc["status"]["currentRevision"] = "b"
    assert stateful_set_status(doc).status == Status.CURRENT


def test_daemon_set_status() -> None:
    """Test the status of a DaemonSet."""
    assert daemon_set_status({}).status == Status.IN_PROGRESS
    doc = {"status": {"desiredNumberScheduled": 3, "updatedNumberScheduled": 3}}
    assert daemon_set_status(doc).status == Status.IN_PROGRESS
    doc["status"]["numberAvailable"] = 3
    assert daemon_set_status(doc).status == Status.CURRENT


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ({}, Status.IN_PROGRESS),
        ({"phase": "Pending"}, Status.IN_PROGRESS),
        ({"phase": "Running"}, Status.IN_PROGRESS),
        ({"phase": "Running", "conditions": [condition("Ready")]}, Status.CURRENT),
        ({"phase": "Succeeded"}, Status.CURRENT),
        ({"phase": "Failed"}, Status.FAILED),
    ],
)
def test_pod_status(status: dict[str, Any], expected: Status) -> None:
    """Test the status of a Pod."""
    assert pod_status({"status": status}).status == expected


def test_job_status() -> None:
    """Test the status of a Job."""
    assert job_status({}).status == Status.IN_PROGRESS
    assert job_status({"status": {"conditions": [condition("Complete")]}}).status == Status.CURRENT
    assert job_status({"status": {"conditions": [condition("Failed")]}}).status == Status.FAILED


def test_registry_lookup() -> None:
    """Test readers are looked up by group and kind."""
    registry = default_registry()
    assert registry.reader("apps", "Deployment") is deployment_status
    assert registry.reader("", "Pod") is pod_status
    assert registry.reader("example.com", "Widget") is generic_status

    config_map = Resource.parse_doc(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "config"}}
    )
    assert registry.compute(config_map).status == Status.CURRENT


def test_registry_custom_reader() -> None:
    """Test registering a reader for a custom kind."""

    def widget_status(doc: dict[str, Any]) -> StatusResult:
        if doc.get("status", {}).get("ready"):
            return StatusResult(Status.CURRENT)
        return StatusResult(Status.IN_PROGRESS, "Widget not ready")

    registry = StatusReaderRegistry()
    registry.register("example.com", "Widget", widget_status)
    widget = Resource.parse_doc(
        {
            "apiVersion": "example.com/v1",
            "kind": "Widget",
            "metadata": {"name": "widget"},
        }
    )
    assert registry.compute(widget) == StatusResult(Status.IN_PROGRESS, "Widget not ready")
    widget.body["status"] = {"ready": True}
    assert registry.compute(widget) == StatusResult(Status.CURRENT)


def test_terminal_status() -> None:
    """Test which states end polling."""
    assert not Status.UNKNOWN.terminal
    assert not Status.IN_PROGRESS.terminal
    assert Status.CURRENT.terminal
    assert Status.FAILED.terminal
    assert Status.NOT_FOUND.terminal
    assert Status.TIMEOUT.terminal
