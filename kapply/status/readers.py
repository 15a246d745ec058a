"""Kind specific readers computing the status of a live object.

A reader is a pure function of the latest fetched object document. Readers
are looked up by API group and kind in a `StatusReaderRegistry`, falling back
to a generic reader based on `observedGeneration` and conditions.
"""

from collections.abc import Callable
import logging
from typing import Any

from kapply.manifest import Resource

from .status import Status, StatusResult

__all__ = [
    "StatusReader",
    "StatusReaderRegistry",
    "default_registry",
    "generic_status",
]

_LOGGER = logging.getLogger(__name__)

StatusReader = Callable[[dict[str, Any]], StatusResult]

# Kinds that are ready as soon as they exist
EXISTENCE_KINDS = [
    ("", "ConfigMap"),
    ("", "Namespace"),
    ("", "Secret"),
    ("", "Service"),
    ("", "ServiceAccount"),
    ("rbac.authorization.k8s.io", "ClusterRole"),
    ("rbac.authorization.k8s.io", "ClusterRoleBinding"),
    ("rbac.authorization.k8s.io", "Role"),
    ("rbac.authorization.k8s.io", "RoleBinding"),
]


def _conditions(doc: dict[str, Any]) -> dict[str, dict[str, Any]]:
    status = doc.get("status") or {}
    return {
        cond["type"]: cond
        for cond in status.get("conditions") or []
        if isinstance(cond, dict) and "type" in cond
    }


def _condition_true(conditions: dict[str, dict[str, Any]], name: str) -> bool:
    return (conditions.get(name) or {}).get("status") == "True"


def _generation_pending(doc: dict[str, Any]) -> StatusResult | None:
    """Return InProgress if the controller has not observed the latest spec."""
    metadata = doc.get("metadata") or {}
    if metadata.get("deletionTimestamp"):
        return StatusResult(Status.IN_PROGRESS, "Resource scheduled for deletion")
    generation = metadata.get("generation")
    observed = (doc.get("status") or {}).get("observedGeneration")
    if generation is not None and observed is not None and observed < generation:
        return StatusResult(
            Status.IN_PROGRESS,
            f"Generation {generation} not yet observed (at {observed})",
        )
    return None


def generic_status(doc: dict[str, Any]) -> StatusResult:
    """Compute status from the standard status conditions."""
    if (pending := _generation_pending(doc)) is not None:
        return pending
    conditions = _conditions(doc)
    if _condition_true(conditions, "Stalled"):
        return StatusResult(Status.FAILED, conditions["Stalled"].get("message"))
    if _condition_true(conditions, "Failed"):
        return StatusResult(Status.FAILED, conditions["Failed"].get("message"))
    if _condition_true(conditions, "Reconciling"):
        return StatusResult(Status.IN_PROGRESS, conditions["Reconciling"].get("message"))
    if (ready := conditions.get("Ready")) is not None and ready.get("status") != "True":
        return StatusResult(Status.IN_PROGRESS, ready.get("message") or "Not ready")
    return StatusResult(Status.CURRENT)


def existence_status(doc: dict[str, Any]) -> StatusResult:
    """Objects without a controller are current once they exist."""
    if (doc.get("metadata") or {}).get("deletionTimestamp"):
        return StatusResult(Status.IN_PROGRESS, "Resource scheduled for deletion")
    return StatusResult(Status.CURRENT)


def deployment_status(doc: dict[str, Any]) -> StatusResult:
    """Compute the status of a Deployment from its replica counts."""
    if (pending := _generation_pending(doc)) is not None:
        return pending
    replicas = (doc.get("spec") or {}).get("replicas", 1)
    status = doc.get("status") or {}
    progressing = _conditions(doc).get("Progressing") or {}
    if progressing.get("reason") == "ProgressDeadlineExceeded":
        return StatusResult(Status.FAILED, progressing.get("message"))
    updated = status.get("updatedReplicas", 0)
    if updated < replicas:
        return StatusResult(Status.IN_PROGRESS, f"Updated: {updated}/{replicas}")
    if status.get("replicas", 0) > replicas:
        return StatusResult(
            Status.IN_PROGRESS,
            f"Pending termination: {status['replicas'] - replicas}",
        )
    available = status.get("availableReplicas", 0)
    if available < replicas:
        return StatusResult(Status.IN_PROGRESS, f"Available: {available}/{replicas}")
    ready = status.get("readyReplicas", 0)
    if ready < replicas:
        return StatusResult(Status.IN_PROGRESS, f"Ready: {ready}/{replicas}")
    return StatusResult(Status.CURRENT, f"Replicas: {replicas}")


def stateful_set_status(doc: dict[str, Any]) -> StatusResult:
    """Compute the status of a StatefulSet from its replica counts."""
    if (pending := _generation_pending(doc)) is not None:
        return pending
    replicas = (doc.get("spec") or {}).get("replicas", 1)
    status = doc.get("status") or {}
    ready = status.get("readyReplicas", 0)
    if ready < replicas:
        return StatusResult(Status.IN_PROGRESS, f"Ready: {ready}/{replicas}")
    if status.get("updateRevision") != status.get("currentRevision"):
        return StatusResult(
            Status.IN_PROGRESS,
            f"Waiting for revision {status.get('updateRevision')}",
        )
    return StatusResult(Status.CURRENT, f"Replicas: {replicas}")


def daemon_set_status(doc: dict[str, Any]) -> StatusResult:
    """Compute the status of a DaemonSet from its scheduled counts."""
    if (pending := _generation_pending(doc)) is not None:
        return pending
    status = doc.get("status") or {}
    desired = status.get("desiredNumberScheduled")
    if desired is None:
        return StatusResult(Status.IN_PROGRESS, "Missing desiredNumberScheduled")
    updated = status.get("updatedNumberScheduled", 0)
    if updated < desired:
        return StatusResult(Status.IN_PROGRESS, f"Updated: {updated}/{desired}")
    available = status.get("numberAvailable", 0)
    if available < desired:
        return StatusResult(Status.IN_PROGRESS, f"Available: {available}/{desired}")
    return StatusResult(Status.CURRENT, f"Scheduled: {desired}")


def pod_status(doc: dict[str, Any]) -> StatusResult:
    """Compute the status of a Pod from its phase."""
    phase = (doc.get("status") or {}).get("phase")
    if phase == "Succeeded":
        return StatusResult(Status.CURRENT, "Pod has completed successfully")
    if phase == "Failed":
        return StatusResult(Status.FAILED, "Pod has completed, but not successfully")
    if phase == "Running" and _condition_true(_conditions(doc), "Ready"):
        return StatusResult(Status.CURRENT, "Pod is Ready")
    return StatusResult(Status.IN_PROGRESS, f"Pod phase is {phase or 'Unknown'}")


def job_status(doc: dict[str, Any]) -> StatusResult:
    """Compute the status of a Job from its conditions."""
    conditions = _conditions(doc)
    if _condition_true(conditions, "Complete"):
        return StatusResult(Status.CURRENT, "Job Completed")
    if _condition_true(conditions, "Failed"):
        return StatusResult(Status.FAILED, conditions["Failed"].get("message"))
    return StatusResult(Status.IN_PROGRESS, "Job in progress")


class StatusReaderRegistry:
    """Status readers keyed by API group and kind."""

    def __init__(
        self,
        readers: dict[tuple[str, str], StatusReader] | None = None,
        default: StatusReader = generic_status,
    ) -> None:
        """Initialize StatusReaderRegistry."""
        self._readers: dict[tuple[str, str], StatusReader] = dict(readers or {})
        self._default = default

    def register(self, group: str, kind: str, reader: StatusReader) -> None:
        """Register the reader for objects of a group and kind."""
        self._readers[(group, kind)] = reader

    def reader(self, group: str, kind: str) -> StatusReader:
        """Return the reader for a group and kind."""
        return self._readers.get((group, kind), self._default)

    def compute(self, resource: Resource) -> StatusResult:
        """Compute the status of a live object."""
        identifier = resource.identifier
        return self.reader(identifier.group, identifier.kind)(resource.body)


def default_registry() -> StatusReaderRegistry:
    """Return a registry with readers for the built in kinds."""
    registry = StatusReaderRegistry()
    for group, kind in EXISTENCE_KINDS:
        registry.register(group, kind, existence_status)
    registry.register("apps", "Deployment", deployment_status)
    registry.register("apps", "StatefulSet", stateful_set_status)
    registry.register("apps", "DaemonSet", daemon_set_status)
    registry.register("", "Pod", pod_status)
    registry.register("batch", "Job", job_status)
    return registry
