"""Module for an in memory resource API."""

import asyncio
import copy
from collections.abc import Iterable
from datetime import datetime, timezone
import itertools
import logging
from typing import Any
import uuid

from kapply.exceptions import ConflictError, ObjectNotFoundError
from kapply.manifest import Identifier, Resource

from .client import ResourceClient, PropagationPolicy

_LOGGER = logging.getLogger(__name__)

MUTATING_CALLS = {"apply", "create", "replace", "delete"}


class InMemoryClient(ResourceClient):
    """In-memory implementation of the ResourceClient interface.

    Objects are keyed by Identifier. Every call is recorded so callers can
    assert on the operations that were issued, and failures can be injected
    per operation and Identifier.
    """

    def __init__(self, objects: Iterable[dict[str, Any]] | None = None) -> None:
        """Initialize the InMemoryClient with optional existing objects."""
        self._objects: dict[Identifier, dict[str, Any]] = {}
        self._versions = itertools.count(1)
        self._failures: dict[tuple[str, Identifier], Exception] = {}
        self.calls: list[tuple[str, Identifier]] = []
        for doc in objects or ():
            self._store(copy.deepcopy(doc))

    def _store(self, doc: dict[str, Any]) -> Resource:
        resource = Resource.parse_doc(doc)
        metadata = resource.body["metadata"]
        metadata.setdefault("uid", str(uuid.uuid4()))
        metadata["resourceVersion"] = str(next(self._versions))
        metadata["generation"] = metadata.get("generation", 0) + 1
        self._objects[resource.identifier] = resource.body
        return Resource(resource.identifier, copy.deepcopy(resource.body))

    async def _call(self, op: str, identifier: Identifier) -> None:
        self.calls.append((op, identifier))
        # Yield to the loop the way a network call would
        await asyncio.sleep(0)
        if (err := self._failures.get((op, identifier))) is not None:
            raise err

    def fail(self, op: str, identifier: Identifier, err: Exception) -> None:
        """Make subsequent calls of `op` on the identifier raise `err`."""
        self._failures[(op, identifier)] = err

    def clear_failures(self) -> None:
        """Let all calls succeed again."""
        self._failures.clear()

    def contains(self, identifier: Identifier) -> bool:
        return identifier in self._objects

    def finalize(self, identifier: Identifier) -> None:
        """Remove an object that is waiting on finalizers to be deleted."""
        self._objects.pop(identifier, None)

    def set_status(self, identifier: Identifier, status: dict[str, Any]) -> None:
        """Update the status of a live object, as a controller would."""
        if (doc := self._objects.get(identifier)) is None:
            raise ObjectNotFoundError(str(identifier))
        doc["status"] = copy.deepcopy(status)

    @property
    def mutating_calls(self) -> list[tuple[str, Identifier]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)

    async def get(self, identifier: Identifier) -> Resource:
        """Fetch the live object."""
        await self._call("get", identifier)
        if (doc := self._objects.get(identifier)) is None:
            raise ObjectNotFoundError(str(identifier))
        return Resource(identifier, copy.deepcopy(doc))

    async def list(
        self,
        group: str,
        kind: str,
        namespace: str,
        labels: dict[str, str] | None = None,
    ) -> list[Resource]:
        """List live objects of a kind in a namespace matching all labels."""
        await self._call("list", Identifier(group, kind, namespace, ""))
        results = []
        for identifier, doc in self._objects.items():
            if (identifier.group, identifier.kind, identifier.namespace) != (
                group,
                kind,
                namespace,
            ):
                continue
            obj_labels = doc["metadata"].get("labels") or {}
            if labels and any(obj_labels.get(k) != v for k, v in labels.items()):
                continue
            results.append(Resource(identifier, copy.deepcopy(doc)))
        return results

    async def apply(self, resource: Resource, dry_run: bool = False) -> Resource:
        """Create the object or update it to match the desired document."""
        if dry_run:
            await self._call("apply-dry-run", resource.identifier)
            return Resource(resource.identifier, copy.deepcopy(resource.body))
        await self._call("apply", resource.identifier)
        doc = copy.deepcopy(resource.body)
        if (existing := self._objects.get(resource.identifier)) is not None:
            metadata = doc["metadata"]
            metadata["uid"] = existing["metadata"]["uid"]
            metadata["generation"] = existing["metadata"]["generation"]
            if "status" in existing:
                doc.setdefault("status", existing["status"])
        _LOGGER.debug("Applied %s", resource.identifier)
        return self._store(doc)

    async def create(self, doc: dict[str, Any]) -> Resource:
        """Create a new object."""
        identifier = Identifier.from_doc(doc)
        await self._call("create", identifier)
        if identifier in self._objects:
            raise ConflictError(f"Object {identifier} already exists")
        return self._store(copy.deepcopy(doc))

    async def replace(self, doc: dict[str, Any]) -> Resource:
        """Replace an existing object."""
        identifier = Identifier.from_doc(doc)
        await self._call("replace", identifier)
        if (existing := self._objects.get(identifier)) is None:
            raise ConflictError(f"Object {identifier} no longer exists")
        doc = copy.deepcopy(doc)
        metadata = doc["metadata"]
        version = metadata.get("resourceVersion")
        if version is not None and version != existing["metadata"]["resourceVersion"]:
            raise ConflictError(
                f"Object {identifier} was modified (version {version} is stale)"
            )
        metadata["uid"] = existing["metadata"]["uid"]
        metadata["generation"] = existing["metadata"]["generation"]
        return self._store(doc)

    async def delete(self, identifier: Identifier, policy: PropagationPolicy) -> None:
        """Request deletion of the object with the propagation policy."""
        await self._call("delete", identifier)
        if (doc := self._objects.get(identifier)) is None:
            raise ObjectNotFoundError(str(identifier))
        metadata = doc["metadata"]
        if metadata.get("finalizers") or policy == PropagationPolicy.FOREGROUND:
            metadata.setdefault(
                "deletionTimestamp", datetime.now(timezone.utc).isoformat()
            )
            if metadata.get("finalizers"):
                _LOGGER.debug("Object %s waiting on finalizers", identifier)
                return
        del self._objects[identifier]
