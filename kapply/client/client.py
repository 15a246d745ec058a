"""Capability interface for talking to the resource API.

The core only relies on these primitive operations. Retries, authentication,
and rate limiting are the responsibility of the implementation.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any

from kapply.manifest import Identifier, Resource


class PropagationPolicy(StrEnum):
    """How dependents of a deleted object are handled."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


class ResourceClient(ABC):
    """Abstract base class for get/list/create/update/delete of resources."""

    @abstractmethod
    async def get(self, identifier: Identifier) -> Resource:
        """Fetch the live object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            TransportError: If the call failed.
        """

    @abstractmethod
    async def list(
        self,
        group: str,
        kind: str,
        namespace: str,
        labels: dict[str, str] | None = None,
    ) -> list[Resource]:
        """List live objects of a kind in a namespace matching all labels."""

    @abstractmethod
    async def apply(self, resource: Resource, dry_run: bool = False) -> Resource:
        """Create the object or update it to match the desired document.

        Returns the live object as seen by the server.
        """

    @abstractmethod
    async def create(self, doc: dict[str, Any]) -> Resource:
        """Create a new object.

        Raises:
            ConflictError: If the object already exists.
        """

    @abstractmethod
    async def replace(self, doc: dict[str, Any]) -> Resource:
        """Replace an existing object.

        When the document carries `metadata.resourceVersion` it must match the
        live object.

        Raises:
            ConflictError: If the version does not match or the object is gone.
        """

    @abstractmethod
    async def delete(self, identifier: Identifier, policy: PropagationPolicy) -> None:
        """Request deletion of the object with the propagation policy.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            TransportError: If the call failed.
        """
