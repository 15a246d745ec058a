"""Library for recording which objects belong to an applied collection.

The inventory of a collection is stored on a ConfigMap marker object. The
marker carries a label identifying the collection and has one data key per
member object. The marker name includes a hash of its contents, so each
distinct set of members is recorded on a new marker and the previous marker
is pruned once its members have been handled. When pruning a marker fails the
collection is left with more than one marker; they are read back as a single
inventory holding the members of all of them.
"""

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
import hashlib
import logging
from typing import Any

from .client import ResourceClient, PropagationPolicy
from .exceptions import ConflictError, InputException, ObjectNotFoundError
from .manifest import Identifier, Resource, CONFIG_MAP_KIND

__all__ = [
    "Inventory",
    "InventoryTemplate",
    "InventoryStore",
    "find_inventory_template",
]

_LOGGER = logging.getLogger(__name__)

INVENTORY_LABEL = "cli-utils.sigs.k8s.io/inventory-id"
HASH_LENGTH = 8


def inventory_hash(objects: Iterable[Identifier]) -> str:
    """Return a stable short hash of a set of objects, independent of order."""
    digest = hashlib.sha256()
    for value in sorted({obj.serialize() for obj in objects}):
        digest.update(value.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()[:HASH_LENGTH]


@dataclass(frozen=True)
class InventoryTemplate:
    """Location and label of the marker objects for one named collection."""

    namespace: str
    """Namespace holding the marker objects."""

    name: str
    """Prefix of the marker object names."""

    label: str
    """Value of the inventory label grouping the collection."""

    def marker(self, objects: Iterable[Identifier]) -> Identifier:
        """Return the marker Identifier used to record the objects."""
        return Identifier(
            group="",
            kind=CONFIG_MAP_KIND,
            namespace=self.namespace,
            name=f"{self.name}-{inventory_hash(objects)}",
        )


@dataclass(frozen=True)
class Inventory:
    """A persisted set of objects belonging to a collection."""

    marker: Identifier
    """The object the inventory is stored on."""

    label: str
    """The collection label."""

    objects: tuple[Identifier, ...] = field(default_factory=tuple)
    """The member objects in insertion order without duplicates."""

    resource_version: str | None = None
    """Version of the marker object when it was read."""

    superseded: tuple["Inventory", ...] = ()
    """Inventories of other markers of the collection merged into this one."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "objects", tuple(dict.fromkeys(self.objects)))

    def __iter__(self) -> Iterator[Identifier]:
        return iter(self.objects)

    def __len__(self) -> int:
        return len(self.objects)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.objects

    @property
    def markers(self) -> list[Identifier]:
        """All marker objects this inventory was read from, its own first."""
        return [self.marker, *(inventory.marker for inventory in self.superseded)]

    def recorded(self, marker: Identifier) -> "Inventory | None":
        """Return the inventory read from `marker`, if it is one of the markers."""
        for inventory in (self, *self.superseded):
            if inventory.marker == marker:
                return inventory
        return None

    def difference(self, current: Iterable[Identifier]) -> list[Identifier]:
        """Return members not in `current`, in insertion order."""
        exclude = set(current)
        return [obj for obj in self.objects if obj not in exclude]

    def to_doc(self) -> dict[str, Any]:
        """Return the marker object document recording this inventory."""
        return {
            "apiVersion": "v1",
            "kind": CONFIG_MAP_KIND,
            "metadata": {
                "name": self.marker.name,
                "namespace": self.marker.namespace,
                "labels": {INVENTORY_LABEL: self.label},
            },
            "data": {obj.serialize(): "" for obj in self.objects},
        }

    @classmethod
    def from_resource(cls, resource: Resource) -> "Inventory":
        """Parse the inventory recorded on a marker object."""
        data = resource.body.get("data") or {}
        return cls(
            marker=resource.identifier,
            label=resource.labels.get(INVENTORY_LABEL, ""),
            objects=tuple(Identifier.parse(key) for key in data),
            resource_version=resource.resource_version,
        )

    @classmethod
    def merge(cls, inventories: Sequence["Inventory"]) -> "Inventory":
        """Combine the inventories of every marker of one collection."""
        first, *rest = inventories
        return cls(
            marker=first.marker,
            label=first.label,
            objects=tuple(obj for inventory in inventories for obj in inventory),
            resource_version=first.resource_version,
            superseded=tuple(rest),
        )


class InventoryStore:
    """Reads and writes inventories through the resource API."""

    def __init__(self, client: ResourceClient) -> None:
        """Initialize InventoryStore."""
        self._client = client

    async def load(self, template: InventoryTemplate) -> Inventory:
        """Read the current inventory for the collection.

        More than one marker object is left behind when a superseded marker
        could not be pruned. Their members are merged, in marker name order.

        Raises:
            ObjectNotFoundError: If no marker object exists for the collection.
        """
        markers = await self._client.list(
            "", CONFIG_MAP_KIND, template.namespace, {INVENTORY_LABEL: template.label}
        )
        if not markers:
            raise ObjectNotFoundError(
                f"{template.namespace}/{template.label}",
                f"No inventory object found for '{template.label}'",
            )
        markers.sort(key=lambda marker: marker.identifier.name)
        if len(markers) > 1:
            _LOGGER.warning(
                "Merging %d inventory objects found for '%s'",
                len(markers),
                template.label,
            )
        inventory = Inventory.merge([Inventory.from_resource(m) for m in markers])
        _LOGGER.debug(
            "Loaded inventory %s with %d objects", inventory.markers, len(inventory)
        )
        return inventory

    async def save(
        self,
        template: InventoryTemplate,
        objects: Iterable[Identifier],
        previous: Inventory | None = None,
        dry_run: bool = False,
    ) -> Inventory:
        """Record the complete set of objects for the collection.

        The whole set is written with a single call. When the set is already
        recorded on one of the markers of `previous` that marker is replaced,
        guarded by the version that was read.

        Raises:
            ConflictError: If another actor changed or removed the marker.
        """
        objects = tuple(objects)
        marker = template.marker(objects)
        inventory = Inventory(marker=marker, label=template.label, objects=objects)
        if dry_run:
            _LOGGER.debug("Dry run, not writing inventory %s", marker)
            return inventory
        doc = inventory.to_doc()
        existing = previous.recorded(marker) if previous is not None else None
        if existing is not None:
            if existing.resource_version is not None:
                doc["metadata"]["resourceVersion"] = existing.resource_version
            live = await self._client.replace(doc)
        else:
            live = await self._client.create(doc)
        _LOGGER.info("Saved inventory %s with %d objects", marker, len(objects))
        return Inventory.from_resource(live)

    async def delete(
        self, inventory: Inventory, keep: Identifier | None = None
    ) -> None:
        """Delete the marker objects of an inventory that has been superseded.

        Args:
            inventory: The inventory whose markers are deleted.
            keep: A marker of the inventory that now records the new inventory.

        Raises:
            ConflictError: If a marker was already removed by another actor.
        """
        for marker in inventory.markers:
            if marker == keep:
                continue
            try:
                await self._client.delete(marker, PropagationPolicy.BACKGROUND)
            except ObjectNotFoundError as err:
                raise ConflictError(
                    f"Inventory object {marker} was removed by another actor"
                ) from err
            _LOGGER.info("Deleted inventory %s", marker)


def find_inventory_template(
    resources: list[Resource],
) -> tuple[InventoryTemplate, list[Resource]]:
    """Find the inventory template among the objects of a package.

    The template is the one object carrying the inventory label. It is
    returned along with the remaining objects to apply.

    Raises:
        InputException: If the package has no template or more than one.
    """
    templates = [resource for resource in resources if INVENTORY_LABEL in resource.labels]
    if not templates:
        raise InputException(
            f"Package uninitialized, no object with label '{INVENTORY_LABEL}' found"
        )
    if len(templates) > 1:
        names = [str(resource.identifier) for resource in templates]
        raise InputException(f"Multiple inventory templates found: {names}")
    template = templates[0]
    return (
        InventoryTemplate(
            namespace=template.identifier.namespace,
            name=template.identifier.name,
            label=template.labels[INVENTORY_LABEL],
        ),
        [resource for resource in resources if resource is not template],
    )
