"""Representation of the objects managed by an apply run.

Object bodies are kept as the raw nested documents read from manifests or
returned by the API server. Only a small set of well known fields are read off
of them (identity, annotations used for retention, and status fields) so they
are not modeled as fully typed structures.

An `Identifier` is the key used everywhere to refer to an object:
```python
from kapply.manifest import Identifier, Resource

resource = Resource.parse_doc(doc)
print(f"Found object {resource.identifier}")
```
"""

from dataclasses import dataclass, field
import copy
import logging
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "Identifier",
    "Resource",
    "prevent_delete_annotation",
]

_LOGGER = logging.getLogger(__name__)


DEFAULT_NAMESPACE = "default"
CONFIG_MAP_KIND = "ConfigMap"

# Annotation that opts an object out of pruning.
ON_REMOVE_ANNOTATION = "cli-utils.sigs.k8s.io/on-remove"
ON_REMOVE_KEEP = "keep"

# Separator used in the serialized form of an Identifier. Names, namespaces,
# groups and kinds may not contain it.
FIELD_SEPARATOR = "_"

# Kinds known to be cluster scoped. Objects of other kinds without a namespace
# are placed in the default namespace.
CLUSTER_SCOPED_KINDS = {
    "APIService",
    "ClusterRole",
    "ClusterRoleBinding",
    "CustomResourceDefinition",
    "MutatingWebhookConfiguration",
    "Namespace",
    "Node",
    "PersistentVolume",
    "PriorityClass",
    "StorageClass",
    "ValidatingWebhookConfiguration",
}


def group_from_api_version(api_version: str) -> str:
    """Return the API group of an apiVersion string (empty for the core group)."""
    if "/" not in api_version:
        return ""
    return api_version.split("/", 1)[0]


@dataclass(frozen=True, order=True)
class Identifier(DataClassDictMixin):
    """Identifier for a kubernetes resource, independent of its body."""

    group: str
    kind: str
    namespace: str
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @property
    def group_kind(self) -> str:
        """Return the kind qualified by its group e.g. `Deployment.apps`."""
        if self.group:
            return f"{self.kind}.{self.group}"
        return self.kind

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.group_kind}/{self.namespaced_name}"

    def serialize(self) -> str:
        """Return the string form stored in an inventory object."""
        return FIELD_SEPARATOR.join([self.namespace, self.name, self.group, self.kind])

    @classmethod
    def parse(cls, value: str) -> "Identifier":
        """Parse the string form stored in an inventory object."""
        fields = value.split(FIELD_SEPARATOR)
        if len(fields) != 4:
            raise InputException(f"Invalid inventory object identifier: '{value}'")
        namespace, name, group, kind = fields
        if not name or not kind:
            raise InputException(f"Invalid inventory object identifier: '{value}'")
        return cls(group=group, kind=kind, namespace=namespace, name=name)

    @classmethod
    def from_doc(
        cls, doc: dict[str, Any], default_namespace: str = DEFAULT_NAMESPACE
    ) -> "Identifier":
        """Derive an Identifier from an object document."""
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid object missing apiVersion: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        namespace = metadata.get("namespace") or ""
        if not namespace and kind not in CLUSTER_SCOPED_KINDS:
            namespace = default_namespace
        return cls(
            group=group_from_api_version(api_version),
            kind=kind,
            namespace=namespace,
            name=name,
        )

    class Config(BaseConfig):
        omit_none = True


def prevent_delete_annotation(annotations: dict[str, str] | None) -> bool:
    """Return True if the annotations opt the object out of pruning."""
    if not annotations:
        return False
    return annotations.get(ON_REMOVE_ANNOTATION) == ON_REMOVE_KEEP


@dataclass
class Resource:
    """An object document along with its identity."""

    identifier: Identifier
    """The identity of the object."""

    body: dict[str, Any] = field(repr=False)
    """The full document for the object."""

    @classmethod
    def parse_doc(
        cls, doc: dict[str, Any], default_namespace: str = DEFAULT_NAMESPACE
    ) -> "Resource":
        """Parse a Resource from a raw kubernetes object."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid object is not a mapping: {doc}")
        identifier = Identifier.from_doc(doc, default_namespace)
        body = copy.deepcopy(doc)
        if identifier.namespace:
            body["metadata"]["namespace"] = identifier.namespace
        return cls(identifier=identifier, body=body)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.body.get("metadata") or {}

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def uid(self) -> str | None:
        """The server assigned UID, only available on live objects."""
        return self.metadata.get("uid")

    @property
    def resource_version(self) -> str | None:
        return self.metadata.get("resourceVersion")

    @property
    def generation(self) -> int | None:
        return self.metadata.get("generation")

    @property
    def status(self) -> dict[str, Any]:
        return self.body.get("status") or {}

    @property
    def prevent_delete(self) -> bool:
        """Return True if the object carries the retention marker."""
        return prevent_delete_annotation(self.annotations)
