"""Resource API client that issues kubectl commands.

Each operation is a single kubectl invocation with json output, for example:
```python
from kapply.client import KubectlClient

client = KubectlClient(context="kind-kind")
resource = await client.get(identifier)
```
"""

import json
import logging
from typing import Any

import yaml

from kapply.command import Command, run
from kapply.exceptions import (
    CommandException,
    ConflictError,
    ObjectNotFoundError,
    TransportError,
)
from kapply.manifest import Identifier, Resource

from .client import ResourceClient, PropagationPolicy

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"

NOT_FOUND = "(NotFound)"
CONFLICT_ERRORS = ("(Conflict)", "(AlreadyExists)")


def _namespace_args(namespace: str) -> list[str]:
    if not namespace:
        return []
    return ["--namespace", namespace]


def _parse_output(out: str) -> dict[str, Any]:
    try:
        return json.loads(out)
    except json.JSONDecodeError as err:
        raise TransportError(f"Unable to parse kubectl output: {err}") from err


class KubectlClient(ResourceClient):
    """Library for issuing resource API calls through kubectl."""

    def __init__(self, kubectl: str = KUBECTL_BIN, context: str | None = None) -> None:
        """Initialize KubectlClient."""
        self._kubectl = kubectl
        self._context = context

    async def _run(
        self, args: list[str], identifier: str, stdin: bytes | None = None
    ) -> str:
        cmd = [self._kubectl]
        if self._context:
            cmd.extend(["--context", self._context])
        cmd.extend(args)
        try:
            return await run(Command(cmd, exc=TransportError), stdin=stdin)
        except CommandException as err:
            message = str(err)
            if NOT_FOUND in message:
                raise ObjectNotFoundError(identifier) from err
            if any(code in message for code in CONFLICT_ERRORS):
                raise ConflictError(message) from err
            raise

    async def get(self, identifier: Identifier) -> Resource:
        """Fetch the live object."""
        out = await self._run(
            [
                "get",
                identifier.group_kind,
                identifier.name,
                *_namespace_args(identifier.namespace),
                "--output",
                "json",
            ],
            str(identifier),
        )
        return Resource.parse_doc(_parse_output(out))

    async def _write(self, verb: list[str], doc: dict[str, Any], name: str) -> Resource:
        content = yaml.dump(doc, sort_keys=False).encode("utf-8")
        out = await self._run(
            [*verb, "--filename", "-", "--output", "json"], name, stdin=content
        )
        return Resource.parse_doc(_parse_output(out))

    async def list(
        self,
        group: str,
        kind: str,
        namespace: str,
        labels: dict[str, str] | None = None,
    ) -> list[Resource]:
        """List live objects of a kind in a namespace matching all labels."""
        group_kind = f"{kind}.{group}" if group else kind
        args = ["get", group_kind, *_namespace_args(namespace), "--output", "json"]
        if labels:
            args.extend(
                ["--selector", ",".join(f"{k}={v}" for k, v in labels.items())]
            )
        out = await self._run(args, group_kind)
        items = _parse_output(out).get("items") or []
        return [Resource.parse_doc(item) for item in items]

    async def apply(self, resource: Resource, dry_run: bool = False) -> Resource:
        """Create the object or update it to match the desired document."""
        verb = ["apply"]
        if dry_run:
            verb.append("--dry-run=server")
        return await self._write(verb, resource.body, str(resource.identifier))

    async def create(self, doc: dict[str, Any]) -> Resource:
        """Create a new object."""
        return await self._write(["create"], doc, str(Identifier.from_doc(doc)))

    async def replace(self, doc: dict[str, Any]) -> Resource:
        """Replace an existing object."""
        name = str(Identifier.from_doc(doc))
        try:
            return await self._write(["replace"], doc, name)
        except ObjectNotFoundError as err:
            raise ConflictError(f"Object {name} no longer exists") from err

    async def delete(self, identifier: Identifier, policy: PropagationPolicy) -> None:
        """Request deletion of the object with the propagation policy."""
        await self._run(
            [
                "delete",
                identifier.group_kind,
                identifier.name,
                *_namespace_args(identifier.namespace),
                f"--cascade={policy.value.lower()}",
                "--wait=false",
            ],
            str(identifier),
        )
        _LOGGER.debug("Requested deletion of %s (%s)", identifier, policy)
