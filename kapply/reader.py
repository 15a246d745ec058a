"""Reads the desired objects of an apply run from manifests.

Manifests are read either from a directory of `.yaml`, `.yml` or `.json`
files (recursively, in sorted order) or from a stream such as stdin. Every
document is parsed into a `Resource`; empty documents are ignored.
"""

import asyncio
from collections.abc import Sequence
import logging
from pathlib import Path
from typing import Any, TextIO

import aiofiles
import yaml

from .exceptions import InputException
from .manifest import DEFAULT_NAMESPACE, Resource

__all__ = [
    "demand_one_directory",
    "read_path",
    "read_stream",
]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")
STDIN = "-"


def demand_one_directory(args: Sequence[str]) -> str | None:
    """Return the single source argument, or None to read from stdin.

    Raises:
        InputException: If more than one source was given.
    """
    if len(args) > 1:
        raise InputException(
            f"Expected one directory argument or stdin, got {len(args)}: {list(args)}"
        )
    if not args or args[0] == STDIN:
        return None
    return args[0]


def parse_documents(
    content: str, source: str, namespace: str = DEFAULT_NAMESPACE
) -> list[Resource]:
    """Parse all objects in a multi document yaml string."""
    resources = []
    try:
        docs: list[Any] = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Invalid YAML in {source}: {err}") from err
    for doc in docs:
        if not doc:
            continue
        if isinstance(doc, dict) and doc.get("kind") == "List":
            items = doc.get("items") or []
        else:
            items = [doc]
        for item in items:
            resources.append(Resource.parse_doc(item, default_namespace=namespace))
    return resources


def _check_not_empty(resources: list[Resource], source: str) -> list[Resource]:
    if not resources:
        raise InputException(f"No objects found in {source}")
    return resources


async def _read_file(path: Path, namespace: str) -> list[Resource]:
    _LOGGER.debug("Reading manifest file: %s", path)
    try:
        async with aiofiles.open(path, encoding="utf-8") as manifest_file:
            content = await manifest_file.read()
    except OSError as err:
        raise InputException(f"Failed to read file {path}: {err}") from err
    return parse_documents(content, str(path), namespace)


async def read_path(path: Path, namespace: str = DEFAULT_NAMESPACE) -> list[Resource]:
    """Read all objects from a manifest file or a directory of manifests.

    Raises:
        InputException: If the path does not exist, a manifest is invalid,
            or no objects were found.
    """
    path = Path(path).expanduser()
    if path.is_file():
        return _check_not_empty(await _read_file(path, namespace), str(path))
    if not path.is_dir():
        raise InputException(f"Path does not exist or is not a directory: {path}")
    files = sorted(
        entry
        for entry in path.rglob("*")
        if entry.is_file() and entry.suffix.lower() in MANIFEST_SUFFIXES
    )
    _LOGGER.info("Reading %d manifest files from %s", len(files), path)
    results = await asyncio.gather(*(_read_file(entry, namespace) for entry in files))
    resources = [resource for result in results for resource in result]
    return _check_not_empty(resources, str(path))


async def read_stream(
    stream: TextIO, name: str = "stdin", namespace: str = DEFAULT_NAMESPACE
) -> list[Resource]:
    """Read all objects from a text stream.

    The blocking read runs in a worker thread so the event loop is not held.

    Raises:
        InputException: If a manifest is invalid or no objects were found.
    """
    content = await asyncio.to_thread(stream.read)
    return _check_not_empty(parse_documents(content, name, namespace), name)
