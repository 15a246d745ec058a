"""Library for pruning objects that are no longer part of a collection.

Objects recorded in the previous inventory that are absent from the current
set of objects are stale and are deleted, unless they carry the retention
annotation. Each stale object is fetched before any action is taken on it, and
produces at most one outcome event. A failure of one object never stops the
others. The markers of the previous inventory are pruned last.
"""

import asyncio
from collections.abc import Iterable
import logging

from .client import ResourceClient, PropagationPolicy
from .event import Event, EventSink, EventType
from .exceptions import ConflictError, KApplyException, ObjectNotFoundError
from .inventory import Inventory
from .manifest import Identifier, ON_REMOVE_ANNOTATION, ON_REMOVE_KEEP
from .options import ApplyOptions
from .task import TaskService, get_task_service

__all__ = [
    "PruneEngine",
]

_LOGGER = logging.getLogger(__name__)


class PruneEngine:
    """Deletes objects of a previous inventory that are no longer desired."""

    def __init__(
        self,
        client: ResourceClient,
        emit: EventSink,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize PruneEngine.

        Args:
            client: The resource API used to fetch and delete objects.
            emit: Receives one event per object processed.
            task_service: Runs the per object work, defaults to the task
                service of the current context.
        """
        self._client = client
        self._emit = emit
        self._task_service = task_service or get_task_service()

    async def prune(
        self,
        previous: Inventory | None,
        current: Iterable[Identifier],
        options: ApplyOptions,
        current_marker: Identifier | None = None,
        require_marker: bool = False,
        retain_markers: bool = False,
    ) -> list[Identifier]:
        """Prune the objects of `previous` that are not in `current`.

        Args:
            previous: The inventory recorded by the previous run, if any.
            current: The objects that should continue to exist.
            options: Options for the run.
            current_marker: The marker the current inventory is recorded on,
                never pruned.
            require_marker: The previous markers were read during this run, so
                if one is gone another actor removed it. Otherwise a missing
                marker was already pruned and is skipped.
            retain_markers: Keep every previous marker, used when the current
                inventory could not be recorded.

        Returns:
            The objects that were pruned (or would be, for a dry run).

        Raises:
            PreconditionError: If the propagation policy is not valid.
        """
        policy = options.propagation_policy
        if previous is None:
            _LOGGER.debug("No previous inventory, nothing to prune")
            return []
        stale = previous.difference(current)
        _LOGGER.info(
            "Pruning %d of %d objects from inventory %s",
            len(stale),
            len(previous),
            previous.markers,
        )
        semaphore = asyncio.Semaphore(options.concurrency)

        async def prune_one(identifier: Identifier) -> bool:
            async with semaphore:
                return await self._prune_object(identifier, options, policy)

        tasks = [
            self._task_service.create_task(
                prune_one(identifier), name=f"prune {identifier}"
            )
            for identifier in stale
        ]
        results = await asyncio.gather(*tasks)
        pruned = [identifier for identifier, ok in zip(stale, results) if ok]

        if retain_markers:
            _LOGGER.info("Keeping inventory %s", previous.markers)
            return pruned
        for marker in previous.markers:
            if marker == current_marker:
                continue
            if await self._prune_object(
                marker, options, policy, missing_is_conflict=require_marker
            ):
                pruned.append(marker)
        return pruned

    async def _prune_object(
        self,
        identifier: Identifier,
        options: ApplyOptions,
        policy: PropagationPolicy,
        missing_is_conflict: bool = False,
    ) -> bool:
        """Prune a single object, returning True if it was pruned.

        Any error is reported as a failure of this object only.
        """
        try:
            return await self._fetch_and_delete(
                identifier, options, policy, missing_is_conflict
            )
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.exception("Unexpected error pruning %s", identifier)
            self._emit(
                Event(
                    EventType.PRUNE_FAILED,
                    identifier,
                    error=str(err) or type(err).__name__,
                )
            )
            return False

    async def _fetch_and_delete(
        self,
        identifier: Identifier,
        options: ApplyOptions,
        policy: PropagationPolicy,
        missing_is_conflict: bool,
    ) -> bool:
        try:
            resource = await self._client.get(identifier)
        except ObjectNotFoundError as err:
            if missing_is_conflict:
                conflict = ConflictError(
                    f"Inventory object {identifier} was removed by another actor"
                )
                _LOGGER.warning("%s", conflict)
                self._failed(identifier, conflict)
                return False
            _LOGGER.debug("Object %s already deleted: %s", identifier, err)
            return False
        except KApplyException as err:
            self._failed(identifier, err)
            return False

        if resource.prevent_delete:
            _LOGGER.info("Object %s retained by annotation", identifier)
            self._emit(
                Event(
                    EventType.PRUNE_SKIPPED,
                    identifier,
                    message=f"annotation {ON_REMOVE_ANNOTATION}: {ON_REMOVE_KEEP}",
                )
            )
            return False

        if options.dry_run:
            if options.prune_timeout > 0:
                self._emit(
                    Event(EventType.PRUNE_PENDING, identifier, message="(dry run)")
                )
            self._emit(
                Event(EventType.PRUNE_SUCCEEDED, identifier, message="(dry run)")
            )
            return True

        try:
            await self._client.delete(identifier, policy)
        except ObjectNotFoundError:
            _LOGGER.debug("Object %s deleted before prune", identifier)
            return False
        except KApplyException as err:
            self._failed(identifier, err)
            return False

        if options.prune_timeout > 0 and not await self._wait_deleted(
            identifier, options
        ):
            return False
        self._emit(Event(EventType.PRUNE_SUCCEEDED, identifier, message=str(policy)))
        return True

    async def _wait_deleted(self, identifier: Identifier, options: ApplyOptions) -> bool:
        """Wait for a deleted object to be removed, bounded by the prune timeout."""
        self._emit(Event(EventType.PRUNE_PENDING, identifier, message="deleting"))
        try:
            async with asyncio.timeout(options.prune_timeout):
                while True:
                    try:
                        await self._client.get(identifier)
                    except ObjectNotFoundError:
                        return True
                    await asyncio.sleep(options.poll_interval)
        except TimeoutError:
            self._emit(
                Event(
                    EventType.PRUNE_FAILED,
                    identifier,
                    error=f"Timeout after {options.prune_timeout}s waiting for deletion",
                )
            )
        except KApplyException as err:
            self._failed(identifier, err)
        return False

    def _failed(self, identifier: Identifier, err: Exception) -> None:
        _LOGGER.error("Failed to prune %s: %s", identifier, err)
        self._emit(Event(EventType.PRUNE_FAILED, identifier, error=str(err)))
