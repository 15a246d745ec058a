"""Polls live objects until they reach a terminal status.

Every tracked object starts as `Unknown`. On each poll the objects that are
not yet terminal are fetched again and their status recomputed; an event is
emitted only when the status of an object changes. Polling ends when every
object is terminal, when the reconcile timeout elapses (remaining objects
become `Timeout`), or when the caller cancels.
"""

import asyncio
from collections.abc import Iterable
import logging

from kapply.client import ResourceClient
from kapply.event import Event, EventSink, EventType
from kapply.exceptions import KApplyException, ObjectNotFoundError
from kapply.manifest import Identifier
from kapply.options import ApplyOptions
from kapply.task import TaskService, get_task_service

from .readers import StatusReaderRegistry, default_registry
from .status import Status, StatusResult

__all__ = [
    "StatusPoller",
]

_LOGGER = logging.getLogger(__name__)


class StatusPoller:
    """Waits for a set of objects to be reconciled."""

    def __init__(
        self,
        client: ResourceClient,
        emit: EventSink,
        registry: StatusReaderRegistry | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize StatusPoller.

        Args:
            client: The resource API used to fetch objects.
            emit: Receives a status update event for every transition.
            registry: Readers computing the status of each kind.
            task_service: Runs the per object fetches.
        """
        self._client = client
        self._emit = emit
        self._registry = registry or default_registry()
        self._task_service = task_service or get_task_service()

    async def wait(
        self, identifiers: Iterable[Identifier], options: ApplyOptions
    ) -> dict[Identifier, StatusResult]:
        """Poll the objects until all are terminal or the timeout elapses.

        Returns the last observed status of each object. A reconcile timeout
        of zero returns immediately without fetching anything.
        """
        if not options.wait_for_status:
            _LOGGER.debug("Reconcile timeout is zero, not waiting for status")
            return {}
        states = {
            identifier: StatusResult(Status.UNKNOWN) for identifier in identifiers
        }
        if not states:
            return states
        _LOGGER.info(
            "Waiting for %d objects (timeout %s)", len(states), options.reconcile_timeout
        )
        semaphore = asyncio.Semaphore(options.concurrency)
        try:
            async with asyncio.timeout(options.reconcile_timeout):
                while True:
                    await self._poll(states, options, semaphore)
                    if all(result.status.terminal for result in states.values()):
                        break
                    await asyncio.sleep(options.poll_interval)
        except TimeoutError:
            for identifier, result in states.items():
                if result.status.terminal:
                    continue
                _LOGGER.warning(
                    "Timeout waiting for %s (last status %s)", identifier, result
                )
                self._transition(
                    states,
                    identifier,
                    StatusResult(
                        Status.TIMEOUT,
                        f"Timeout after {options.reconcile_timeout}s, last status {result}",
                    ),
                    options,
                )
        return states

    async def _poll(
        self,
        states: dict[Identifier, StatusResult],
        options: ApplyOptions,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Fetch every non terminal object once."""

        async def poll_one(identifier: Identifier) -> None:
            async with semaphore:
                result = await self._fetch_status(identifier)
            self._transition(states, identifier, result, options)

        tasks = [
            self._task_service.create_task(
                poll_one(identifier), name=f"status {identifier}"
            )
            for identifier, result in states.items()
            if not result.status.terminal
        ]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

    async def _fetch_status(self, identifier: Identifier) -> StatusResult:
        try:
            resource = await self._client.get(identifier)
        except ObjectNotFoundError:
            return StatusResult(Status.NOT_FOUND, "Resource not found")
        except KApplyException as err:
            _LOGGER.warning("Failed to fetch status of %s: %s", identifier, err)
            return StatusResult(Status.UNKNOWN, str(err))
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.exception("Unexpected error fetching %s", identifier)
            return StatusResult(Status.FAILED, f"Unable to fetch status: {err}")
        try:
            return self._registry.compute(resource)
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.exception("Unexpected error computing status of %s", identifier)
            return StatusResult(Status.FAILED, f"Unable to compute status: {err}")

    def _transition(
        self,
        states: dict[Identifier, StatusResult],
        identifier: Identifier,
        result: StatusResult,
        options: ApplyOptions,
    ) -> None:
        previous = states[identifier]
        states[identifier] = result
        if result.status == previous.status:
            return
        _LOGGER.debug("Status of %s: %s -> %s", identifier, previous.status, result)
        if options.emit_status_events:
            self._emit(
                Event(
                    EventType.STATUS_UPDATE,
                    identifier,
                    status=result.status.value,
                    message=result.message,
                )
            )
