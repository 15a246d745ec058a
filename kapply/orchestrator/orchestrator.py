"""Orchestrator for an apply run.

This module provides the `Applier` that sequences the phases of a run and
presents their progress as a single event stream:

- Validate the options, before any call to the resource API
- Apply every desired object
- Load the previous inventory and record the new one
- Prune objects of the previous inventory that are no longer desired
- Wait for the applied objects to reconcile

Phases run one after another since pruning must see the applied set and the
status wait must see what survived pruning. The stream always ends with one
terminal event, `COMPLETED` or `ERROR` when the run was aborted, and is closed
on every exit path.
"""

import asyncio
from collections.abc import Sequence
import logging

from kapply.client import ResourceClient
from kapply.context import timing_context, trace_context
from kapply.event import Event, EventStream, EventType, Failure, Phase, RunOutcome
from kapply.exceptions import KApplyException, ObjectNotFoundError, PreconditionError
from kapply.inventory import Inventory, InventoryStore, InventoryTemplate
from kapply.manifest import Identifier, Resource
from kapply.options import ApplyOptions
from kapply.prune import PruneEngine
from kapply.status import Status, StatusPoller, StatusReaderRegistry
from kapply.task import TaskService, task_service_context

_LOGGER = logging.getLogger(__name__)

STATUS_FAILURES = {Status.FAILED, Status.TIMEOUT}


class RunAborted(KApplyException):
    """Raised within a run when a phase cannot continue."""

    def __init__(self, phase: Phase, cause: Exception) -> None:
        super().__init__(str(cause))
        self.phase = phase
        self.cause = cause


class _Recorder:
    """Forwards events to the stream and records the failures they report."""

    def __init__(self, stream: EventStream) -> None:
        self._stream = stream
        self.phase = Phase.VALIDATE
        self.failures: list[Failure] = []

    def emit(self, event: Event) -> None:
        if event.is_failure:
            self.record(event.error or event.message or str(event.type), event.identifier)
        self._stream.emit(event)

    def record(self, message: str, identifier: Identifier | None = None) -> None:
        self.failures.append(Failure(self.phase, message, identifier))


def _aborted(
    recorder: _Recorder, timings: dict[str, float], message: str, error: str
) -> Event:
    """Return the terminal event of a run that did not complete."""
    return Event(
        EventType.ERROR,
        message=message,
        error=error,
        outcome=RunOutcome(
            aborted=True, failures=recorder.failures, durations=dict(timings)
        ),
    )


class Applier:
    """Runs apply, prune and status wait for one collection of objects."""

    def __init__(
        self,
        client: ResourceClient,
        inventory: InventoryTemplate,
        registry: StatusReaderRegistry | None = None,
    ) -> None:
        """Initialize the Applier.

        Args:
            client: The resource API.
            inventory: Location and label of the collection inventory.
            registry: Status readers used when waiting for status.
        """
        self._client = client
        self._template = inventory
        self._registry = registry
        self._inventory_store = InventoryStore(client)

    def run(self, resources: Sequence[Resource], options: ApplyOptions) -> EventStream:
        """Start a run and return the stream of its events.

        Must be called from a running event loop. The run is cancelled with
        `EventStream.cancel` or by cancelling the task consuming the stream.
        """
        stream = EventStream()
        task = asyncio.create_task(
            self._run(stream, list(resources), options), name="kapply run"
        )
        stream.attach(task)
        return stream

    async def _run(
        self, stream: EventStream, resources: list[Resource], options: ApplyOptions
    ) -> None:
        recorder = _Recorder(stream)
        with task_service_context() as task_service, timing_context() as timings:
            try:
                await self._run_phases(recorder, resources, options, task_service)
            except RunAborted as err:
                _LOGGER.error("Run aborted in %s phase: %s", err.phase, err.cause)
                recorder.phase = err.phase
                recorder.record(str(err.cause))
                stream.emit(
                    _aborted(
                        recorder, timings, f"aborted during {err.phase}", str(err.cause)
                    )
                )
            except asyncio.CancelledError:
                _LOGGER.info("Run was cancelled")
                await task_service.cancel_all()
                recorder.record("cancelled")
                stream.emit(_aborted(recorder, timings, "aborted", "cancelled"))
                raise
            except Exception as err:  # pylint: disable=broad-except
                _LOGGER.exception("Unexpected error in %s phase", recorder.phase)
                await task_service.cancel_all()
                error = str(err) or type(err).__name__
                recorder.record(error)
                stream.emit(
                    _aborted(
                        recorder, timings, f"aborted during {recorder.phase}", error
                    )
                )
            else:
                outcome = RunOutcome(failures=recorder.failures, durations=dict(timings))
                _LOGGER.info("%s", outcome.summary)
                stream.emit(
                    Event(EventType.COMPLETED, message=outcome.summary, outcome=outcome)
                )
            finally:
                stream.close()

    async def _run_phases(
        self,
        recorder: _Recorder,
        resources: list[Resource],
        options: ApplyOptions,
        task_service: TaskService,
    ) -> None:
        try:
            options.validate()
        except PreconditionError as err:
            raise RunAborted(Phase.VALIDATE, err) from err

        recorder.phase = Phase.APPLY
        with trace_context(Phase.APPLY.value):
            applied = await self._apply(recorder, resources, options)

        recorder.phase = Phase.INVENTORY
        current = [resource.identifier for resource in resources]
        with trace_context(Phase.INVENTORY.value):
            previous = await self._load_inventory()
            current_marker = await self._save_inventory(
                recorder, current, previous, options
            )

        if options.no_prune:
            _LOGGER.info("Pruning disabled")
        else:
            recorder.phase = Phase.PRUNE
            with trace_context(Phase.PRUNE.value):
                await PruneEngine(self._client, recorder.emit, task_service).prune(
                    previous,
                    current,
                    options,
                    current_marker,
                    require_marker=True,
                    retain_markers=current_marker is None,
                )

        if not options.wait_for_status:
            return
        if options.dry_run:
            _LOGGER.info("Dry run, not waiting for status")
            return
        recorder.phase = Phase.STATUS
        with trace_context(Phase.STATUS.value):
            poller = StatusPoller(
                self._client, recorder.emit, self._registry, task_service
            )
            results = await poller.wait(applied, options)
        for identifier, result in results.items():
            if result.status in STATUS_FAILURES:
                recorder.record(str(result), identifier)

    async def _apply(
        self, recorder: _Recorder, resources: list[Resource], options: ApplyOptions
    ) -> list[Identifier]:
        """Apply each object in order, returning those applied successfully."""
        _LOGGER.info("Applying %d objects", len(resources))
        applied: list[Identifier] = []
        for resource in resources:
            identifier = resource.identifier
            recorder.emit(Event(EventType.APPLY_PENDING, identifier))
            try:
                await self._client.apply(resource, dry_run=options.dry_run)
            except KApplyException as err:
                _LOGGER.error("Failed to apply %s: %s", identifier, err)
                recorder.emit(Event(EventType.APPLY_FAILED, identifier, error=str(err)))
                continue
            recorder.emit(
                Event(
                    EventType.APPLY_SUCCEEDED,
                    identifier,
                    message="(dry run)" if options.dry_run else None,
                )
            )
            applied.append(identifier)
        return applied

    async def _load_inventory(self) -> Inventory | None:
        """Load the previous inventory, None on the first apply."""
        try:
            return await self._inventory_store.load(self._template)
        except ObjectNotFoundError:
            _LOGGER.info("No previous inventory for '%s'", self._template.label)
            return None
        except KApplyException as err:
            raise RunAborted(Phase.INVENTORY, err) from err

    async def _save_inventory(
        self,
        recorder: _Recorder,
        current: list[Identifier],
        previous: Inventory | None,
        options: ApplyOptions,
    ) -> Identifier | None:
        """Record the new inventory, returning the marker it is recorded on.

        Returns None when the write fails, and the previous markers are kept so
        that the objects they record are not forgotten. Without pruning the
        previous objects remain members of the collection and the previous
        markers are retired here.
        """
        objects = list(current)
        if options.no_prune and previous is not None:
            objects.extend(previous.difference(current))
        try:
            inventory = await self._inventory_store.save(
                self._template, objects, previous, dry_run=options.dry_run
            )
        except KApplyException as err:
            _LOGGER.error("Failed to save inventory: %s", err)
            recorder.emit(
                Event(
                    EventType.ERROR,
                    self._template.marker(objects),
                    message="failed to save inventory",
                    error=str(err),
                )
            )
            return None
        if options.no_prune and not options.dry_run and previous is not None:
            try:
                await self._inventory_store.delete(previous, keep=inventory.marker)
            except KApplyException as err:
                # Left over markers are merged into the inventory by the next run
                _LOGGER.error("Failed to delete previous inventory: %s", err)
                recorder.emit(
                    Event(
                        EventType.ERROR,
                        previous.marker,
                        message="failed to delete previous inventory",
                        error=str(err),
                    )
                )
        return inventory.marker
