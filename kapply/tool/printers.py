"""Printers rendering the event stream of a run.

A printer consumes the stream to completion and is selected by name from
`PRINTERS`.
"""

from abc import ABC, abstractmethod
from collections.abc import Generator
from dataclasses import dataclass
import json
import sys
from typing import TextIO

import yaml

from kapply.event import Event, EventStream, EventType, RunOutcome
from kapply.exceptions import InputException
from kapply.manifest import Identifier

__all__ = [
    "Printer",
    "PRINTERS",
    "DEFAULT_PRINTER",
    "get_printer",
]

PADDING = 4

EVENT_VERBS = {
    EventType.APPLY_SUCCEEDED: "applied",
    EventType.APPLY_FAILED: "apply failed",
    EventType.PRUNE_PENDING: "deleting",
    EventType.PRUNE_SKIPPED: "prune skipped",
    EventType.PRUNE_SUCCEEDED: "pruned",
    EventType.PRUNE_FAILED: "prune failed",
}


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the rows aligned to the widest value of each column."""
    data = [headers] + rows
    widths = [max(len(row[i]) for row in data) for i in range(len(headers))]
    for row in data:
        yield "".join(
            value.ljust(width + PADDING) for value, width in zip(row, widths)
        ).rstrip()


class Printer(ABC):
    """Renders the events of a run."""

    def __init__(self, file: TextIO | None = None) -> None:
        """Initialize the Printer."""
        self._file = file or sys.stdout

    async def print(self, stream: EventStream) -> RunOutcome | None:
        """Consume the stream to completion, returning the run outcome."""
        outcome: RunOutcome | None = None
        async for event in stream:
            if event.outcome is not None:
                outcome = event.outcome
            self.handle(event)
        self.finish(outcome)
        return outcome

    @abstractmethod
    def handle(self, event: Event) -> None:
        """Render a single event."""

    def finish(self, outcome: RunOutcome | None) -> None:
        """Called once the stream is closed."""

    def _write(self, line: str) -> None:
        print(line, file=self._file)


class EventsPrinter(Printer):
    """Prints one human readable line per event."""

    def __init__(self, file: TextIO | None = None) -> None:
        """Initialize the EventsPrinter."""
        super().__init__(file)
        self._counts: dict[EventType, int] = {}

    def handle(self, event: Event) -> None:
        """Render a single event."""
        self._counts[event.type] = self._counts.get(event.type, 0) + 1
        if event.type == EventType.APPLY_PENDING:
            return
        if verb := EVENT_VERBS.get(event.type):
            line = f"{event.identifier} {verb}"
            if event.message == "(dry run)":
                line += " (dry run)"
            if event.error:
                line += f": {event.error}"
            self._write(line)
        elif event.type == EventType.STATUS_UPDATE:
            line = f"{event.identifier} is {event.status}"
            if event.message:
                line += f": {event.message}"
            self._write(line)
        elif event.type == EventType.ERROR:
            prefix = f"{event.identifier} " if event.identifier else ""
            self._write(f"{prefix}error: {event.message}: {event.error}")

    def finish(self, outcome: RunOutcome | None) -> None:
        """Print totals for the run."""
        applied = self._counts.get(EventType.APPLY_SUCCEEDED, 0)
        apply_failed = self._counts.get(EventType.APPLY_FAILED, 0)
        pruned = self._counts.get(EventType.PRUNE_SUCCEEDED, 0)
        skipped = self._counts.get(EventType.PRUNE_SKIPPED, 0)
        prune_failed = self._counts.get(EventType.PRUNE_FAILED, 0)
        self._write(f"{applied} resource(s) applied, {apply_failed} failed")
        self._write(
            f"{pruned} resource(s) pruned, {skipped} skipped, {prune_failed} failed"
        )
        if outcome is not None:
            self._write(outcome.summary)
            for failure in outcome.failures:
                self._write(f"  {failure}")


@dataclass
class _Row:
    action: str = ""
    status: str = ""
    message: str = ""


class TablePrinter(Printer):
    """Prints a table of the final state of every object once the run ends."""

    def __init__(self, file: TextIO | None = None) -> None:
        """Initialize the TablePrinter."""
        super().__init__(file)
        self._rows: dict[Identifier, _Row] = {}
        self._errors: list[Event] = []

    def handle(self, event: Event) -> None:
        """Record the latest state of the object of the event."""
        if event.identifier is None:
            if event.type == EventType.ERROR:
                self._errors.append(event)
            return
        row = self._rows.setdefault(event.identifier, _Row())
        if event.type == EventType.STATUS_UPDATE:
            row.status = event.status or ""
        elif verb := EVENT_VERBS.get(event.type):
            row.action = verb
        elif event.type == EventType.ERROR:
            row.action = "error"
        else:
            return
        row.message = event.error or event.message or ""

    def finish(self, outcome: RunOutcome | None) -> None:
        """Print the table."""
        rows = [
            [str(identifier), row.action, row.status, row.message]
            for identifier, row in self._rows.items()
        ]
        if rows:
            for line in format_columns(["RESOURCE", "ACTION", "STATUS", "MESSAGE"], rows):
                self._write(line)
        for event in self._errors:
            self._write(f"error: {event.message}: {event.error}")
        if outcome is not None:
            self._write(outcome.summary)


class JsonPrinter(Printer):
    """Prints one json object per event."""

    def handle(self, event: Event) -> None:
        """Render a single event."""
        self._write(json.dumps(event.to_dict(), sort_keys=False))


class YamlPrinter(Printer):
    """Prints one yaml document per event."""

    def handle(self, event: Event) -> None:
        """Render a single event."""
        print(
            yaml.dump(event.to_dict(), sort_keys=False, explicit_start=True),
            end="",
            file=self._file,
        )


PRINTERS: dict[str, type[Printer]] = {
    "events": EventsPrinter,
    "table": TablePrinter,
    "json": JsonPrinter,
    "yaml": YamlPrinter,
}
DEFAULT_PRINTER = "events"


def get_printer(name: str, file: TextIO | None = None) -> Printer:
    """Return the printer registered with the name."""
    if (cls := PRINTERS.get(name)) is None:
        raise InputException(
            f"Output format must be one of {', '.join(PRINTERS)}, got '{name}'"
        )
    return cls(file)
