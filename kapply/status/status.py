"""Status information for a tracked resource."""

from dataclasses import dataclass
from enum import StrEnum


class Status(StrEnum):
    """Reconcile status of a resource."""

    UNKNOWN = "Unknown"
    IN_PROGRESS = "InProgress"
    CURRENT = "Current"
    FAILED = "Failed"
    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"

    @property
    def terminal(self) -> bool:
        """Return True if no further transitions are expected."""
        return self in TERMINAL_STATUS


TERMINAL_STATUS = {Status.CURRENT, Status.FAILED, Status.NOT_FOUND, Status.TIMEOUT}


@dataclass(frozen=True)
class StatusResult:
    """Computed status and optional message for a resource."""

    status: Status
    message: str | None = None

    def __str__(self) -> str:
        """Return a string representation of the status."""
        if self.message:
            return f"{self.status}: {self.message}"
        return str(self.status)
