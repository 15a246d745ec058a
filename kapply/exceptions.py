"""Exceptions related to kapply."""

__all__ = [
    "KApplyException",
    "InputException",
    "PreconditionError",
    "CommandException",
    "TransportError",
    "ConflictError",
    "ObjectNotFoundError",
]


class KApplyException(Exception):
    """Generic base exception used for this library."""


class InputException(KApplyException):
    """Raised when the input files or values are not formatted as expected."""


class PreconditionError(KApplyException):
    """Raised when the run configuration is invalid, before any API call."""


class CommandException(KApplyException):
    """Raised when there is a failure running a subcommand."""


class TransportError(CommandException):
    """Raised when a single call to the resource API fails."""


class ConflictError(KApplyException):
    """Raised when an inventory write lost a race with another actor."""


class ObjectNotFoundError(KApplyException):
    """Raised when an object does not exist in the cluster."""

    def __init__(self, resource_name: str, message: str | None = None) -> None:
        super().__init__(message or f"Object {resource_name} not found")
        self.resource_name = resource_name
