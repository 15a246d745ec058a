"""Options for a single apply run.

Options are an immutable value passed into each component call of a run.
"""

from dataclasses import dataclass
import logging

from kapply.client import PropagationPolicy
from kapply.exceptions import PreconditionError

__all__ = [
    "ApplyOptions",
    "parse_propagation_policy",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_CONCURRENCY = 10


def parse_propagation_policy(value: str) -> PropagationPolicy:
    """Convert a propagation policy string into a PropagationPolicy.

    Only the exact policy names are accepted, every other value is rejected
    with the same error.
    """
    for policy in PropagationPolicy:
        if value == policy.value:
            return policy
    raise PreconditionError(
        "prune propagation policy must be one of "
        + ", ".join(policy.value for policy in sorted(PropagationPolicy))
    )


@dataclass(frozen=True)
class ApplyOptions:
    """Configuration for one apply run.

    Durations are in seconds.
    """

    poll_interval: float = DEFAULT_POLL_INTERVAL
    """Interval between status polls."""

    reconcile_timeout: float | None = 0
    """Bound on the status wait. Zero skips the wait, None waits forever."""

    prune_timeout: float = 0
    """Bound on waiting for pruned objects to be removed. Zero does not wait."""

    no_prune: bool = False
    """Do not prune previously applied objects."""

    dry_run: bool = False
    """Emit events without issuing any mutating call."""

    prune_propagation_policy: str = PropagationPolicy.BACKGROUND.value
    """Propagation policy used when deleting pruned objects."""

    emit_status_events: bool = True
    """Emit status update events while waiting for status."""

    concurrency: int = DEFAULT_CONCURRENCY
    """Maximum number of objects processed at once within a phase."""

    @property
    def propagation_policy(self) -> PropagationPolicy:
        return parse_propagation_policy(self.prune_propagation_policy)

    @property
    def wait_for_status(self) -> bool:
        return self.reconcile_timeout is None or self.reconcile_timeout > 0

    def validate(self) -> None:
        """Check the options before any call is made.

        Raises:
            PreconditionError: If any option is invalid.
        """
        parse_propagation_policy(self.prune_propagation_policy)
        if self.poll_interval <= 0:
            raise PreconditionError(
                f"poll interval must be positive: {self.poll_interval}"
            )
        if self.reconcile_timeout is not None and self.reconcile_timeout < 0:
            raise PreconditionError(
                f"reconcile timeout must not be negative: {self.reconcile_timeout}"
            )
        if self.prune_timeout < 0:
            raise PreconditionError(
                f"prune timeout must not be negative: {self.prune_timeout}"
            )
        if self.concurrency < 1:
            raise PreconditionError(f"concurrency must be positive: {self.concurrency}")
