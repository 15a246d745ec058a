"""Utilities for timing the phases of a run."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


_timings: contextvars.ContextVar[dict[str, float] | None] = contextvars.ContextVar(
    "_timings", default=None
)


@contextmanager
def timing_context() -> Generator[dict[str, float], None, None]:
    """Collect the durations of all phases traced within the context."""
    timings: dict[str, float] = {}
    token = _timings.set(timings)
    try:
        yield timings
    finally:
        _timings.reset(token)


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log entry and exit of a named phase and record its duration."""
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", name)
    try:
        yield
    finally:
        duration = perf_counter() - t1
        if (timings := _timings.get()) is not None:
            timings[name] = timings.get(name, 0.0) + duration
        _LOGGER.debug("[Trace] < %s (%0.2fs)", name, duration)
