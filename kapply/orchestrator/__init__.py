"""Orchestrator for kapply.

This module sequences one apply, prune and status wait cycle and presents it
as a single event stream.
"""

from .orchestrator import Applier, RunAborted

__all__ = [
    "Applier",
    "RunAborted",
]
