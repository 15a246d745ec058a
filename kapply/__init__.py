"""
.. include:: ../README.md
"""

__all__ = [
    "manifest",
    "inventory",
    "prune",
    "status",
    "orchestrator",
    "event",
    "client",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
