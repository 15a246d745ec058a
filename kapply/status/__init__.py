"""Status of live objects and the poller waiting for them to reconcile.

Status is computed per kind by a reader in a `StatusReaderRegistry`. Callers
may register readers for their own kinds:
```python
registry = default_registry()
registry.register("example.com", "Widget", widget_status)
poller = StatusPoller(client, stream.emit, registry)
```
"""

from .status import Status, StatusResult
from .readers import StatusReader, StatusReaderRegistry, default_registry
from .poller import StatusPoller

__all__ = [
    "Status",
    "StatusResult",
    "StatusReader",
    "StatusReaderRegistry",
    "default_registry",
    "StatusPoller",
]
