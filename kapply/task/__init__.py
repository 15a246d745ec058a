"""Task tracking module for kapply.

This module provides a simple task tracking service that allows the prune
and status phases to run per object work concurrently and wait for it.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
