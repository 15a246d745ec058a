"""Clients for the resource API used by an apply run."""

from .client import ResourceClient, PropagationPolicy
from .in_memory import InMemoryClient
from .kubectl import KubectlClient

__all__ = [
    "ResourceClient",
    "PropagationPolicy",
    "InMemoryClient",
    "KubectlClient",
]
