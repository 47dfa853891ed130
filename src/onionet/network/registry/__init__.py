"""
Onionet Registry - the directory of onion routers.

Public API:
    - RegistryNode: The registry server
    - Directory: In-memory node directory
    - create_registry, run_registry: Convenience functions

Example:
    from onionet.network.registry import create_registry

    registry = create_registry()
    await registry.start()
"""

from onionet.network.registry.core import (
    REGISTRATION_HEADER,
    RegistryNode,
    create_registry,
    run_registry,
)
from onionet.network.registry.directory import Directory

__all__ = [
    "REGISTRATION_HEADER",
    "Directory",
    "RegistryNode",
    "create_registry",
    "run_registry",
]
