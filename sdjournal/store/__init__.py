"""
Journal store backends.

The store is an external service reached through the handle protocol in
``sdjournal.store.base``. Two backends are provided:

- memory: an in-process store (``MemoryStore``)
- systemd: the host journal through python-systemd (``SystemdStore``)
"""

import errno
from typing import Optional

from sdjournal.errors import OpenError
from sdjournal.store.base import StoreBackend, StoreHandle, WakeupEvent
from sdjournal.store.memory import (
    MemoryStore,
    default_memory_store,
    reset_default_memory_store,
)
from sdjournal.utils.config import get_config

__all__ = [
    "MemoryStore",
    "StoreBackend",
    "StoreHandle",
    "WakeupEvent",
    "get_store",
    "reset_default_memory_store",
]


def get_store(backend: Optional[str] = None) -> StoreBackend:
    """
    Resolve a store backend by name.

    Args:
        backend: Backend name (memory or systemd). Defaults to the
            ``store.backend`` configuration value.

    Returns:
        The store backend

    Raises:
        ValueError: If the backend name is unknown
        OpenError: If the backend's library is not installed
    """
    backend = backend or get_config().get("store.backend", "systemd")

    if backend == "memory":
        return default_memory_store()

    if backend == "systemd":
        # Imported lazily, python-systemd is an optional dependency
        try:
            from sdjournal.store.native import SystemdStore
        except ImportError as exc:
            raise OpenError(
                f"journal: systemd backend unavailable ({exc}); install sdjournal[systemd]",
                errno=errno.ENOENT,
            ) from exc

        return SystemdStore()

    raise ValueError(f"Unknown journal store backend: {backend}")
