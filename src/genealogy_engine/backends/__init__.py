"""Reference implementations of the engine's external collaborators."""
from __future__ import annotations

from typing import TYPE_CHECKING

from .feed import LocalChangeFeed
from .local_store import JsonFileLocalStore, MemoryLocalStore
from .memory import InMemoryBackend
from .sqlite import SQLiteBackend

if TYPE_CHECKING:
    from ..config import EngineConfig


def backend_from_config(config: EngineConfig) -> InMemoryBackend | SQLiteBackend:
    """Create the backend named by ``config.backend``."""
    if config.backend == "memory":
        return InMemoryBackend()
    return SQLiteBackend(config.db_path)


__all__ = [
    "LocalChangeFeed",
    "InMemoryBackend",
    "SQLiteBackend",
    "MemoryLocalStore",
    "JsonFileLocalStore",
    "backend_from_config",
]
