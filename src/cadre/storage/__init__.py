"""Session and memory persistence.

Components:

- :class:`SessionStore` / :class:`MemoryStore` - protocols the engine depends on
- :class:`SQLiteStorage` - SQLite backend implementing both
- :class:`InMemoryStorage` - process-local backend implementing both
- :data:`session_locks` - per-session write serialization
"""

from cadre.config.schema import StorageConfig
from cadre.storage.base import MemoryStore, SessionStore
from cadre.storage.in_memory import InMemoryStorage
from cadre.storage.locks import SessionLocks, session_locks
from cadre.storage.schema import (
    MemoryRecord,
    RunMetrics,
    RunRecord,
    RunStatus,
    SessionRecord,
    SessionSummary,
    WorkflowCheckpoint,
)
from cadre.storage.sqlite import SQLiteStorage


def create_storage(config: StorageConfig) -> InMemoryStorage | SQLiteStorage:
    """Create the configured storage backend."""
    if config.backend == "memory":
        return InMemoryStorage()
    return SQLiteStorage(config.path)


__all__ = [
    "InMemoryStorage",
    "MemoryRecord",
    "MemoryStore",
    "RunMetrics",
    "RunRecord",
    "RunStatus",
    "SQLiteStorage",
    "SessionLocks",
    "SessionRecord",
    "SessionStore",
    "SessionSummary",
    "WorkflowCheckpoint",
    "create_storage",
    "session_locks",
]
