"""Storage protocols the engine depends on."""

from typing import Any, Protocol

from cadre.storage.schema import (
    MemoryRecord,
    RunRecord,
    SessionRecord,
    SessionSummary,
    WorkflowCheckpoint,
)


class SessionStore(Protocol):
    """Persistence for sessions, run history, state, summaries and checkpoints.

    ``append_run`` must be atomic and keep submission order; ``set_state``
    replaces the whole mapping atomically.
    """

    def create_session(self, session: SessionRecord) -> SessionRecord: ...

    def load_session(self, session_id: str, user_id: str | None = None) -> SessionRecord | None:
        """Load a session; with ``user_id`` set, sessions of other users are invisible."""
        ...

    def append_run(self, session_id: str, run: RunRecord) -> None: ...

    def load_runs(self, session_id: str, limit: int | None = None) -> list[RunRecord]:
        """Runs in submission order; ``limit`` keeps the most recent ones."""
        ...

    def get_state(self, session_id: str) -> dict[str, Any]: ...

    def set_state(self, session_id: str, state: dict[str, Any]) -> None: ...

    def set_summary(self, session_id: str, summary: SessionSummary) -> None: ...

    def list_sessions(self, user_id: str | None = None, limit: int = 10) -> list[SessionRecord]: ...

    def delete_session(self, session_id: str) -> bool: ...

    def prune_old_sessions(self, days: int) -> int:
        """Delete sessions not updated in the last ``days`` days; return how many."""
        ...

    def save_checkpoint(self, checkpoint: WorkflowCheckpoint) -> None: ...

    def load_checkpoint(self, workflow_run_id: str) -> WorkflowCheckpoint | None: ...

    def clear_checkpoint(self, workflow_run_id: str) -> None: ...


class MemoryStore(Protocol):
    """Persistence for user-scoped memory records."""

    def list_memories(self, user_id: str) -> list[MemoryRecord]: ...

    def upsert_memory(self, user_id: str, record: MemoryRecord) -> None: ...

    def delete_memory(self, user_id: str, memory_id: str) -> bool: ...
