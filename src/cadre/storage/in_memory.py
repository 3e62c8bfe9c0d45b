"""Process-local storage backend, for tests and throwaway sessions."""

import copy
import threading
from datetime import timedelta
from typing import Any

from cadre.storage.schema import (
    MemoryRecord,
    RunRecord,
    SessionRecord,
    SessionSummary,
    WorkflowCheckpoint,
    utcnow,
)


class InMemoryStorage:
    """Dict-backed implementation of both SessionStore and MemoryStore.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, SessionRecord] = {}
        self._runs: dict[str, list[RunRecord]] = {}
        self._memories: dict[str, dict[str, MemoryRecord]] = {}
        self._checkpoints: dict[str, WorkflowCheckpoint] = {}

    # -- sessions --

    def create_session(self, session: SessionRecord) -> SessionRecord:
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session '{session.session_id}' already exists")
            self._sessions[session.session_id] = session.model_copy(deep=True)
            self._runs[session.session_id] = []
        return session

    def load_session(self, session_id: str, user_id: str | None = None) -> SessionRecord | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if user_id is not None and session.user_id not in (None, user_id):
                return None
            return session.model_copy(deep=True)

    def append_run(self, session_id: str, run: RunRecord) -> None:
        with self._lock:
            session = self._require(session_id)
            self._runs[session_id].append(run)
            session.updated_at = utcnow()

    def load_runs(self, session_id: str, limit: int | None = None) -> list[RunRecord]:
        with self._lock:
            runs = list(self._runs.get(session_id, []))
        if limit is not None:
            runs = runs[-limit:] if limit > 0 else []
        return runs

    def get_state(self, session_id: str) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._require(session_id).state)

    def set_state(self, session_id: str, state: dict[str, Any]) -> None:
        with self._lock:
            session = self._require(session_id)
            session.state = copy.deepcopy(state)
            session.updated_at = utcnow()

    def set_summary(self, session_id: str, summary: SessionSummary) -> None:
        with self._lock:
            self._require(session_id).summary = summary.model_copy()

    def list_sessions(self, user_id: str | None = None, limit: int = 10) -> list[SessionRecord]:
        with self._lock:
            sessions = [
                s.model_copy(deep=True)
                for s in self._sessions.values()
                if user_id is None or s.user_id == user_id
            ]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions[:limit]

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            self._runs.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    def prune_old_sessions(self, days: int) -> int:
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.updated_at < cutoff]
            for sid in stale:
                self.delete_session(sid)
        return len(stale)

    def _require(self, session_id: str) -> SessionRecord:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Session '{session_id}' not found") from None

    # -- workflow checkpoints --

    def save_checkpoint(self, checkpoint: WorkflowCheckpoint) -> None:
        with self._lock:
            self._checkpoints[checkpoint.workflow_run_id] = checkpoint.model_copy(deep=True)

    def load_checkpoint(self, workflow_run_id: str) -> WorkflowCheckpoint | None:
        with self._lock:
            checkpoint = self._checkpoints.get(workflow_run_id)
            return checkpoint.model_copy(deep=True) if checkpoint else None

    def clear_checkpoint(self, workflow_run_id: str) -> None:
        with self._lock:
            self._checkpoints.pop(workflow_run_id, None)

    # -- user memories --

    def list_memories(self, user_id: str) -> list[MemoryRecord]:
        with self._lock:
            records = list(self._memories.get(user_id, {}).values())
        return sorted((r.model_copy() for r in records), key=lambda r: r.created_at)

    def upsert_memory(self, user_id: str, record: MemoryRecord) -> None:
        with self._lock:
            self._memories.setdefault(user_id, {})[record.memory_id] = record.model_copy()

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        with self._lock:
            return self._memories.get(user_id, {}).pop(memory_id, None) is not None
