"""SQLite storage backend for sessions, runs, memories and checkpoints."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from cadre.storage.schema import (
    MemoryRecord,
    RunRecord,
    SessionRecord,
    SessionSummary,
    WorkflowCheckpoint,
    utcnow,
)


class SQLiteStorage:
    """SQLite-based implementation of both SessionStore and MemoryStore."""

    def __init__(self, db_path: str | Path):
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    owner_type TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    user_id TEXT,
                    state TEXT NOT NULL,
                    summary TEXT,
                    metadata TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL UNIQUE,
                    session_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    user_id TEXT NOT NULL,
                    memory_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (user_id, memory_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS workflow_checkpoints (
                    workflow_run_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_session ON runs(session_id, seq)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)")

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            session_id=row["id"],
            owner_type=row["owner_type"],
            owner_id=row["owner_id"],
            user_id=row["user_id"],
            state=json.loads(row["state"]),
            summary=SessionSummary.model_validate_json(row["summary"]) if row["summary"] else None,
            metadata=json.loads(row["metadata"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # -- sessions --

    def create_session(self, session: SessionRecord) -> SessionRecord:
        """Create a new session.

        Raises:
            sqlite3.IntegrityError: If the session id is taken
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions
                (id, owner_type, owner_id, user_id, state, summary, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    session.session_id,
                    session.owner_type,
                    session.owner_id,
                    session.user_id,
                    json.dumps(session.state, default=str),
                    session.summary.model_dump_json() if session.summary else None,
                    json.dumps(session.metadata, default=str),
                    session.created_at.isoformat(),
                    session.updated_at.isoformat(),
                ),
            )
        return session

    def load_session(self, session_id: str, user_id: str | None = None) -> SessionRecord | None:
        """Get a session by ID.

        Args:
            session_id: Session identifier
            user_id: When set, sessions owned by another user are not returned

        Returns:
            Session record or None if not found
        """
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()

        if not row:
            return None
        if user_id is not None and row["user_id"] not in (None, user_id):
            return None
        return self._row_to_session(row)

    def append_run(self, session_id: str, run: RunRecord) -> None:
        """Append a run to a session's history in one transaction."""
        now = utcnow().isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO runs (run_id, session_id, data, created_at) VALUES (?, ?, ?, ?)",
                (run.run_id, session_id, run.model_dump_json(), run.created_at.isoformat()),
            )
            conn.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id))

    def load_runs(self, session_id: str, limit: int | None = None) -> list[RunRecord]:
        """Load runs for a session.

        Args:
            session_id: Session identifier
            limit: Keep only the most recent ``limit`` runs

        Returns:
            Runs in submission order
        """
        if limit is not None and limit <= 0:
            return []

        query = "SELECT data FROM runs WHERE session_id = ? ORDER BY seq DESC"
        params: list[Any] = [session_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [RunRecord.model_validate_json(row["data"]) for row in reversed(rows)]

    def get_state(self, session_id: str) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute("SELECT state FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise KeyError(f"Session '{session_id}' not found")
        return json.loads(row["state"])

    def set_state(self, session_id: str, state: dict[str, Any]) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE sessions SET state = ?, updated_at = ? WHERE id = ?",
                (json.dumps(state, default=str), utcnow().isoformat(), session_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Session '{session_id}' not found")

    def set_summary(self, session_id: str, summary: SessionSummary) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE sessions SET summary = ? WHERE id = ?",
                (summary.model_dump_json(), session_id),
            )

    def list_sessions(self, user_id: str | None = None, limit: int = 10) -> list[SessionRecord]:
        """List sessions ordered by most recent activity."""
        query = "SELECT * FROM sessions"
        params: list[Any] = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_session(row) for row in rows]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and all its runs.

        Returns:
            True if session was deleted, False if not found
        """
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cursor.rowcount > 0

    def prune_old_sessions(self, days: int) -> int:
        """Delete sessions not updated in the last ``days`` days."""
        cutoff = utcnow() - timedelta(days=days)
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE updated_at < ?", (cutoff.isoformat(),)
            )
            return cursor.rowcount

    # -- workflow checkpoints --

    def save_checkpoint(self, checkpoint: WorkflowCheckpoint) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO workflow_checkpoints (workflow_run_id, data, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(workflow_run_id) DO UPDATE SET
                    data = excluded.data, updated_at = excluded.updated_at
            """,
                (
                    checkpoint.workflow_run_id,
                    checkpoint.model_dump_json(),
                    checkpoint.updated_at.isoformat(),
                ),
            )

    def load_checkpoint(self, workflow_run_id: str) -> WorkflowCheckpoint | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM workflow_checkpoints WHERE workflow_run_id = ?",
                (workflow_run_id,),
            ).fetchone()
        return WorkflowCheckpoint.model_validate_json(row["data"]) if row else None

    def clear_checkpoint(self, workflow_run_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM workflow_checkpoints WHERE workflow_run_id = ?", (workflow_run_id,)
            )

    # -- user memories --

    def list_memories(self, user_id: str) -> list[MemoryRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM memories WHERE user_id = ? ORDER BY created_at ASC",
                (user_id,),
            ).fetchall()
        return [MemoryRecord.model_validate_json(row["data"]) for row in rows]

    def upsert_memory(self, user_id: str, record: MemoryRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO memories (user_id, memory_id, data, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, memory_id) DO UPDATE SET data = excluded.data
            """,
                (user_id, record.memory_id, record.model_dump_json(), record.created_at.isoformat()),
            )

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM memories WHERE user_id = ? AND memory_id = ?", (user_id, memory_id)
            )
            return cursor.rowcount > 0
