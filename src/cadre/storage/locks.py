"""Per-session write locks.

Runs against the same session serialize their persistence step (run append
plus state replace) through one asyncio lock per session id. Reads do not
take the lock.
"""

import asyncio
import weakref


class SessionLocks:
    """Lazily created asyncio locks keyed by session id, one table per event loop.

    Tables hold their locks weakly: a lock lives while some run holds or
    waits on it and is dropped afterwards.
    """

    def __init__(self) -> None:
        self._tables: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, weakref.WeakValueDictionary[str, asyncio.Lock]
        ] = weakref.WeakKeyDictionary()

    def _table(self) -> weakref.WeakValueDictionary[str, asyncio.Lock]:
        loop = asyncio.get_running_loop()
        table = self._tables.get(loop)
        if table is None:
            table = self._tables[loop] = weakref.WeakValueDictionary()
        return table

    def lock(self, session_id: str) -> asyncio.Lock:
        table = self._table()
        lock = table.get(session_id)
        if lock is None:
            lock = table[session_id] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        """Number of live locks on the running event loop."""
        return len(self._table())


# Shared by every agent, team and workflow in the process
session_locks = SessionLocks()
