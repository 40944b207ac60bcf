"""
Per-session write serialization for CAT sessions.

Each session is a single-writer resource: theta, SE and the category tally
are read-modify-write state, so only one answer may be scored for a session
at a time. The registry hands out a non-blocking lock per session id; a
second writer gets a retryable ``ConcurrentModificationError`` instead of
waiting, and unrelated sessions never contend with each other.

Key design:
- Module-level singleton ``session_locks`` shared by all request threads
- Registry lock guards only the lock table, never the scoring work
- Entries are reference-counted and dropped when the last holder leaves
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator

from app.core.cat.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: threading.Lock
    refs: int = 0


class SessionLockRegistry:
    """Non-blocking per-session locks."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        """
        Hold the write lock for ``session_id`` for the duration of the block.

        Raises:
            ConcurrentModificationError: If another writer holds the lock.
        """
        with self._lock:
            entry = self._entries.setdefault(
                session_id, _LockEntry(lock=threading.Lock())
            )
            entry.refs += 1

        acquired = entry.lock.acquire(blocking=False)
        try:
            if not acquired:
                logger.warning(
                    f"Concurrent modification rejected for session {session_id}"
                )
                raise ConcurrentModificationError(
                    "Another request is already modifying this session",
                    context={"session_id": session_id},
                )
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._lock:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[session_id]

    def is_locked(self, session_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(session_id)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Shared by every request thread in the process
session_locks = SessionLockRegistry()
