"""Session cache over :class:`ContributionStorage`.

Reads go through the cache, writes go through to storage. Callers that
read-modify-write a session hold :meth:`SessionStore.locked` for the
whole cycle; the storage version check catches writers in other processes.
"""
from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager

from .exceptions import NotFoundError, PersistenceError
from .logging import get_logger
from .models import Session
from .storage import ContributionStorage

logger = get_logger("contribution_pipeline.session_store")


class SessionStore:
    def __init__(self, storage: ContributionStorage):
        self.storage = storage
        self._cache: dict[str, Session] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, session_id: str) -> Generator[None, None, None]:
        lock = self._lock_for(session_id)
        with lock:
            yield

    def get(self, session_id: str) -> Session:
        """Return a private copy of the session.

        Raises:
            NotFoundError: no such session.
        """
        cached = self._cache.get(session_id)
        if cached is None:
            cached = self.storage.get_session(session_id)
            if cached is None:
                raise NotFoundError("Session", session_id)
            self._cache[session_id] = cached
        return cached.model_copy(deep=True)

    def put(self, session: Session) -> Session:
        """Persist ``session`` (insert when it has never been written)."""
        try:
            if session.version == 0:
                self.storage.insert_session(session)
            else:
                self.storage.update_session(session)
        except PersistenceError as exc:
            self.evict(session.session_id)
            if exc.conflict:
                logger.warning(
                    "session_store.stale_write",
                    session_id=session.session_id,
                    correlation_id=exc.correlation_id,
                )
            raise
        self._cache[session.session_id] = session.model_copy(deep=True)
        return session

    def evict(self, session_id: str) -> None:
        self._cache.pop(session_id, None)
