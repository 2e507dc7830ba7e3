"""
This module provides the `SessionStore`, the explicit keyed registry of live
sessions.

Sessions are created on first use and held in memory only; there is no
durability. Each session id owns an `asyncio.Lock` so that at most one turn per
session is in flight. The registry itself is guarded by a short-lived lock held
only for dictionary access, never across a completion call, so turns for
different sessions never contend. Turn locks outlive the sessions they guard,
so deleting a session never hands a second lock to turns of the same id.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .config import GateConfig
from .state import Session, make_session

LOGGER = logging.getLogger(__name__)


class SessionStore:
    """
    In-memory get-or-create store with per-session turn serialization.

    Attributes:
        config: Configuration used to initialize new sessions.
    """

    def __init__(self, config: GateConfig | None = None) -> None:
        self.config = config or GateConfig()
        self._sessions: Dict[str, Session] = {}
        self._turn_locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._registry_lock:
            return session_id in self._sessions

    def get(self, session_id: str) -> Optional[Session]:
        with self._registry_lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = make_session(session_id, self.config)
                self._sessions[session_id] = session
                LOGGER.debug("Created session %s", session_id)
            return session

    async def delete(self, session_id: str) -> bool:
        """
        Drop a session once its in-flight turn, if any, has finished.

        The turn lock itself is kept: turns already queued on it run
        afterwards against a fresh session, one at a time.
        """
        async with self._turn_lock(session_id):
            with self._registry_lock:
                removed = self._sessions.pop(session_id, None)
        if removed is not None:
            LOGGER.info("Dropped session %s after %d turn(s)", session_id, removed.turn)
        return removed is not None

    def session_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._sessions)

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        with self._registry_lock:
            lock = self._turn_locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._turn_locks[session_id] = lock
            return lock

    @asynccontextmanager
    async def acquire(self, session_id: str) -> AsyncIterator[Session]:
        """
        Hold the session's turn lock for the duration of the ``async with``
        block and yield the (possibly new) session.
        """
        lock = self._turn_lock(session_id)
        async with lock:
            yield self.get_or_create(session_id)
