from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, Optional

from domain.errors import SessionLostError

from .dialogs import DialogSession

Clock = Callable[[], datetime]

DEFAULT_SESSION_TTL = timedelta(minutes=15)


class SessionStore:
    """
    In-memory dialog sessions keyed by user id.

    A user has at most one session; `put` overwrites whatever was there.
    Sessions idle for longer than `ttl` are dropped. The first lookup of an
    expired session raises `SessionLostError` so the user can be told to
    restart; later lookups behave as if no session ever existed.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Clock = datetime.now,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._sessions: Dict[int, DialogSession] = {}
        self._lock = threading.Lock()

    def _expired(self, session: DialogSession, now: datetime) -> bool:
        return now - session.updated_at > self._ttl

    def get(self, uid: int) -> Optional[DialogSession]:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(uid)
            if session is None:
                return None
            if self._expired(session, now):
                del self._sessions[uid]
                raise SessionLostError(f"Dialog session of user {uid} expired")
            return session

    def put(self, session: DialogSession) -> None:
        session.updated_at = self._clock()
        with self._lock:
            self._sessions[session.uid] = session

    def clear(self, uid: int) -> None:
        with self._lock:
            self._sessions.pop(uid, None)

    def purge_expired(self) -> int:
        """Drop every expired session and return how many were removed."""

        now = self._clock()
        with self._lock:
            stale = [uid for uid, s in self._sessions.items() if self._expired(s, now)]
            for uid in stale:
                del self._sessions[uid]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


@dataclass
class _UserLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


@dataclass
class UserLocks:
    """
    Per-user locks serialising event processing for the same user.

    Events of different users never wait on each other. An entry lives only
    while some thread holds or waits for it.
    """

    _locks: Dict[int, _UserLock] = field(default_factory=dict)
    _guard: threading.Lock = field(default_factory=threading.Lock)

    @contextmanager
    def hold(self, uid: int) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(uid)
            if entry is None:
                entry = self._locks[uid] = _UserLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[uid]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
