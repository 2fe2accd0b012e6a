from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Dict, Optional, Tuple


class MemorySessionStore:
    """In-process server-side sessions: session id -> (user id, expiry).

    Suitable for a single API process. All read-modify-write paths hold the lock.
    """

    def __init__(self, ttl_seconds: int = 24 * 3600, *, clock: Callable[[], float] = time.monotonic):
        self._ttl = max(1, int(ttl_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[int, float]] = {}

    def create(self, user_id: int) -> str:
        sid = secrets.token_urlsafe(32)
        with self._lock:
            self._purge_locked()
            self._sessions[sid] = (int(user_id), self._clock() + self._ttl)
        return sid

    def get(self, session_id: Optional[str]) -> Optional[int]:
        if not session_id:
            return None
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            user_id, expires_at = entry
            if expires_at <= self._clock():
                del self._sessions[session_id]
                return None
            return user_id

    def invalidate(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge_locked(self) -> None:
        now = self._clock()
        for sid in [s for s, (_, exp) in self._sessions.items() if exp <= now]:
            del self._sessions[sid]
