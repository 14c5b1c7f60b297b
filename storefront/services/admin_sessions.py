"""Admin login sessions.

Routers only see the :class:`SessionStore` protocol; the in-memory store is
what the app runs with today. A shared store (database, Redis) can replace it
through ``get_session_store`` without touching the routes.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from storefront import config
from storefront.utils.tokens import make_pkey


@dataclass
class AdminSession:
    user_id: int
    username: str
    role: str
    created_at: float = field(default_factory=time.time)


class SessionStore(Protocol):
    def create(self, session: AdminSession) -> str: ...

    def get(self, token: str) -> Optional[AdminSession]: ...

    def invalidate(self, token: str) -> None: ...

    def sweep(self) -> int: ...


class InMemorySessionStore:
    def __init__(self, ttl: int = config.ADMIN_SESSION_TTL, clock=time.time):
        self.ttl = ttl
        self.clock = clock
        self._sessions: Dict[str, AdminSession] = {}
        self._lock = threading.Lock()

    def _expired(self, session: AdminSession) -> bool:
        return self.clock() - session.created_at >= self.ttl

    def create(self, session: AdminSession) -> str:
        token = make_pkey()
        session.created_at = self.clock()
        with self._lock:
            self._sessions[token] = session
        return token

    def get(self, token: str) -> Optional[AdminSession]:
        if not token:
            return None
        self.sweep()
        with self._lock:
            return self._sessions.get(token)

    def invalidate(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def sweep(self) -> int:
        """Drop expired sessions, return how many were removed."""
        with self._lock:
            stale = [t for t, s in self._sessions.items() if self._expired(s)]
            for t in stale:
                del self._sessions[t]
        return len(stale)


_store = InMemorySessionStore()


def get_session_store() -> SessionStore:
    return _store
