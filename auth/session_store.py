from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

from auth.errors import SessionNotFound
from auth.models import AuthSession
from auth.rate_limit import InMemoryRateLimiter

LOGGER = logging.getLogger("threadgate.relay")

DEFAULT_SESSION_TTL_SECONDS = 300
DEFAULT_SWEEP_INTERVAL_SECONDS = 60


class SessionStore:
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, AuthSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def now(self) -> float:
        return self._clock()

    def create_session(self) -> AuthSession:
        session = AuthSession(created_at=self._clock())
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> AuthSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> AuthSession:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def remove_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def pop_if_terminal(self, session_id: str) -> AuthSession | None:
        """Remove and return the session if its state is terminal."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.state.is_terminal:
                return None
            del self._sessions[session_id]
            return session

    def cleanup_expired(self, now: float | None = None) -> int:
        current = self._clock() if now is None else now
        with self._lock:
            expired_ids = [
                session_id
                for session_id, session in self._sessions.items()
                if session.is_expired(self.ttl_seconds, current)
            ]
            for session_id in expired_ids:
                del self._sessions[session_id]
        return len(expired_ids)


async def sweep_forever(
    store: SessionStore,
    *,
    interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    rate_limiter: InMemoryRateLimiter | None = None,
    sleep=asyncio.sleep,
) -> None:
    while True:
        await sleep(interval_seconds)
        removed = store.cleanup_expired()
        pruned = 0
        if rate_limiter is not None:
            pruned = rate_limiter.prune()
        LOGGER.debug(
            "Swept auth sessions removed=%s remaining=%s pruned_buckets=%s",
            removed,
            len(store),
            pruned,
        )
