from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, field

from auth.errors import ParseError, SessionAlreadyTerminal


@dataclass(frozen=True)
class Pending:
    is_terminal = False

    def to_dict(self) -> dict:
        return {"status": "pending"}


@dataclass(frozen=True)
class Completed:
    access_token: str = field(repr=False)
    is_terminal = True

    def to_dict(self) -> dict:
        return {"status": "completed", "access_token": self.access_token}


@dataclass(frozen=True)
class Failed:
    error: str
    is_terminal = True

    def to_dict(self) -> dict:
        return {"status": "failed", "error": self.error}


AuthState = Pending | Completed | Failed


class AuthSession:
    """One relay login attempt.

    ``id`` and ``created_at`` never change after construction. ``state`` is
    only moved through :meth:`transition`, once, from ``Pending`` to a
    terminal state. A callback calls :meth:`claim` before doing any work so
    that a repeated redirect cannot race the exchange already under way.
    """

    def __init__(self, *, created_at: float, session_id: str | None = None) -> None:
        self._id = session_id or secrets.token_urlsafe(32)
        self._created_at = created_at
        self._state: AuthState = Pending()
        self._claimed = False
        self._lock = threading.Lock()

    @property
    def id(self) -> str:
        return self._id

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def state(self) -> AuthState:
        with self._lock:
            return self._state

    @property
    def is_pending(self) -> bool:
        return isinstance(self.state, Pending)

    def claim(self) -> bool:
        """Reserve the pending session for one callback. True only for the first caller."""
        with self._lock:
            if self._claimed or not isinstance(self._state, Pending):
                return False
            self._claimed = True
            return True

    def transition(self, new_state: AuthState) -> None:
        if isinstance(new_state, Pending):
            raise ValueError("Sessions cannot transition back to pending.")
        with self._lock:
            if not isinstance(self._state, Pending):
                raise SessionAlreadyTerminal(self._id)
            self._state = new_state

    def age(self, now: float) -> float:
        return now - self._created_at

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return self.age(now) > ttl_seconds

    def __repr__(self) -> str:
        return f"AuthSession(id={self._id[:8]}..., state={type(self.state).__name__})"


@dataclass
class TokenResult:
    access_token: str = field(repr=False)
    expires_in: int | None = None
    user_id: str | None = None
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float | None:
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    def is_expired(self) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and time.time() >= expires_at

    @classmethod
    def from_payload(cls, payload: object) -> "TokenResult":
        if not isinstance(payload, dict):
            raise ParseError("token response must be a JSON object")

        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        user_id = payload.get("user_id")

        if not isinstance(access_token, str) or not access_token:
            raise ParseError("token response missing access_token")
        if expires_in is not None and (
            isinstance(expires_in, bool) or not isinstance(expires_in, int)
        ):
            raise ParseError("token response expires_in must be an integer")

        return cls(
            access_token=access_token,
            expires_in=expires_in,
            user_id=None if user_id is None else str(user_id),
        )
