from __future__ import annotations

import logging
import math

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.client_ip import client_key
from auth.errors import SessionAlreadyTerminal, SessionNotFound, TokenExchangeError
from auth.models import AuthSession, AuthState, Completed, Failed
from auth.pages import error_response, success_response
from auth.provider import CredentialProvider
from auth.rate_limit import POLL_LIMIT, START_LIMIT, InMemoryRateLimiter, RateLimitConfig
from auth.session_store import SessionStore

LOGGER = logging.getLogger("threadgate.relay")

SESSION_NOT_FOUND = "Session not found or expired"
ALREADY_HANDLED = "This authorization request has already been completed or is in progress"


def _short(session_id: str) -> str:
    return session_id[:8]


class RelayService:
    def __init__(
        self,
        *,
        provider: CredentialProvider,
        sessions: SessionStore,
        rate_limiter: InMemoryRateLimiter | None = None,
        start_limit: RateLimitConfig = START_LIMIT,
        poll_limit: RateLimitConfig = POLL_LIMIT,
    ) -> None:
        self.provider = provider
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.start_limit = start_limit
        self.poll_limit = poll_limit

    def routes(self) -> list[Route]:
        return [
            Route("/auth/start", self._handle_start, methods=["POST"]),
            Route("/auth/callback", self._handle_callback, methods=["GET"]),
            Route("/auth/poll/{session_id}", self._handle_poll, methods=["GET"]),
        ]

    # -- handlers --------------------------------------------------------------

    async def _handle_start(self, request: Request) -> Response:
        limited = self._check_rate_limit(request, "start", self.start_limit)
        if limited is not None:
            return limited

        session = self.sessions.create_session()
        auth_url = self.provider.authorization_url(session.id)
        LOGGER.info("Created auth session %s", _short(session.id))

        return JSONResponse({"session_id": session.id, "auth_url": auth_url})

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        session_id = params.get("state")
        if not session_id:
            return error_response("Missing state parameter")

        try:
            session = self.sessions.require_session(session_id)
        except SessionNotFound:
            LOGGER.warning("Callback for unknown or expired session")
            return error_response(SESSION_NOT_FOUND)

        # Only the first callback may resolve the session; later ones must not touch it.
        if not session.claim():
            LOGGER.warning("Rejected repeated callback for session %s", _short(session_id))
            return error_response(ALREADY_HANDLED)

        error = params.get("error")
        if error:
            message = params.get("error_description") or error
            LOGGER.warning("Provider reported error for session %s: %s", _short(session_id), message)
            return self._finish(session, Failed(error=message))

        code = params.get("code")
        if not code:
            return self._finish(session, Failed(error="Missing authorization code"))

        LOGGER.info("Exchanging code for token for session %s", _short(session_id))
        try:
            token = await self.provider.exchange_code(code)
        except TokenExchangeError as exchange_error:
            LOGGER.error(
                "Token exchange failed for session %s: %s", _short(session_id), exchange_error
            )
            return self._finish(session, Failed(error=str(exchange_error)))

        LOGGER.info("Token exchange successful for session %s", _short(session_id))
        return self._finish(session, Completed(access_token=token.access_token))

    async def _handle_poll(self, request: Request) -> Response:
        limited = self._check_rate_limit(request, "poll", self.poll_limit)
        if limited is not None:
            return limited

        session_id = request.path_params["session_id"]
        try:
            session = self.sessions.require_session(session_id)
        except SessionNotFound:
            return JSONResponse({"error": SESSION_NOT_FOUND}, status_code=404)

        state = session.state
        if state.is_terminal:
            if self.sessions.pop_if_terminal(session_id) is None:
                return JSONResponse({"error": SESSION_NOT_FOUND}, status_code=404)
            LOGGER.info("Delivered terminal state for session %s", _short(session_id))

        return JSONResponse(state.to_dict())

    # -- helpers ---------------------------------------------------------------

    def _finish(self, session: AuthSession, state: AuthState) -> Response:
        try:
            session.transition(state)
        except SessionAlreadyTerminal:
            LOGGER.warning("Concurrent callback lost the race for session %s", _short(session.id))
            return error_response(ALREADY_HANDLED)

        if isinstance(state, Failed):
            return error_response(state.error)
        return success_response()

    def _check_rate_limit(
        self, request: Request, scope: str, config: RateLimitConfig
    ) -> Response | None:
        if self.rate_limiter is None:
            return None

        key = f"{scope}:{client_key(request)}"
        result = self.rate_limiter.check(key, config)
        if result.allowed:
            return None

        LOGGER.warning("Rate limited %s request", scope)
        return JSONResponse(
            {"error": "Too many requests"},
            status_code=429,
            headers={
                "Retry-After": str(max(1, math.ceil(result.retry_after))),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": str(result.remaining),
            },
        )
