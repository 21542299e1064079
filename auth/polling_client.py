from __future__ import annotations

import asyncio
import logging
import webbrowser
from dataclasses import dataclass
from typing import Callable

import httpx

from auth.browser import open_browser_best_effort
from auth.errors import AuthorizationDenied, RelayError, SessionTimeout
from auth.models import TokenResult
from auth.urls import join_url
from threadgate.http import build_relay_client

LOGGER = logging.getLogger("threadgate.auth")

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
# 150 polls every 2 seconds: the relay's 5 minute session lifetime.
DEFAULT_MAX_POLL_ATTEMPTS = 150


@dataclass(frozen=True)
class StartedSession:
    session_id: str
    auth_url: str


class PollingClient:
    """Drives the relay flow from a client without inbound connectivity."""

    def __init__(
        self,
        relay_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        open_browser: Callable[[str], object] = webbrowser.open,
        sleep=asyncio.sleep,
        echo: Callable[[str], None] = print,
    ) -> None:
        self.relay_url = relay_url.rstrip("/")
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._client = client
        self._open_browser = open_browser
        self._sleep = sleep
        self._echo = echo

    async def login(self) -> TokenResult:
        self._echo("Connecting to auth server...")
        started = await self.start()

        self._echo("Opening browser for authorization...")
        self._echo(f"If it doesn't open, visit:\n{started.auth_url}")
        open_browser_best_effort(started.auth_url, self._open_browser)

        self._echo("Waiting for authorization...")
        token = await self.wait_for_token(started.session_id)
        self._echo("Login successful!")
        return token

    async def start(self) -> StartedSession:
        url = join_url(self.relay_url, "/auth/start")
        async with self._session() as client:
            try:
                response = await client.post(url, json={})
            except httpx.HTTPError as error:
                raise RelayError(f"Failed to start auth: {error}") from error

        if not response.is_success:
            raise RelayError(f"Server error {response.status_code}: {response.text}")

        try:
            payload = response.json()
            session_id = payload["session_id"]
            auth_url = payload["auth_url"]
        except (ValueError, KeyError, TypeError) as error:
            raise RelayError(f"Invalid start response: {error}") from error
        if not isinstance(session_id, str) or not isinstance(auth_url, str):
            raise RelayError("Invalid start response: session_id and auth_url must be strings")

        return StartedSession(session_id=session_id, auth_url=auth_url)

    async def wait_for_token(self, session_id: str) -> TokenResult:
        url = join_url(self.relay_url, f"/auth/poll/{session_id}")

        async with self._session() as client:
            for attempt in range(1, self.max_attempts + 1):
                await self._sleep(self.interval_seconds)

                try:
                    response = await client.get(url)
                except httpx.HTTPError as error:
                    LOGGER.warning("Poll attempt %s failed: %s", attempt, error)
                    continue

                if response.status_code == 404:
                    raise SessionTimeout("Auth session expired or was not found.")
                if not response.is_success:
                    LOGGER.warning("Poll attempt %s returned %s", attempt, response.status_code)
                    continue

                token = self._parse_poll(response)
                if token is not None:
                    return token

        raise SessionTimeout()

    def _parse_poll(self, response: httpx.Response) -> TokenResult | None:
        try:
            payload = response.json()
            status = payload["status"]
        except (ValueError, KeyError, TypeError) as error:
            raise RelayError(f"Invalid poll response: {error}") from error

        if status == "pending":
            return None
        if status == "completed":
            access_token = payload.get("access_token")
            if not isinstance(access_token, str) or not access_token:
                raise RelayError("Invalid poll response: missing access_token")
            return TokenResult(access_token=access_token)
        if status == "failed":
            raise AuthorizationDenied(str(payload.get("error") or "Unknown error"))
        raise RelayError(f"Invalid poll response: unknown status {status!r}")

    def _session(self) -> "_ClientSession":
        return _ClientSession(self._client, self._sleep)


class _ClientSession:
    """Uses the injected client as-is, or owns a fresh one for the call."""

    def __init__(self, client: httpx.AsyncClient | None, sleep) -> None:
        self._client = client
        self._sleep = sleep
        self._owned: httpx.AsyncClient | None = None

    async def __aenter__(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._owned = build_relay_client(sleep=self._sleep)
        return self._owned

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owned is not None:
            await self._owned.aclose()
