from __future__ import annotations

import asyncio
import logging
import socket
import ssl
import tempfile
import threading
import webbrowser
from typing import Callable, Generic, TypeVar

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from auth.browser import open_browser_best_effort
from auth.certs import generate_localhost_certificate
from auth.errors import (
    AuthorizationDenied,
    ChannelClosed,
    ServerShutdown,
    SessionTimeout,
    TlsConfigError,
)
from auth.models import TokenResult
from auth.pages import error_response, success_response
from auth.provider import CredentialProvider

LOGGER = logging.getLogger("threadgate.auth")

DEFAULT_CALLBACK_PORT = 1337
# The local listener only ever serves one login, so the state can be fixed.
LOCAL_STATE = "threadgate-local"
_STARTUP_TIMEOUT_SECONDS = 10.0
_SHUTDOWN_TIMEOUT_SECONDS = 5.0
# Deauthorize and data-deletion callbacks the provider's app settings require.
_STATIC_PAGES = {"/deauthorize": "Deauthorized", "/delete": "Deleted"}

T = TypeVar("T")


class OnceCell(Generic[T]):
    """Holds a value that can be taken exactly once, from any thread."""

    def __init__(self, value: T) -> None:
        self._value: T | None = value
        self._lock = threading.Lock()

    def take(self) -> T | None:
        with self._lock:
            value, self._value = self._value, None
            return value

    @property
    def taken(self) -> bool:
        with self._lock:
            return self._value is None


class LocalCallbackListener:
    """Ephemeral HTTPS listener on loopback that captures one OAuth redirect.

    Usage::

        async with LocalCallbackListener(port=1337) as listener:
            open_browser(provider.authorization_url(LOCAL_STATE))
            code = await listener.wait_for_code()

    Entering the context generates a self-signed certificate, binds the
    socket and starts serving. The first ``/callback`` request resolves
    :meth:`wait_for_code`; later requests get the same static page and are
    otherwise ignored.
    """

    def __init__(self, host: str = "localhost", port: int = DEFAULT_CALLBACK_PORT) -> None:
        self.host = host
        self.port = port
        self.certificate_pem: bytes | None = None

        self._delivery: asyncio.Future[str] | None = None
        self._cell: OnceCell[asyncio.Future[str]] | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None
        self._sockets: list[socket.socket] = []
        self._tmpdir: tempfile.TemporaryDirectory | None = None

    @property
    def bound_port(self) -> int:
        if not self._sockets:
            raise RuntimeError("Listener is not bound.")
        return self._sockets[0].getsockname()[1]

    @property
    def bound_hosts(self) -> list[str]:
        return [sock.getsockname()[0] for sock in self._sockets]

    @property
    def delivered(self) -> bool:
        return self._cell is not None and self._cell.taken

    def build_app(self) -> Starlette:
        return Starlette(
            routes=[
                Route("/callback", self._handle_callback, methods=["GET"]),
                Route("/deauthorize", self._handle_static, methods=["GET", "POST"]),
                Route("/delete", self._handle_static, methods=["GET", "POST"]),
            ]
        )

    async def __aenter__(self) -> "LocalCallbackListener":
        loop = asyncio.get_running_loop()
        self._delivery = loop.create_future()
        self._cell = OnceCell(self._delivery)

        certificate = generate_localhost_certificate()
        self.certificate_pem = certificate.cert_pem
        self._tmpdir = tempfile.TemporaryDirectory(prefix="threadgate-")
        try:
            cert_path, key_path = certificate.write(self._tmpdir.name)
            config = uvicorn.Config(
                self.build_app(),
                ssl_certfile=str(cert_path),
                ssl_keyfile=str(key_path),
                log_config=None,
                log_level="warning",
                access_log=False,
                lifespan="off",
            )
            try:
                config.load()
            except (ssl.SSLError, OSError) as error:
                raise TlsConfigError(str(error)) from error

            self._sockets = self._bind_all()
            self._server = uvicorn.Server(config)
            self._server_task = asyncio.create_task(self._server.serve(sockets=self._sockets))
            await self._wait_started()
        except BaseException:
            await self._teardown()
            raise

        LOGGER.info("OAuth callback listener on https://%s:%s/callback", self.host, self.bound_port)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._teardown()

    def stop_serving(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

    async def wait_for_code(self, timeout: float | None = None) -> str:
        if self._delivery is None or self._server_task is None:
            raise RuntimeError("Listener is not running.")

        done, _ = await asyncio.wait(
            {self._delivery, self._server_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if self._delivery in done:
            if self._delivery.cancelled():
                raise ChannelClosed()
            return self._delivery.result()
        if self._server_task in done:
            raise ServerShutdown(self._server_failure_detail())
        raise SessionTimeout("Timed out waiting for the OAuth callback.")

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        code = params.get("code")
        reason = params.get("error_description") or params.get("error") or "Unknown error"

        delivery = self._cell.take() if self._cell is not None else None
        if delivery is None:
            LOGGER.info("Ignoring repeated OAuth callback request")
            return success_response()

        if delivery.done():
            return success_response()
        if code:
            delivery.set_result(code)
            return success_response()

        LOGGER.warning("OAuth callback reported an error: %s", reason)
        delivery.set_exception(AuthorizationDenied(reason))
        return error_response(reason)

    async def _handle_static(self, request: Request) -> Response:
        return HTMLResponse(_STATIC_PAGES.get(request.url.path, "OK"))

    def _bind_all(self) -> list[socket.socket]:
        if self.host != "localhost":
            return [self._bind(self.host, self.port)]

        # Browsers may resolve localhost to either loopback family.
        sockets = [self._bind("127.0.0.1", self.port)]
        try:
            sockets.append(self._bind("::1", sockets[0].getsockname()[1]))
        except ServerShutdown as error:
            LOGGER.debug("IPv6 loopback unavailable: %s", error)
        return sockets

    def _bind(self, host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock: socket.socket | None = None
        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as error:
            if sock is not None:
                sock.close()
            raise ServerShutdown(f"Could not bind {host}:{port}: {error}") from error
        return sock

    async def _wait_started(self) -> None:
        assert self._server is not None and self._server_task is not None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + _STARTUP_TIMEOUT_SECONDS
        while not self._server.started:
            if self._server_task.done():
                raise ServerShutdown(self._server_failure_detail())
            if loop.time() > deadline:
                raise ServerShutdown("Listener did not start in time.")
            await asyncio.sleep(0.01)

    def _server_failure_detail(self) -> str | None:
        task = self._server_task
        if task is None or not task.done():
            return None
        if task.cancelled():
            return "Listener task was cancelled."
        error = task.exception()
        if error is not None:
            return f"{type(error).__name__}: {error}"
        return None

    async def _teardown(self) -> None:
        if self._server is not None and self._server_task is not None:
            self._server.should_exit = True
            done, _ = await asyncio.wait({self._server_task}, timeout=_SHUTDOWN_TIMEOUT_SECONDS)
            if not done:
                self._server.force_exit = True
                await asyncio.wait({self._server_task})
            # Consume the outcome so a crashed listener is not reported twice.
            if not self._server_task.cancelled():
                self._server_task.exception()

        if self._delivery is not None and not self._delivery.done():
            self._delivery.cancel()
        for sock in self._sockets:
            sock.close()
        if self._tmpdir is not None:
            self._tmpdir.cleanup()
            self._tmpdir = None


class LocalFlow:
    def __init__(
        self,
        provider: CredentialProvider,
        *,
        host: str = "localhost",
        port: int = DEFAULT_CALLBACK_PORT,
        state_token: str = LOCAL_STATE,
        timeout: float | None = None,
        open_browser: Callable[[str], object] = webbrowser.open,
        echo: Callable[[str], None] = print,
    ) -> None:
        self.provider = provider
        self.host = host
        self.port = port
        self.state_token = state_token
        self.timeout = timeout
        self._open_browser = open_browser
        self._echo = echo

    async def login(self) -> TokenResult:
        async with LocalCallbackListener(self.host, self.port) as listener:
            auth_url = self.provider.authorization_url(self.state_token)
            self._echo("Opening browser for authorization...")
            self._echo(f"If it doesn't open, visit:\n{auth_url}")
            self._echo("Note: you may need to accept the self-signed certificate warning.")
            open_browser_best_effort(auth_url, self._open_browser)

            self._echo("Waiting for authorization...")
            code = await listener.wait_for_code(timeout=self.timeout)

        self._echo("Exchanging code for access token...")
        token = await self.provider.exchange_code(code)
        self._echo("Login successful!")
        return token
