from __future__ import annotations

import asyncio
import contextlib

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.provider import CredentialProvider, Credentials
from auth.rate_limit import InMemoryRateLimiter
from auth.relay_service import RelayService
from auth.session_store import DEFAULT_SWEEP_INTERVAL_SECONDS, SessionStore, sweep_forever
from auth.urls import relay_redirect_uri

from .constants import APP_VERSION, GIT_VERSION, LOGGER
from .env import RelaySettings, load_relay_settings


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "git": GIT_VERSION,
        }
    )


def build_provider(settings: RelaySettings) -> CredentialProvider:
    credentials = Credentials(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=relay_redirect_uri(settings.public_url),
        scopes=settings.scopes,
    )
    return CredentialProvider(
        credentials,
        settings.endpoints,
        upgrade_to_long_lived=settings.upgrade_to_long_lived,
    )


def create_app(
    settings: RelaySettings | None = None,
    *,
    provider: CredentialProvider | None = None,
    sessions: SessionStore | None = None,
    rate_limiter: InMemoryRateLimiter | None = None,
    rate_limiting: bool = True,
) -> Starlette:
    """Relay application: start/callback/poll routes, /health and the expiry sweep."""
    if provider is None:
        settings = settings or load_relay_settings()
        provider = build_provider(settings)
    if sessions is None:
        sessions = (
            SessionStore(ttl_seconds=settings.session_ttl_seconds)
            if settings is not None
            else SessionStore()
        )
    if rate_limiter is None and rate_limiting:
        rate_limiter = InMemoryRateLimiter()
    sweep_interval = (
        settings.sweep_interval_seconds
        if settings is not None
        else DEFAULT_SWEEP_INTERVAL_SECONDS
    )

    service = RelayService(
        provider=provider,
        sessions=sessions,
        rate_limiter=rate_limiter,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        sweeper = asyncio.create_task(
            sweep_forever(
                sessions,
                interval_seconds=sweep_interval,
                rate_limiter=rate_limiter,
            )
        )
        LOGGER.info("Relay started (version %s, git %s)", APP_VERSION, GIT_VERSION)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            LOGGER.info("Relay stopped")

    routes = [*service.routes(), Route("/health", health_route, methods=["GET"])]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.relay = service
    app.state.sessions = sessions
    return app
