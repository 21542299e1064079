from __future__ import annotations

import uvicorn

from auth.errors import OAuthError, TokenExchangeError
from auth.provider import CredentialProvider
from auth.rate_limit import InMemoryRateLimiter
from auth.relay_service import RelayService
from auth.session_store import SessionStore
from threadgate.app import create_app, health_route
from threadgate.certificates import ensure_certificate
from threadgate.constants import APP_VERSION, GIT_VERSION, GRACEFUL_SHUTDOWN_SECONDS, LOGGER
from threadgate.env import (
    TlsMode,
    is_truthy,
    load_env,
    load_relay_settings,
    parse_csv_env,
    setup_logging,
    validate_env,
)
from threadgate.http import RetryTransport


def main() -> None:
    load_env()
    log_level = setup_logging()
    validate_env()
    settings = load_relay_settings()
    app = create_app(settings)

    ssl_options: dict[str, str] = {}
    if settings.tls.mode is TlsMode.MANUAL:
        ssl_options = {
            "ssl_certfile": settings.tls.cert_path,
            "ssl_keyfile": settings.tls.key_path,
        }
    elif settings.tls.mode is TlsMode.ACME:
        cert_path, key_path = ensure_certificate(settings.tls.acme)
        ssl_options = {"ssl_certfile": str(cert_path), "ssl_keyfile": str(key_path)}

    scheme = "https" if ssl_options else "http"
    LOGGER.info(
        "Serving relay on %s://%s:%s (public URL %s)",
        scheme,
        settings.host,
        settings.port,
        settings.public_url,
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=log_level,
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
        **ssl_options,
    )


if __name__ == "__main__":
    main()
