from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError

from auth.provider import (
    DEFAULT_SCOPES,
    THREADS_AUTHORIZE_URL,
    THREADS_LONG_LIVED_URL,
    THREADS_REFRESH_URL,
    THREADS_TOKEN_URL,
    ProviderEndpoints,
)
from auth.session_store import DEFAULT_SESSION_TTL_SECONDS, DEFAULT_SWEEP_INTERVAL_SECONDS

from .certificates import DEFAULT_ACME_DIR, DEFAULT_ACME_HTTP_PORT, AcmeSettings
from .constants import APP_NAME, DEFAULT_HOST, DEFAULT_PORT, LOGGER

_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


class TlsMode(enum.Enum):
    PLAIN = "plain"
    MANUAL = "manual"
    ACME = "acme"


@dataclass(frozen=True)
class TlsSettings:
    mode: TlsMode
    cert_path: str | None = None
    key_path: str | None = None
    acme: AcmeSettings | None = None


@dataclass(frozen=True)
class RelaySettings:
    client_id: str
    client_secret: str = field(repr=False)
    public_url: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    tls: TlsSettings = TlsSettings(TlsMode.PLAIN)
    endpoints: ProviderEndpoints = ProviderEndpoints()
    scopes: tuple[str, ...] = tuple(DEFAULT_SCOPES)
    upgrade_to_long_lived: bool = False
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str, default: str = "") -> list[str]:
    raw = os.getenv(key, default)
    if not raw.strip():
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _get_env_str(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = (
        "THREADGATE_CLIENT_ID",
        "THREADGATE_CLIENT_SECRET",
        "THREADGATE_PUBLIC_URL",
    )
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    public_url = _get_env_str("THREADGATE_PUBLIC_URL")
    try:
        parsed = AnyHttpUrl(public_url)
    except ValidationError as error:
        raise RuntimeError(f"THREADGATE_PUBLIC_URL is not a valid URL: {public_url!r}") from error
    if parsed.scheme != "https":
        raise RuntimeError(
            "THREADGATE_PUBLIC_URL must be a public HTTPS URL (for example: "
            "https://auth.example.com); the provider only redirects to HTTPS."
        )

    resolve_tls_mode()


def resolve_tls_mode() -> TlsSettings:
    """Pick the TLS variant: ACME, then a manual cert and key, then plain HTTP."""
    acme = _resolve_acme_settings()
    cert_path = _get_env_str("THREADGATE_TLS_CERT") or None
    key_path = _get_env_str("THREADGATE_TLS_KEY") or None

    if acme is not None:
        if cert_path or key_path:
            LOGGER.warning("THREADGATE_ACME_DOMAIN is set; ignoring THREADGATE_TLS_CERT/KEY")
        return TlsSettings(TlsMode.ACME, acme=acme)
    if cert_path and key_path:
        return TlsSettings(TlsMode.MANUAL, cert_path=cert_path, key_path=key_path)
    if cert_path or key_path:
        raise RuntimeError(
            "Both THREADGATE_TLS_CERT and THREADGATE_TLS_KEY must be set for TLS, or neither."
        )
    return TlsSettings(TlsMode.PLAIN)


def _resolve_acme_settings() -> AcmeSettings | None:
    domain = _get_env_str("THREADGATE_ACME_DOMAIN")
    if not domain:
        return None
    email = _get_env_str("THREADGATE_ACME_EMAIL")
    if not email:
        raise RuntimeError("THREADGATE_ACME_EMAIL is required when THREADGATE_ACME_DOMAIN is set.")
    return AcmeSettings(
        domain=domain,
        email=email,
        cache_dir=_get_env_str("THREADGATE_ACME_DIR", DEFAULT_ACME_DIR),
        staging=is_truthy(os.getenv("THREADGATE_ACME_STAGING")),
        http_port=_get_env_int("THREADGATE_ACME_HTTP_PORT", DEFAULT_ACME_HTTP_PORT),
    )


def load_provider_endpoints() -> ProviderEndpoints:
    return ProviderEndpoints(
        authorize_url=_get_env_str("THREADGATE_AUTHORIZE_URL", THREADS_AUTHORIZE_URL),
        token_url=_get_env_str("THREADGATE_TOKEN_URL", THREADS_TOKEN_URL),
        long_lived_url=_get_env_str("THREADGATE_LONG_LIVED_URL", THREADS_LONG_LIVED_URL) or None,
        refresh_url=_get_env_str("THREADGATE_REFRESH_URL", THREADS_REFRESH_URL) or None,
    )


def load_relay_settings() -> RelaySettings:
    scopes = parse_csv_env("THREADGATE_SCOPES", ",".join(DEFAULT_SCOPES))
    return RelaySettings(
        client_id=_get_env_str("THREADGATE_CLIENT_ID"),
        client_secret=_get_env_str("THREADGATE_CLIENT_SECRET"),
        public_url=_get_env_str("THREADGATE_PUBLIC_URL").rstrip("/"),
        host=_get_env_str("THREADGATE_HOST", DEFAULT_HOST),
        port=_get_env_int("THREADGATE_PORT", DEFAULT_PORT),
        tls=resolve_tls_mode(),
        endpoints=load_provider_endpoints(),
        scopes=tuple(scopes),
        upgrade_to_long_lived=is_truthy(os.getenv("THREADGATE_LONG_LIVED")),
        session_ttl_seconds=_get_env_int("THREADGATE_SESSION_TTL", DEFAULT_SESSION_TTL_SECONDS),
        sweep_interval_seconds=_get_env_int(
            "THREADGATE_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL_SECONDS
        ),
    )


def setup_logging() -> str:
    level_name = _get_env_str("THREADGATE_LOG_LEVEL", "info").lower()
    if level_name not in _LOG_LEVELS:
        raise RuntimeError(
            f"THREADGATE_LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}."
        )
    level = getattr(logging, level_name.upper())
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )
    logging.getLogger(APP_NAME).setLevel(level)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    LOGGER.debug("Logging configured at %s", level_name)
    return level_name
