import pytest

RELAY_ENV_KEYS = (
    "THREADGATE_CLIENT_ID",
    "THREADGATE_CLIENT_SECRET",
    "THREADGATE_PUBLIC_URL",
    "THREADGATE_HOST",
    "THREADGATE_PORT",
    "THREADGATE_TLS_CERT",
    "THREADGATE_TLS_KEY",
    "THREADGATE_ACME_DOMAIN",
    "THREADGATE_ACME_EMAIL",
    "THREADGATE_ACME_DIR",
    "THREADGATE_ACME_STAGING",
    "THREADGATE_ACME_HTTP_PORT",
    "THREADGATE_AUTHORIZE_URL",
    "THREADGATE_TOKEN_URL",
    "THREADGATE_LONG_LIVED_URL",
    "THREADGATE_REFRESH_URL",
    "THREADGATE_SCOPES",
    "THREADGATE_LONG_LIVED",
    "THREADGATE_SESSION_TTL",
    "THREADGATE_SWEEP_INTERVAL",
    "THREADGATE_LOG_LEVEL",
    "THREADGATE_RELAY_URL",
    "THREADGATE_CALLBACK_PORT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in RELAY_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def relay_env(clean_env):
    clean_env.setenv("THREADGATE_CLIENT_ID", "app-id")
    clean_env.setenv("THREADGATE_CLIENT_SECRET", "app-secret")
    clean_env.setenv("THREADGATE_PUBLIC_URL", "https://auth.example.com")
    return clean_env
