from __future__ import annotations

from typing import Protocol, runtime_checkable

from auth.local_flow import DEFAULT_CALLBACK_PORT, LocalFlow
from auth.models import TokenResult
from auth.polling_client import PollingClient
from auth.provider import CredentialProvider, Credentials, ProviderEndpoints
from auth.urls import local_redirect_uri


@runtime_checkable
class LoginFlow(Protocol):
    async def login(self) -> TokenResult: ...


def choose_login_flow(
    *,
    relay_url: str | None,
    client_id: str | None = None,
    client_secret: str | None = None,
    endpoints: ProviderEndpoints | None = None,
    callback_port: int = DEFAULT_CALLBACK_PORT,
    upgrade_to_long_lived: bool = False,
) -> LoginFlow:
    """Relay flow when a relay URL is configured, local listener otherwise."""
    if relay_url and relay_url.strip():
        return PollingClient(relay_url.strip())

    if not client_id or not client_secret:
        raise RuntimeError(
            "The local login flow needs a client id and secret. "
            "Set THREADGATE_CLIENT_ID and THREADGATE_CLIENT_SECRET, "
            "or point THREADGATE_RELAY_URL at a relay."
        )

    provider = CredentialProvider(
        Credentials(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=local_redirect_uri(callback_port),
        ),
        endpoints,
        upgrade_to_long_lived=upgrade_to_long_lived,
    )
    return LocalFlow(provider, port=callback_port)
