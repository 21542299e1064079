from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field

import httpx

from auth.errors import CodeReuseError, NetworkError, ParseError, ProviderHttpError
from auth.models import TokenResult
from auth.urls import append_query_params

LOGGER = logging.getLogger("threadgate.auth")

THREADS_AUTHORIZE_URL = "https://threads.net/oauth/authorize"
THREADS_TOKEN_URL = "https://graph.threads.net/oauth/access_token"
THREADS_LONG_LIVED_URL = "https://graph.threads.net/access_token"
THREADS_REFRESH_URL = "https://graph.threads.net/refresh_access_token"

DEFAULT_SCOPES = [
    "threads_basic",
    "threads_read_replies",
    "threads_manage_replies",
    "threads_content_publish",
]

_USED_CODE_MEMORY = 1024


@dataclass(frozen=True)
class Credentials:
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    scopes: tuple[str, ...] = tuple(DEFAULT_SCOPES)


@dataclass(frozen=True)
class ProviderEndpoints:
    authorize_url: str = THREADS_AUTHORIZE_URL
    token_url: str = THREADS_TOKEN_URL
    long_lived_url: str | None = THREADS_LONG_LIVED_URL
    refresh_url: str | None = THREADS_REFRESH_URL
    scope_separator: str = ","


class CredentialProvider:
    def __init__(
        self,
        credentials: Credentials,
        endpoints: ProviderEndpoints | None = None,
        *,
        upgrade_to_long_lived: bool = False,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.credentials = credentials
        self.endpoints = endpoints or ProviderEndpoints()
        self.upgrade_to_long_lived = upgrade_to_long_lived
        if upgrade_to_long_lived and not self.endpoints.long_lived_url:
            raise ValueError("Long-lived exchange requested but no long_lived_url is configured.")

        self._client = client
        self._timeout = timeout
        self._used_codes: OrderedDict[str, None] = OrderedDict()

    @property
    def redirect_uri(self) -> str:
        return self.credentials.redirect_uri

    def authorization_url(self, state_token: str) -> str:
        query = {
            "client_id": self.credentials.client_id,
            "redirect_uri": self.credentials.redirect_uri,
            "scope": self.endpoints.scope_separator.join(self.credentials.scopes),
            "response_type": "code",
            "state": state_token,
        }
        return append_query_params(self.endpoints.authorize_url, query)

    async def exchange_code(self, code: str) -> TokenResult:
        self._claim_code(code)

        token = await self._request(
            "POST",
            self.endpoints.token_url,
            data={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.credentials.redirect_uri,
                "code": code,
            },
        )
        LOGGER.info("Exchanged authorization code for short-lived token")

        if not self.upgrade_to_long_lived:
            return token
        return await self.exchange_long_lived(token.access_token)

    async def exchange_long_lived(self, short_lived_token: str) -> TokenResult:
        if not self.endpoints.long_lived_url:
            raise ValueError("No long_lived_url configured for this provider.")

        token = await self._request(
            "GET",
            self.endpoints.long_lived_url,
            params={
                "grant_type": "th_exchange_token",
                "client_secret": self.credentials.client_secret,
                "access_token": short_lived_token,
            },
        )
        LOGGER.info("Upgraded to long-lived token (expires_in=%s)", token.expires_in)
        return token

    async def refresh(self, long_lived_token: str) -> TokenResult:
        if not self.endpoints.refresh_url:
            raise ValueError("No refresh_url configured for this provider.")

        return await self._request(
            "GET",
            self.endpoints.refresh_url,
            params={
                "grant_type": "th_refresh_token",
                "access_token": long_lived_token,
            },
        )

    def _claim_code(self, code: str) -> None:
        if code in self._used_codes:
            raise CodeReuseError()
        self._used_codes[code] = None
        while len(self._used_codes) > _USED_CODE_MEMORY:
            self._used_codes.popitem(last=False)

    async def _request(self, method: str, url: str, **kwargs) -> TokenResult:
        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient(timeout=self._timeout)

        try:
            response = await http_client.request(method, url, **kwargs)
        except httpx.HTTPError as error:
            raise NetworkError(str(error) or type(error).__name__) from error
        finally:
            if own_client:
                await http_client.aclose()

        if not response.is_success:
            raise ProviderHttpError(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as error:
            raise ParseError(str(error)) from error

        return TokenResult.from_payload(payload)
