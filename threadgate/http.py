from __future__ import annotations

import asyncio
import logging

import httpx

from .constants import HTTP_LOGGER

_MAX_RETRY_AFTER_SECONDS = 60


def _retry_after_seconds(header: str | None) -> int | None:
    if header is None:
        return None
    try:
        seconds = int(header.strip())
    except ValueError:
        return None
    return min(max(0, seconds), _MAX_RETRY_AFTER_SECONDS)


class RetryTransport(httpx.AsyncBaseTransport):
    """Retries relay calls on 429 (honouring Retry-After) and on 5xx."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._logger = logger or HTTP_LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retries = 0

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            response = await self._transport.handle_async_request(next_request)

            if retries >= self._max_retries:
                return response

            if response.status_code == 429:
                wait_seconds = _retry_after_seconds(response.headers.get("retry-after"))
                if wait_seconds is None:
                    wait_seconds = 1
                self._logger.warning(
                    "Retrying 429 after %ss (%s %s)",
                    wait_seconds,
                    request.method,
                    request.url,
                )
            elif 500 <= response.status_code < 600:
                wait_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    response.status_code,
                    wait_seconds,
                    request.method,
                    request.url,
                )
            else:
                return response

            await response.aclose()
            await self._sleep(wait_seconds)
            retries += 1

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_relay_client(
    *,
    timeout: float = 30.0,
    max_retries: int = 2,
    sleep=asyncio.sleep,
) -> httpx.AsyncClient:
    transport = RetryTransport(
        httpx.AsyncHTTPTransport(),
        max_retries=max_retries,
        sleep=sleep,
    )
    return httpx.AsyncClient(timeout=timeout, transport=transport)
