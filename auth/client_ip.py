from __future__ import annotations

import ipaddress
from typing import Mapping

from starlette.requests import Request

FALLBACK_IP = "127.0.0.1"

X_FORWARDED_FOR = "x-forwarded-for"
X_REAL_IP = "x-real-ip"
FORWARDED = "forwarded"


def _parse_ip(raw: str | None) -> str | None:
    if not raw:
        return None
    candidate = raw.strip().strip('"')
    if candidate.startswith("["):
        # "[2001:db8::1]:4711"
        candidate = candidate[1:].split("]", 1)[0]
    elif candidate.count(":") == 1:
        # "192.0.2.60:4711"
        candidate = candidate.split(":", 1)[0]
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def from_x_forwarded_for(headers: Mapping[str, str]) -> str | None:
    raw = headers.get(X_FORWARDED_FOR)
    if not raw:
        return None
    for part in raw.split(","):
        ip = _parse_ip(part)
        if ip is not None:
            return ip
    return None


def from_x_real_ip(headers: Mapping[str, str]) -> str | None:
    return _parse_ip(headers.get(X_REAL_IP))


def from_forwarded(headers: Mapping[str, str]) -> str | None:
    raw = headers.get(FORWARDED)
    if not raw:
        return None
    for element in raw.split(","):
        for pair in element.split(";"):
            name, sep, value = pair.strip().partition("=")
            if sep and name.strip().lower() == "for":
                ip = _parse_ip(value)
                if ip is not None:
                    return ip
    return None


def from_peer(request: Request) -> str | None:
    client = request.client
    if client is None:
        return None
    return _parse_ip(client.host)


def client_key(request: Request) -> str:
    """Best-effort caller address for rate limiting. Never raises."""
    try:
        headers = request.headers
        return (
            from_x_forwarded_for(headers)
            or from_x_real_ip(headers)
            or from_forwarded(headers)
            or from_peer(request)
            or FALLBACK_IP
        )
    except Exception:
        return FALLBACK_IP
