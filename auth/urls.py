from __future__ import annotations

import urllib.parse


def join_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def relay_redirect_uri(public_url: str) -> str:
    return join_url(public_url, "/auth/callback")


def local_redirect_uri(port: int, host: str = "localhost") -> str:
    return f"https://{host}:{port}/callback"


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))
