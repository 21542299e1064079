from starlette.requests import Request

from auth.client_ip import FALLBACK_IP, client_key, from_forwarded, from_x_forwarded_for


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("192.0.2.10", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_x_forwarded_for_wins_over_x_real_ip() -> None:
    request = _request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1", "X-Real-IP": "198.51.100.2"})

    assert client_key(request) == "203.0.113.5"


def test_x_real_ip_used_without_forwarded_for() -> None:
    request = _request({"X-Real-IP": "198.51.100.2"})

    assert client_key(request) == "198.51.100.2"


def test_forwarded_header() -> None:
    request = _request({"Forwarded": 'for="[2001:db8::1]:4711";proto=https'})

    assert client_key(request) == "2001:db8::1"


def test_invalid_headers_fall_through_to_peer() -> None:
    request = _request({"X-Forwarded-For": "unknown", "X-Real-IP": "not-an-ip"})

    assert client_key(request) == "192.0.2.10"


def test_fallback_when_nothing_usable() -> None:
    request = _request({}, client=None)

    assert client_key(request) == FALLBACK_IP


def test_skips_garbage_entries_in_forwarded_for() -> None:
    assert from_x_forwarded_for({"x-forwarded-for": "garbage, 192.0.2.60:4711"}) == "192.0.2.60"


def test_forwarded_with_multiple_elements() -> None:
    headers = {"forwarded": "for=unknown, for=198.51.100.17;by=203.0.113.43"}

    assert from_forwarded(headers) == "198.51.100.17"
