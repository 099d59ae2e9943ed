"""Unit tests for FastAPI dependency injection functions."""

from starlette.requests import Request

from src.api.deps import get_client_address


def make_request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/checkout/stripe/session",
        "headers": [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientAddress:
    """Tests for get_client_address dependency."""

    def test_uses_first_forwarded_for_entry(self) -> None:
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1, 10.0.0.2"})

        assert get_client_address(request) == "203.0.113.7"

    def test_falls_back_to_real_ip(self) -> None:
        request = make_request({"X-Real-IP": " 198.51.100.4 "})

        assert get_client_address(request) == "198.51.100.4"

    def test_forwarded_for_wins_over_real_ip(self) -> None:
        request = make_request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.4"})

        assert get_client_address(request) == "203.0.113.7"

    def test_empty_forwarded_for_falls_through(self) -> None:
        request = make_request({"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "198.51.100.4"})

        assert get_client_address(request) == "198.51.100.4"

    def test_unknown_without_headers(self) -> None:
        """The socket peer is a proxy and is never used as the bucket."""
        assert get_client_address(make_request()) == "unknown"
