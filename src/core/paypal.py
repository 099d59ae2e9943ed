"""PayPal Orders v2 REST client."""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from src.core.config import get_settings

logger = logging.getLogger(__name__)


class PayPalAPIError(Exception):
    """Non-success response from the PayPal REST API.

    ``body`` holds the raw response text for logging. It must never be
    forwarded to storefront clients.
    """

    def __init__(self, operation: str, status_code: int, body: str, issue: str | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        self.issue = issue
        super().__init__(f"PayPal {operation} failed with HTTP {status_code}")


def _extract_issue(response: httpx.Response) -> str | None:
    """Pull the first ``details[].issue`` code out of a PayPal error body."""
    try:
        payload = response.json()
    except ValueError:
        return None
    details = payload.get("details") or []
    if details and isinstance(details, list):
        return details[0].get("issue")
    return payload.get("name")


class PayPalClient:
    """Thin async client over the PayPal OAuth and Orders endpoints.

    Each public call fetches a fresh client-credentials token; tokens are
    not cached between requests.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.client_id = client_id if client_id is not None else settings.paypal_client_id
        self.client_secret = client_secret if client_secret is not None else settings.paypal_client_secret
        self.base_url = base_url or settings.paypal_base_url
        self.timeout = timeout or settings.paypal_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def get_access_token(self) -> str:
        """Exchange client credentials for a bearer token.

        Raises:
            PayPalAPIError: If PayPal rejects the credentials.
        """
        async with self._client() as client:
            response = await client.post(
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        if response.status_code != 200:
            raise PayPalAPIError("auth", response.status_code, response.text)
        return response.json()["access_token"]

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        token = await self.get_access_token()
        request_headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        async with self._client() as client:
            response = await client.request(method, path, json=json, headers=request_headers)

        if response.status_code >= 400:
            raise PayPalAPIError(operation, response.status_code, response.text, _extract_issue(response))
        return response.json()

    async def create_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a CAPTURE-intent order."""
        return await self._request("create_order", "POST", "/v2/checkout/orders", json=payload)

    async def capture_order(self, order_id: str) -> dict[str, Any]:
        """Capture an approved order, returning the full order representation."""
        return await self._request(
            "capture_order",
            "POST",
            f"/v2/checkout/orders/{quote(order_id, safe='')}/capture",
            headers={"Prefer": "return=representation"},
        )

    async def get_order(self, order_id: str) -> dict[str, Any]:
        """Fetch an order's current representation."""
        return await self._request("get_order", "GET", f"/v2/checkout/orders/{quote(order_id, safe='')}")


def get_paypal_client() -> PayPalClient:
    """Build a PayPal client from application settings."""
    return PayPalClient()
