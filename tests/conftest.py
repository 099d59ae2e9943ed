"""Pytest configuration and fixtures."""

import copy
import os
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError as PostgrestAPIError

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("PAYPAL_CLIENT_ID", "test-paypal-client")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-paypal-secret")
os.environ.setdefault("FRONTEND_URL", "https://shop.example.com")

from src.core.rate_limiter import CheckoutRateLimiter, InMemoryCounterStore, RateLimitConfig  # noqa: E402
from src.models.product import TrustedProduct  # noqa: E402
from src.services.cart_validator import CartValidator  # noqa: E402
from src.services.order_materializer import OrderMaterializer  # noqa: E402
from src.services.paypal_checkout_service import PayPalCheckoutService  # noqa: E402
from src.services.stripe_checkout_service import StripeCheckoutService  # noqa: E402


class InMemoryOrderService:
    """Order store double enforcing the idempotency-key unique constraint."""

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.history: list[dict[str, Any]] = []
        self.insert_calls = 0

    async def find_order_by_idempotency_key(self, idempotency_key: str) -> dict[str, Any] | None:
        order = self.orders.get(idempotency_key)
        return copy.deepcopy(order) if order else None

    async def insert_order(
        self,
        order: dict[str, Any],
        items: list[dict[str, Any]],
        history: dict[str, Any],
    ) -> dict[str, Any]:
        self.insert_calls += 1
        key = order["idempotency_key"]
        if key in self.orders:
            raise PostgrestAPIError(
                {
                    "message": 'duplicate key value violates unique constraint "orders_idempotency_key_key"',
                    "code": "23505",
                    "hint": None,
                    "details": None,
                }
            )
        order_id = str(uuid4())
        row = {
            **order,
            "id": order_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "order_items": [{**item, "id": str(uuid4()), "order_id": order_id} for item in items],
        }
        self.orders[key] = row
        self.history.append({**history, "order_id": order_id})
        return copy.deepcopy(row)

    async def transition_order_status(self, order_id: str, from_status: str, to_status: str, note: str) -> bool:
        for row in self.orders.values():
            if row["id"] == order_id and row["status"] == from_status:
                row["status"] = to_status
                self.history.append(
                    {"order_id": order_id, "old_status": from_status, "new_status": to_status, "note": note}
                )
                return True
        return False

    def history_for(self, order_id: str) -> list[dict[str, Any]]:
        return [entry for entry in self.history if entry["order_id"] == order_id]


@pytest.fixture
def catalog_products() -> dict[str, TrustedProduct]:
    """Catalog rows keyed by product ID."""
    return {
        "1": TrustedProduct(
            id="1",
            name="Collier Perles d'Akoya",
            price=Decimal("350.00"),
            images=["https://cdn.example.com/akoya.jpg"],
            in_stock=True,
        ),
        "2": TrustedProduct(
            id="2",
            name="Boucles d'oreilles Tahiti",
            price=Decimal("120.00"),
            images=[],
            in_stock=True,
        ),
        "3": TrustedProduct(
            id="3",
            name="Bracelet Keshi",
            price=Decimal("89.90"),
            images=["/images/keshi.jpg"],
            in_stock=False,
        ),
    }


@pytest.fixture
def mock_catalog(catalog_products: dict[str, TrustedProduct]) -> MagicMock:
    """Catalog service returning the requested subset of catalog_products."""
    catalog = MagicMock()

    async def get_products_by_ids(product_ids: list[str]) -> dict[str, TrustedProduct]:
        return {pid: catalog_products[pid] for pid in product_ids if pid in catalog_products}

    catalog.get_products_by_ids = AsyncMock(side_effect=get_products_by_ids)
    return catalog


@pytest.fixture
def validator(mock_catalog: MagicMock) -> CartValidator:
    """Cart validator backed by the mock catalog."""
    return CartValidator(catalog=mock_catalog)


@pytest.fixture
def order_store() -> InMemoryOrderService:
    """In-memory order store."""
    return InMemoryOrderService()


@pytest.fixture
def mock_accounts() -> MagicMock:
    """Account service with no matching users."""
    accounts = MagicMock()
    accounts.find_user_id_by_email = AsyncMock(return_value=None)
    return accounts


@pytest.fixture
def mock_emails() -> MagicMock:
    """Email service that records confirmation sends."""
    emails = MagicMock()
    emails.send_order_confirmation = AsyncMock(return_value={"success": True, "email_id": "em_123"})
    return emails


@pytest.fixture
def materializer(
    order_store: InMemoryOrderService,
    mock_accounts: MagicMock,
    mock_emails: MagicMock,
) -> OrderMaterializer:
    """Materializer wired to the in-memory store."""
    return OrderMaterializer(orders=order_store, accounts=mock_accounts, emails=mock_emails)


@pytest.fixture
def rate_limiter() -> CheckoutRateLimiter:
    """Fresh in-memory rate limiter with the production limits."""
    return CheckoutRateLimiter(InMemoryCounterStore(), RateLimitConfig(max_requests=10, window_seconds=600))


@pytest.fixture
def mock_stripe() -> MagicMock:
    """Mocked Stripe module."""
    return MagicMock()


@pytest.fixture
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache."""
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    # Configure default mock responses
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def mock_paypal() -> MagicMock:
    """Mocked PayPal REST client."""
    client = MagicMock()
    client.is_configured = True
    client.create_order = AsyncMock()
    client.capture_order = AsyncMock()
    client.get_order = AsyncMock()
    return client


@pytest.fixture
def stripe_service(
    mock_stripe: MagicMock,
    validator: CartValidator,
    materializer: OrderMaterializer,
    order_store: InMemoryOrderService,
    rate_limiter: CheckoutRateLimiter,
) -> StripeCheckoutService:
    """StripeCheckoutService with mocked Stripe and in-memory storage."""
    with patch("src.services.stripe_checkout_service.get_stripe", return_value=mock_stripe):
        return StripeCheckoutService(
            validator=validator,
            materializer=materializer,
            orders=order_store,
            rate_limiter=rate_limiter,
        )


@pytest.fixture
def paypal_service(
    mock_paypal: MagicMock,
    validator: CartValidator,
    materializer: OrderMaterializer,
    order_store: InMemoryOrderService,
    rate_limiter: CheckoutRateLimiter,
) -> PayPalCheckoutService:
    """PayPalCheckoutService with a mocked client and in-memory storage."""
    return PayPalCheckoutService(
        client=mock_paypal,
        validator=validator,
        materializer=materializer,
        orders=order_store,
        rate_limiter=rate_limiter,
    )


@pytest.fixture
def client(
    mock_supabase_client: MagicMock,
    stripe_service: StripeCheckoutService,
    paypal_service: PayPalCheckoutService,
) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Checkout services are overridden with the in-memory versions above.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_paypal_checkout_service, get_stripe_checkout_service
    from src.main import app

    app.dependency_overrides[get_stripe_checkout_service] = lambda: stripe_service
    app.dependency_overrides[get_paypal_checkout_service] = lambda: paypal_service
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
