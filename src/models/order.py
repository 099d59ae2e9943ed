"""Order model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, TypedDict


# Order status values matching the orders.status check constraint
OrderStatus = Literal["pending", "confirmed", "shipped", "delivered", "cancelled"]

PaymentProvider = Literal["stripe", "paypal"]


class ShippingAddress(TypedDict):
    """Shipping address stored as JSONB on the order."""

    line1: str
    line2: str
    city: str
    postal_code: str
    country: str
    name: str


class OrderItem(TypedDict):
    """order_items table row representation.

    Invariant: quantity * unit_price == total_price.
    """

    id: str
    order_id: str
    product_id: str | None
    product_name: str
    product_image: str | None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    variant: dict[str, Any] | None
    created_at: datetime


class OrderHistoryEntry(TypedDict):
    """order_history table row representation. Append-only."""

    id: str
    order_id: str
    old_status: OrderStatus | None
    new_status: OrderStatus
    note: str
    created_at: datetime


class Order(TypedDict):
    """orders table row representation.

    ``idempotency_key`` carries a unique constraint: at most one order may
    exist per (provider, provider reference).
    """

    id: str
    order_number: str
    idempotency_key: str
    provider: PaymentProvider
    provider_reference: str
    customer_email: str
    customer_name: str
    customer_phone: str | None
    shipping_address: ShippingAddress
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal
    currency: str
    status: OrderStatus
    user_id: str | None
    needs_review: bool
    notes: str | None
    created_at: datetime


class OrderWithItems(Order):
    """Order row joined with its items (``select("*, order_items(*)")``)."""

    order_items: list[OrderItem]
