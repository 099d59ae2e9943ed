"""Database model type definitions."""

from src.models.order import (
    Order,
    OrderHistoryEntry,
    OrderItem,
    OrderStatus,
    OrderWithItems,
    PaymentProvider,
    ShippingAddress,
)
from src.models.product import TrustedProduct

__all__ = [
    "Order",
    "OrderHistoryEntry",
    "OrderItem",
    "OrderStatus",
    "OrderWithItems",
    "PaymentProvider",
    "ShippingAddress",
    "TrustedProduct",
]
