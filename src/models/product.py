"""Product model type definitions for catalog reads."""

from decimal import Decimal
from typing import TypedDict


class TrustedProduct(TypedDict):
    """Catalog row used as the source of truth for checkout pricing.

    Read-only from the checkout's perspective: prices, names and stock
    always come from here, never from the client cart.
    """

    id: str
    name: str
    price: Decimal
    images: list[str]
    in_stock: bool
