"""Price and stock validation for client-submitted carts."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from src.api.middleware.error_handler import (
    EmptyCartError,
    InvalidQuantityError,
    InvalidShippingCostError,
    ProductNotFoundError,
    ProductUnavailableError,
)
from src.core.config import get_settings
from src.core.money import to_money
from src.schemas.checkout import CartItem
from src.services.catalog_service import ProductCatalogService

logger = logging.getLogger(__name__)


@dataclass
class ValidatedLineItem:
    """A cart line re-priced against the catalog.

    ``unit_price`` always comes from the catalog record, never from the cart.
    """

    product_id: str
    name: str
    image: str | None
    unit_price: Decimal
    quantity: int
    variant: str | None = None
    size: str | None = None
    quality: str | None = None

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    @property
    def options(self) -> dict[str, str]:
        """Selected variant/size/quality, omitting unset ones."""
        selected = {"variant": self.variant, "size": self.size, "quality": self.quality}
        return {key: value for key, value in selected.items() if value}

    @property
    def description(self) -> str:
        return " • ".join(self.options.values())


@dataclass
class ValidatedCart:
    """Validator output: trusted lines and totals."""

    items: list[ValidatedLineItem]
    shipping_cost: Decimal
    items_subtotal: Decimal = field(init=False)
    grand_total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        self.items_subtotal = to_money(sum((item.line_total for item in self.items), Decimal("0")))
        self.grand_total = to_money(self.items_subtotal + self.shipping_cost)


class CartValidator:
    """Re-prices a cart against trusted catalog records."""

    def __init__(self, catalog: ProductCatalogService | None = None) -> None:
        self.settings = get_settings()
        self.catalog = catalog or ProductCatalogService()

    def _check_quantity(self, item: CartItem) -> int:
        quantity: Any = item.quantity
        if isinstance(quantity, bool):
            raise InvalidQuantityError(item.product_id, quantity)
        if isinstance(quantity, float):
            if not quantity.is_integer():
                raise InvalidQuantityError(item.product_id, quantity)
            quantity = int(quantity)
        if not isinstance(quantity, int):
            raise InvalidQuantityError(item.product_id, quantity)
        if not self.settings.min_item_quantity <= quantity <= self.settings.max_item_quantity:
            raise InvalidQuantityError(item.product_id, quantity)
        return quantity

    def _check_shipping_cost(self, shipping_cost: Decimal) -> Decimal:
        if not shipping_cost.is_finite():
            raise InvalidShippingCostError()
        if shipping_cost < 0 or shipping_cost > self.settings.max_shipping_cost:
            raise InvalidShippingCostError()
        return to_money(shipping_cost)

    async def validate(self, items: list[CartItem], shipping_cost: Decimal) -> ValidatedCart:
        """Validate cart lines and compute trusted totals.

        Args:
            items: Cart lines in storefront order.
            shipping_cost: Shipping cost selected in the cart.

        Returns:
            ValidatedCart: Re-priced lines, items subtotal and grand total.

        Raises:
            EmptyCartError: If the cart has no lines.
            InvalidShippingCostError: If shipping cost is outside the allowed range.
            ProductNotFoundError: If a line references an unknown product.
            ProductUnavailableError: If a line references an out-of-stock product.
            InvalidQuantityError: If a quantity is not an integer within bounds.
        """
        if not items:
            raise EmptyCartError()

        shipping = self._check_shipping_cost(shipping_cost)
        products = await self.catalog.get_products_by_ids([item.product_id for item in items])

        validated: list[ValidatedLineItem] = []
        for item in items:
            product = products.get(item.product_id)
            if product is None:
                logger.warning("Cart references unknown product %s", item.product_id)
                raise ProductNotFoundError(item.product_id)

            if not product["in_stock"]:
                raise ProductUnavailableError(product["id"], product["name"])

            quantity = self._check_quantity(item)

            trusted_price = product["price"]
            if abs(item.declared_unit_price - trusted_price) > self.settings.price_mismatch_tolerance:
                # Stale client cache or tampering; either way the catalog price wins
                logger.warning(
                    "Price mismatch for %s: client sent %s, catalog has %s",
                    product["id"],
                    item.declared_unit_price,
                    trusted_price,
                )

            validated.append(
                ValidatedLineItem(
                    product_id=product["id"],
                    name=product["name"],
                    image=product["images"][0] if product["images"] else None,
                    unit_price=trusted_price,
                    quantity=quantity,
                    variant=item.variant,
                    size=item.size,
                    quality=item.quality,
                )
            )

        cart = ValidatedCart(items=validated, shipping_cost=shipping)
        logger.info(
            "Validated cart: %d lines, subtotal %s, total %s",
            len(cart.items),
            cart.items_subtotal,
            cart.grand_total,
        )
        return cart
