"""Unit tests for CartValidator."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from src.api.middleware.error_handler import (
    EmptyCartError,
    InvalidQuantityError,
    InvalidShippingCostError,
    ProductNotFoundError,
    ProductUnavailableError,
)
from src.schemas.checkout import CartItem
from src.services.cart_validator import CartValidator


def make_item(product_id: str = "1", price: str = "350", quantity: int | float = 1, **options: str) -> CartItem:
    return CartItem.model_validate({"id": product_id, "price": price, "quantity": quantity, **options})


class TestValidate:
    """Tests for CartValidator.validate."""

    @pytest.mark.asyncio
    async def test_prices_come_from_catalog(self, validator: CartValidator) -> None:
        """A tampered declared price is ignored in favor of the catalog price."""
        cart = await validator.validate([make_item("1", price="1", quantity=2)], Decimal("10"))

        assert len(cart.items) == 1
        line = cart.items[0]
        assert line.unit_price == Decimal("350.00")
        assert line.quantity == 2
        assert line.line_total == Decimal("700.00")
        assert cart.items_subtotal == Decimal("700.00")
        assert cart.shipping_cost == Decimal("10.00")
        assert cart.grand_total == Decimal("710.00")

    @pytest.mark.asyncio
    async def test_price_mismatch_is_logged(
        self, validator: CartValidator, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Mismatches are logged without failing validation."""
        with caplog.at_level("WARNING"):
            await validator.validate([make_item("1", price="1")], Decimal("0"))

        assert "Price mismatch for 1" in caplog.text

    @pytest.mark.asyncio
    async def test_preserves_line_order_and_options(self, validator: CartValidator) -> None:
        """Lines keep storefront order and carry selected options."""
        cart = await validator.validate(
            [
                make_item("2", price="120", quantity=1, size="8mm"),
                make_item("1", price="350", quantity=1, variant="Blanc", quality="AAA"),
            ],
            Decimal("0"),
        )

        assert [line.product_id for line in cart.items] == ["2", "1"]
        assert cart.items[0].options == {"size": "8mm"}
        assert cart.items[1].options == {"variant": "Blanc", "quality": "AAA"}
        assert cart.items[1].description == "Blanc • AAA"
        assert cart.items[0].image is None
        assert cart.items[1].image == "https://cdn.example.com/akoya.jpg"
        assert cart.grand_total == Decimal("470.00")

    @pytest.mark.asyncio
    async def test_empty_cart(self, validator: CartValidator, mock_catalog: MagicMock) -> None:
        with pytest.raises(EmptyCartError) as exc_info:
            await validator.validate([], Decimal("0"))

        assert exc_info.value.error_type == "empty_cart"
        mock_catalog.get_products_by_ids.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_product(self, validator: CartValidator) -> None:
        with pytest.raises(ProductNotFoundError) as exc_info:
            await validator.validate([make_item("999")], Decimal("0"))

        assert exc_info.value.product_id == "999"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_out_of_stock_product(self, validator: CartValidator) -> None:
        with pytest.raises(ProductUnavailableError) as exc_info:
            await validator.validate([make_item("3", price="89.90")], Decimal("0"))

        assert exc_info.value.error_type == "product_unavailable"
        assert "Bracelet Keshi" in exc_info.value.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, 101, 2.5])
    async def test_invalid_quantities(self, validator: CartValidator, quantity: int | float) -> None:
        with pytest.raises(InvalidQuantityError):
            await validator.validate([make_item("1", quantity=quantity)], Decimal("0"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [1, 100, 3.0])
    async def test_quantity_bounds_inclusive(self, validator: CartValidator, quantity: int | float) -> None:
        cart = await validator.validate([make_item("1", quantity=quantity)], Decimal("0"))

        assert cart.items[0].quantity == int(quantity)
        assert isinstance(cart.items[0].quantity, int)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("shipping_cost", ["-0.01", "1000.01", "NaN", "Infinity"])
    async def test_invalid_shipping_cost(self, validator: CartValidator, shipping_cost: str) -> None:
        with pytest.raises(InvalidShippingCostError):
            await validator.validate([make_item("1")], Decimal(shipping_cost))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("shipping_cost", ["0", "1000"])
    async def test_shipping_cost_bounds_inclusive(self, validator: CartValidator, shipping_cost: str) -> None:
        cart = await validator.validate([make_item("1")], Decimal(shipping_cost))

        assert cart.shipping_cost == Decimal(shipping_cost).quantize(Decimal("0.01"))

    @pytest.mark.asyncio
    async def test_first_failing_line_wins(self, validator: CartValidator) -> None:
        """Lines are checked in order: a missing product before a later bad quantity."""
        with pytest.raises(ProductNotFoundError):
            await validator.validate([make_item("1"), make_item("999"), make_item("2", quantity=0)], Decimal("0"))

    @pytest.mark.asyncio
    async def test_stock_checked_before_quantity(self, validator: CartValidator) -> None:
        with pytest.raises(ProductUnavailableError):
            await validator.validate([make_item("3", quantity=0)], Decimal("0"))

    @pytest.mark.asyncio
    async def test_catalog_fetched_once(self, validator: CartValidator, mock_catalog: MagicMock) -> None:
        await validator.validate([make_item("1"), make_item("2", price="120")], Decimal("0"))

        mock_catalog.get_products_by_ids.assert_awaited_once_with(["1", "2"])


class TestCartItemSchema:
    """Tests for the CartItem request schema."""

    def test_accepts_storefront_field_names(self) -> None:
        item = CartItem.model_validate({"id": "1", "price": 350, "quantity": 2, "name": "Collier"})

        assert item.product_id == "1"
        assert item.declared_unit_price == Decimal("350")

    def test_accepts_explicit_field_names(self) -> None:
        item = CartItem(product_id="1", declared_unit_price=Decimal("350"), quantity=1)

        assert item.product_id == "1"
