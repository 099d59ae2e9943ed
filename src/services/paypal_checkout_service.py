"""PayPal checkout: order creation and client-driven capture."""

import logging
from decimal import Decimal
from typing import Any

import httpx

from src.api.middleware.error_handler import PaymentNotCompletedError, PaymentProviderError
from src.core.config import get_settings
from src.core.money import format_amount, to_money
from src.core.paypal import PayPalAPIError, PayPalClient, get_paypal_client
from src.core.rate_limiter import CheckoutRateLimiter, get_rate_limiter
from src.models.order import ShippingAddress
from src.schemas.checkout import CheckoutRequest
from src.services.cart_metadata import CartMetadata
from src.services.cart_validator import CartValidator, ValidatedCart
from src.services.order_materializer import (
    ConfirmedLineItem,
    ConfirmedPayment,
    MaterializedOrder,
    OrderMaterializer,
    build_idempotency_key,
)
from src.services.order_service import OrderService

logger = logging.getLogger(__name__)

RATE_LIMIT_OPERATION = "paypal-checkout"
PAYPAL_TEXT_LIMIT = 127
ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"


class PayPalCheckoutService:
    """Wallet payments through PayPal Orders v2."""

    def __init__(
        self,
        client: PayPalClient | None = None,
        validator: CartValidator | None = None,
        materializer: OrderMaterializer | None = None,
        orders: OrderService | None = None,
        rate_limiter: CheckoutRateLimiter | None = None,
    ) -> None:
        """Initialize PayPal checkout service with its collaborators."""
        self.settings = get_settings()
        self.client = client or get_paypal_client()
        self.validator = validator or CartValidator()
        self.orders = orders or OrderService()
        self.materializer = materializer or OrderMaterializer(orders=self.orders)
        self.rate_limiter = rate_limiter or get_rate_limiter()

    def _money(self, amount: Decimal) -> dict[str, str]:
        return {"currency_code": self.settings.checkout_currency.upper(), "value": format_amount(amount)}

    def _order_payload(self, cart: ValidatedCart, metadata: CartMetadata) -> dict[str, Any]:
        items = []
        for item in cart.items:
            entry: dict[str, Any] = {
                "name": item.name[:PAYPAL_TEXT_LIMIT],
                "sku": item.product_id[:PAYPAL_TEXT_LIMIT],
                "unit_amount": self._money(item.unit_price),
                "quantity": str(item.quantity),
                "category": "PHYSICAL_GOODS",
            }
            if item.description:
                entry["description"] = item.description[:PAYPAL_TEXT_LIMIT]
            items.append(entry)

        frontend_url = self.settings.frontend_url.rstrip("/")
        return {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        **self._money(cart.grand_total),
                        "breakdown": {
                            "item_total": self._money(cart.items_subtotal),
                            "shipping": self._money(cart.shipping_cost),
                        },
                    },
                    "items": items,
                    "custom_id": metadata.encode(self.settings.paypal_custom_id_max_length),
                }
            ],
            "application_context": {
                "brand_name": self.settings.store_brand_name,
                "locale": f"{self.settings.store_locale}-{self.settings.store_locale.upper()}",
                "landing_page": "LOGIN",
                "shipping_preference": "GET_FROM_FILE",
                "user_action": "PAY_NOW",
                "return_url": f"{frontend_url}/payment-success",
                "cancel_url": f"{frontend_url}/payment-cancelled",
            },
        }

    async def create_order(self, data: CheckoutRequest, client_address: str) -> dict[str, Any]:
        """Create a PayPal order priced from the catalog.

        Args:
            data: Cart, shipping cost and optional customer identity.
            client_address: Resolved client address for rate limiting.

        Returns:
            dict: ``url`` (approval link), ``provider_reference`` (PayPal order ID),
                ``total``, ``currency``.

        Raises:
            RateLimitError: If the client exceeded its checkout attempts.
            CartValidationError: If the cart fails validation.
            PaymentProviderError: If PayPal is not configured or rejects the request.
        """
        await self.rate_limiter.check_and_increment(RATE_LIMIT_OPERATION, client_address)
        cart = await self.validator.validate(data.items, data.shipping_cost)

        if not self.client.is_configured:
            logger.error("PayPal checkout requested but PayPal credentials are not set")
            raise PaymentProviderError("PayPal payments are currently unavailable", provider="paypal")

        metadata = CartMetadata.from_cart(cart, data.customer_email, data.customer_name)
        try:
            order = await self.client.create_order(self._order_payload(cart, metadata))
        except PayPalAPIError as e:
            logger.error("PayPal %s error (HTTP %s): %s", e.operation, e.status_code, e.body)
            raise PaymentProviderError("Failed to create PayPal order", provider="paypal") from e
        except httpx.HTTPError as e:
            logger.error("PayPal create order transport error: %s", str(e))
            raise PaymentProviderError("Failed to create PayPal order", provider="paypal") from e

        approval_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not approval_url:
            logger.error("PayPal order %s returned no approval link", order.get("id"))
            raise PaymentProviderError("Failed to create PayPal order", provider="paypal")

        logger.info("PayPal order %s created for %s", order["id"], cart.grand_total)
        return {
            "url": approval_url,
            "provider_reference": order["id"],
            "total": cart.grand_total,
            "currency": self.settings.checkout_currency,
        }

    async def _capture(self, paypal_order_id: str) -> dict[str, Any]:
        try:
            return await self.client.capture_order(paypal_order_id)
        except PayPalAPIError as e:
            if e.issue == ALREADY_CAPTURED:
                # A concurrent capture got there first; continue from PayPal's record
                logger.info("PayPal order %s already captured; reading it back", paypal_order_id)
                try:
                    return await self.client.get_order(paypal_order_id)
                except PayPalAPIError as read_error:
                    logger.error("PayPal get_order error (HTTP %s): %s", read_error.status_code, read_error.body)
                    raise PaymentProviderError("Failed to capture PayPal payment", provider="paypal") from read_error
            logger.error("PayPal %s error (HTTP %s): %s", e.operation, e.status_code, e.body)
            raise PaymentProviderError("Failed to capture PayPal payment", provider="paypal") from e
        except httpx.HTTPError as e:
            logger.error("PayPal capture transport error: %s", str(e))
            raise PaymentProviderError("Failed to capture PayPal payment", provider="paypal") from e

    async def capture_order(self, paypal_order_id: str) -> tuple[MaterializedOrder, bool]:
        """Capture an approved PayPal order and record it.

        Safe to call repeatedly or concurrently for the same order ID.

        Args:
            paypal_order_id: PayPal order ID from order creation.

        Returns:
            tuple: The materialized order and whether it already existed
                before this call.

        Raises:
            PaymentProviderError: If PayPal auth or capture fails.
            PaymentNotCompletedError: If PayPal reports the payment incomplete.
        """
        key = build_idempotency_key("paypal", paypal_order_id)
        existing = await self.orders.find_order_by_idempotency_key(key)
        if existing:
            logger.info("Order %s already exists for PayPal order %s", existing.get("order_number"), paypal_order_id)
            return MaterializedOrder(order=existing, created=False), True

        captured = await self._capture(paypal_order_id)
        status = captured.get("status")
        if status != "COMPLETED":
            logger.warning("PayPal order %s capture status %s", paypal_order_id, status)
            raise PaymentNotCompletedError(f"Payment not completed: {status}")

        payment = self._payment_from_capture(paypal_order_id, captured)
        result = await self.materializer.materialize(payment)
        return result, not result.created

    def _payment_from_capture(self, paypal_order_id: str, captured: dict[str, Any]) -> ConfirmedPayment:
        purchase_unit = (captured.get("purchase_units") or [{}])[0]
        payer = captured.get("payer") or {}
        shipping = purchase_unit.get("shipping") or {}
        address = shipping.get("address") or {}

        metadata = CartMetadata.decode(purchase_unit.get("custom_id"))
        review_reasons = [] if metadata else ["cart metadata missing or unreadable"]

        payer_name = " ".join(
            part for part in ((payer.get("name") or {}).get("given_name"), (payer.get("name") or {}).get("surname")) if part
        )
        customer_name = (
            (shipping.get("name") or {}).get("full_name")
            or payer_name
            or (metadata.customer_name if metadata else None)
            or ""
        )
        customer_email = payer.get("email_address") or (metadata.customer_email if metadata else None) or ""

        amount = purchase_unit.get("amount")
        if not amount:
            captures = (purchase_unit.get("payments") or {}).get("captures") or [{}]
            amount = captures[0].get("amount") or {}
        breakdown = amount.get("breakdown") or {}
        total = to_money(amount.get("value"))
        shipping_cost = to_money((breakdown.get("shipping") or {}).get("value"))
        item_total = breakdown.get("item_total")
        subtotal = to_money(item_total.get("value")) if item_total else to_money(total - shipping_cost)

        provider_items = purchase_unit.get("items") or []
        quantities = [int(item.get("quantity") or 1) for item in provider_items]
        options = (
            metadata.options_for_lines([(item.get("sku"), quantity) for item, quantity in zip(provider_items, quantities)])
            if metadata
            else [None] * len(provider_items)
        )
        items = [
            ConfirmedLineItem(
                product_name=item.get("name") or "Produit",
                quantity=quantity,
                unit_price=to_money((item.get("unit_amount") or {}).get("value")),
                product_id=item.get("sku"),
                options=selected,
            )
            for item, quantity, selected in zip(provider_items, quantities, options)
        ]

        return ConfirmedPayment(
            provider="paypal",
            provider_reference=paypal_order_id,
            customer_email=customer_email,
            customer_name=customer_name,
            customer_phone=((payer.get("phone") or {}).get("phone_number") or {}).get("national_number"),
            shipping_address=ShippingAddress(
                line1=address.get("address_line_1") or "",
                line2=address.get("address_line_2") or "",
                city=address.get("admin_area_2") or "",
                postal_code=address.get("postal_code") or "",
                country=address.get("country_code") or "",
                name=(shipping.get("name") or {}).get("full_name") or customer_name,
            ),
            items=items,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            total=total,
            currency=(amount.get("currency_code") or self.settings.checkout_currency).lower(),
            review_reasons=review_reasons,
        )
