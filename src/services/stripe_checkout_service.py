"""Stripe Checkout: session creation, webhook processing and session lookup."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

import stripe

from src.api.middleware.error_handler import (
    ExpiredError,
    InvalidSignatureError,
    NotFoundError,
    PaymentProviderError,
)
from src.core.config import get_settings
from src.core.money import from_minor_units, to_minor_units
from src.core.rate_limiter import CheckoutRateLimiter, get_rate_limiter
from src.core.stripe import get_stripe, to_plain
from src.models.order import ShippingAddress
from src.schemas.checkout import CheckoutRequest
from src.services.cart_metadata import CartMetadata
from src.services.cart_validator import CartValidator, ValidatedCart
from src.services.order_materializer import (
    ConfirmedLineItem,
    ConfirmedPayment,
    OrderMaterializer,
    build_idempotency_key,
)
from src.services.order_service import OrderService

logger = logging.getLogger(__name__)

RATE_LIMIT_OPERATION = "stripe-checkout"
METADATA_KEY = "cart"
PAID_STATUSES = ("paid", "no_payment_required")


def _is_absolute_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _shipping_details(session: dict[str, Any]) -> dict[str, Any]:
    """Shipping details across API versions (top-level or collected_information)."""
    details = session.get("shipping_details")
    if not details:
        details = (session.get("collected_information") or {}).get("shipping_details")
    return details or {}


class StripeCheckoutService:
    """Card payments through Stripe-hosted Checkout."""

    def __init__(
        self,
        validator: CartValidator | None = None,
        materializer: OrderMaterializer | None = None,
        orders: OrderService | None = None,
        rate_limiter: CheckoutRateLimiter | None = None,
    ) -> None:
        """Initialize Stripe checkout service with its collaborators."""
        self.stripe = get_stripe()
        self.settings = get_settings()
        self.validator = validator or CartValidator()
        self.orders = orders or OrderService()
        self.materializer = materializer or OrderMaterializer(orders=self.orders)
        self.rate_limiter = rate_limiter or get_rate_limiter()

    # Session creation

    def _line_items(self, cart: ValidatedCart) -> list[dict[str, Any]]:
        currency = self.settings.checkout_currency
        line_items = []
        for item in cart.items:
            product_data: dict[str, Any] = {
                "name": item.name,
                "metadata": {"product_id": item.product_id},
            }
            if item.description:
                product_data["description"] = item.description
            # Stripe rejects relative image URLs
            if _is_absolute_url(item.image):
                product_data["images"] = [item.image]

            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": product_data,
                        "unit_amount": to_minor_units(item.unit_price),
                    },
                    "quantity": item.quantity,
                }
            )
        return line_items

    async def create_checkout_session(self, data: CheckoutRequest, client_address: str) -> dict[str, Any]:
        """Create a Stripe Checkout Session priced from the catalog.

        Args:
            data: Cart, shipping cost and optional customer identity.
            client_address: Resolved client address for rate limiting.

        Returns:
            dict: ``url``, ``provider_reference`` (session ID), ``total``, ``currency``.

        Raises:
            RateLimitError: If the client exceeded its checkout attempts.
            CartValidationError: If the cart fails validation.
            PaymentProviderError: If Stripe is not configured or rejects the request.
        """
        await self.rate_limiter.check_and_increment(RATE_LIMIT_OPERATION, client_address)
        cart = await self.validator.validate(data.items, data.shipping_cost)

        if not self.settings.stripe_secret_key:
            logger.error("Stripe checkout requested but STRIPE_SECRET_KEY is not set")
            raise PaymentProviderError("Card payments are currently unavailable", provider="stripe")

        currency = self.settings.checkout_currency
        metadata = CartMetadata.from_cart(cart, data.customer_email, data.customer_name)
        frontend_url = self.settings.frontend_url.rstrip("/")

        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": self._line_items(cart),
            "success_url": f"{frontend_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{frontend_url}/payment-cancelled",
            "shipping_address_collection": {"allowed_countries": self.settings.shipping_countries_list},
            "shipping_options": [
                {
                    "shipping_rate_data": {
                        "type": "fixed_amount",
                        "display_name": "Livraison",
                        "fixed_amount": {
                            "amount": to_minor_units(cart.shipping_cost),
                            "currency": currency,
                        },
                    }
                }
            ],
            "billing_address_collection": "required",
            "phone_number_collection": {"enabled": True},
            "locale": self.settings.store_locale,
            "metadata": {
                METADATA_KEY: metadata.encode(self.settings.stripe_metadata_max_length),
            },
        }
        if data.customer_email:
            params["customer_email"] = data.customer_email

        try:
            session = self.stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe error creating checkout session: %s", str(e))
            raise PaymentProviderError("Failed to create checkout session", provider="stripe") from e

        logger.info("Stripe checkout session %s created for %s %s", session.id, cart.grand_total, currency)
        return {
            "url": session.url,
            "provider_reference": session.id,
            "total": cart.grand_total,
            "currency": currency,
        }

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """Verify Stripe webhook signature and return event.

        Args:
            payload: Raw webhook payload bytes.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Verified Stripe event, converted to plain dicts.

        Raises:
            InvalidSignatureError: If the header is missing, the secret is not
                configured, or the signature does not match.
        """
        if not sig_header:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        if not self.settings.stripe_webhook_secret:
            logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
            raise InvalidSignatureError()

        try:
            event = self.stripe.Webhook.construct_event(payload, sig_header, self.settings.stripe_webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise InvalidSignatureError() from e
        return to_plain(event)

    async def handle_event(self, event: dict[str, Any]) -> str:
        """Dispatch a verified event.

        Returns:
            str: Outcome label for logging (``created``, ``duplicate``, ``ignored``...).
        """
        event = to_plain(event)
        event_type = event.get("type", "")
        obj = event["data"]["object"]

        if event_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            return await self.handle_checkout_completed(obj)
        if event_type == "checkout.session.async_payment_failed":
            return await self._cancel_for_session(obj["id"], "pending", "Payment failed via Stripe")
        if event_type == "payment_intent.payment_failed":
            return await self.handle_payment_failed(obj)
        if event_type == "charge.refunded":
            return await self.handle_charge_refunded(obj)

        logger.debug("Unhandled webhook event type: %s", event_type)
        return "ignored"

    async def handle_checkout_completed(self, session_obj: dict[str, Any]) -> str:
        """Materialize the order for a completed checkout session.

        The event body is only used for the session ID and a first paid
        check; customer, shipping and line items are re-read from Stripe.
        """
        session_id = session_obj["id"]
        if session_obj.get("payment_status") not in PAID_STATUSES:
            # Delayed payment methods complete later via async_payment_succeeded
            logger.info("Session %s completed with payment_status=%s; waiting", session_id, session_obj.get("payment_status"))
            return "deferred"

        key = build_idempotency_key("stripe", session_id)
        existing = await self.orders.find_order_by_idempotency_key(key)
        if existing:
            logger.info("Order %s already exists for session %s, skipping", existing.get("order_number"), session_id)
            return "duplicate"

        session = to_plain(self.stripe.checkout.Session.retrieve(session_id))
        if session.get("payment_status") not in PAID_STATUSES:
            logger.warning("Session %s is not paid according to Stripe; not recording an order", session_id)
            return "deferred"
        line_items = to_plain(
            self.stripe.checkout.Session.list_line_items(
                session_id,
                limit=100,
                expand=["data.price.product"],
            )
        )

        payment = self._payment_from_session(session, line_items.get("data") or [])
        result = await self.materializer.materialize(payment)
        return "created" if result.created else "duplicate"

    def _payment_from_session(self, session: dict[str, Any], line_items: list[dict[str, Any]]) -> ConfirmedPayment:
        metadata = CartMetadata.decode((session.get("metadata") or {}).get(METADATA_KEY))
        review_reasons = [] if metadata else ["cart metadata missing or unreadable"]

        details = session.get("customer_details") or {}
        shipping = _shipping_details(session)
        address = shipping.get("address") or details.get("address") or {}

        customer_name = (
            details.get("name")
            or (metadata.customer_name if metadata else None)
            or shipping.get("name")
            or ""
        )
        customer_email = (
            details.get("email")
            or session.get("customer_email")
            or (metadata.customer_email if metadata else None)
            or ""
        )

        products = []
        for line in line_items:
            product = (line.get("price") or {}).get("product")
            products.append(product if isinstance(product, dict) else {})
        quantities = [int(line.get("quantity") or 1) for line in line_items]
        product_ids = [(product.get("metadata") or {}).get("product_id") for product in products]
        options = (
            metadata.options_for_lines(list(zip(product_ids, quantities)))
            if metadata
            else [None] * len(line_items)
        )

        items: list[ConfirmedLineItem] = []
        for line, product, product_id, quantity, selected in zip(line_items, products, product_ids, quantities, options):
            images = product.get("images") or []
            items.append(
                ConfirmedLineItem(
                    product_name=line.get("description") or product.get("name") or "Produit",
                    quantity=quantity,
                    unit_price=from_minor_units((line.get("price") or {}).get("unit_amount")),
                    product_id=product_id,
                    product_image=images[0] if images else None,
                    options=selected,
                )
            )

        return ConfirmedPayment(
            provider="stripe",
            provider_reference=session["id"],
            customer_email=customer_email,
            customer_name=customer_name,
            customer_phone=details.get("phone"),
            shipping_address=ShippingAddress(
                line1=address.get("line1") or "",
                line2=address.get("line2") or "",
                city=address.get("city") or "",
                postal_code=address.get("postal_code") or "",
                country=address.get("country") or "",
                name=shipping.get("name") or customer_name,
            ),
            items=items,
            subtotal=from_minor_units(session.get("amount_subtotal")),
            shipping_cost=from_minor_units((session.get("shipping_cost") or {}).get("amount_total")),
            total=from_minor_units(session.get("amount_total")),
            currency=session.get("currency") or self.settings.checkout_currency,
            review_reasons=review_reasons,
        )

    def _session_id_for_payment_intent(self, payment_intent_id: str | None) -> str | None:
        if not payment_intent_id:
            return None
        sessions = to_plain(self.stripe.checkout.Session.list(payment_intent=payment_intent_id, limit=1))
        data = sessions.get("data") or []
        return data[0]["id"] if data else None

    async def _cancel_for_session(self, session_id: str | None, from_status: str, note: str) -> str:
        if not session_id:
            logger.info("No checkout session found; nothing to cancel (%s)", note)
            return "ignored"
        order = await self.orders.find_order_by_idempotency_key(build_idempotency_key("stripe", session_id))
        if not order:
            logger.info("No order recorded for session %s; nothing to cancel (%s)", session_id, note)
            return "ignored"
        if order["status"] != from_status:
            logger.info("Order %s is %s, not %s; leaving it unchanged", order["id"], order["status"], from_status)
            return "ignored"
        applied = await self.orders.transition_order_status(order["id"], from_status, "cancelled", note)
        return "cancelled" if applied else "ignored"

    async def handle_payment_failed(self, payment_intent: dict[str, Any]) -> str:
        """Cancel a pending order whose payment intent failed."""
        error = (payment_intent.get("last_payment_error") or {}).get("message")
        logger.info("Payment failed for %s: %s", payment_intent.get("id"), error)
        session_id = self._session_id_for_payment_intent(payment_intent.get("id"))
        return await self._cancel_for_session(session_id, "pending", "Payment failed via Stripe")

    async def handle_charge_refunded(self, charge: dict[str, Any]) -> str:
        """Cancel a confirmed order once its charge is fully refunded."""
        if not charge.get("refunded"):
            # Partial refunds are reconciled manually
            logger.info("Partial refund on charge %s; order left unchanged", charge.get("id"))
            return "ignored"
        session_id = self._session_id_for_payment_intent(charge.get("payment_intent"))
        return await self._cancel_for_session(session_id, "confirmed", "Order refunded via Stripe")

    # Lookup

    async def get_checkout_session_summary(self, session_id: str, now: datetime | None = None) -> dict[str, Any]:
        """Summarize a paid, recent session for the success page.

        Unpaid and unknown sessions are indistinguishable to the caller.

        Args:
            session_id: Stripe Checkout Session ID from the success URL.
            now: Current time, for tests.

        Returns:
            dict: Session summary, plus the order number once recorded.

        Raises:
            NotFoundError: If the session does not exist or is not paid.
            ExpiredError: If the session is older than the lookup window.
        """
        if not session_id.startswith("cs_"):
            raise NotFoundError("Checkout session not found")

        try:
            session = to_plain(self.stripe.checkout.Session.retrieve(session_id, expand=["line_items"]))
        except stripe.StripeError as e:
            logger.info("Checkout session lookup failed for %s: %s", session_id, str(e))
            raise NotFoundError("Checkout session not found") from e

        if session.get("payment_status") != "paid":
            raise NotFoundError("Checkout session not found")

        created_at = datetime.fromtimestamp(session["created"], tz=timezone.utc)
        now = now or datetime.now(timezone.utc)
        if now - created_at > timedelta(hours=self.settings.checkout_lookup_max_age_hours):
            raise ExpiredError("Checkout session has expired")

        details = session.get("customer_details") or {}
        shipping = _shipping_details(session)
        address = shipping.get("address")
        metadata = CartMetadata.decode((session.get("metadata") or {}).get(METADATA_KEY))
        order = await self.orders.find_order_by_idempotency_key(build_idempotency_key("stripe", session_id))

        return {
            "id": session["id"],
            "customer_email": details.get("email") or session.get("customer_email"),
            "customer_name": details.get("name") or (metadata.customer_name if metadata else None),
            "amount_total": from_minor_units(session.get("amount_total")),
            "currency": (session.get("currency") or self.settings.checkout_currency).upper(),
            "payment_status": session["payment_status"],
            "shipping_address": {
                "line1": address.get("line1") or "",
                "line2": address.get("line2") or "",
                "city": address.get("city") or "",
                "postal_code": address.get("postal_code") or "",
                "country": address.get("country") or "",
                "name": shipping.get("name") or "",
            } if address else None,
            "items": [
                {
                    "name": line.get("description") or "",
                    "quantity": line.get("quantity") or 1,
                    "unit_amount": from_minor_units((line.get("price") or {}).get("unit_amount")),
                    "total": from_minor_units(line.get("amount_total")),
                }
                for line in (session.get("line_items") or {}).get("data") or []
            ],
            "created_at": created_at,
            "order_number": order.get("order_number") if order else None,
        }
