"""Idempotent order creation from a confirmed provider payment.

Both confirmation paths (Stripe webhook, PayPal capture) translate their
provider record into a ``ConfirmedPayment`` and hand it to
``OrderMaterializer.materialize``. At most one order exists per idempotency
key: the key is checked before insert, and the ``orders.idempotency_key``
unique constraint settles any race between concurrent deliveries.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError

from src.core.config import get_settings
from src.core.money import to_money
from src.models.order import OrderWithItems, PaymentProvider, ShippingAddress
from src.services.account_service import AccountService
from src.services.email_service import EmailService
from src.services.order_service import UNIQUE_VIOLATION, OrderService

logger = logging.getLogger(__name__)

PROVIDER_LABELS: dict[str, str] = {"stripe": "Stripe", "paypal": "PayPal"}


def build_idempotency_key(provider: PaymentProvider, provider_reference: str) -> str:
    """Key under which at most one order may exist for a provider payment."""
    return f"{provider}:{provider_reference}"


def generate_order_number(prefix: str, now: datetime | None = None) -> str:
    """Display number such as ``DP-261019-4F2A9C``. Not a uniqueness key."""
    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now:%y%m%d}-{secrets.token_hex(3).upper()}"


@dataclass
class ConfirmedLineItem:
    """A line item as reported by the payment provider."""

    product_name: str
    quantity: int
    unit_price: Decimal
    product_id: str | None = None
    product_image: str | None = None
    options: dict[str, str] | None = None

    @property
    def total_price(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass
class ConfirmedPayment:
    """Provider-authoritative payment record, ready to become an order."""

    provider: PaymentProvider
    provider_reference: str
    customer_email: str
    customer_name: str
    shipping_address: ShippingAddress
    items: list[ConfirmedLineItem]
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal
    currency: str
    customer_phone: str | None = None
    review_reasons: list[str] = field(default_factory=list)

    @property
    def idempotency_key(self) -> str:
        return build_idempotency_key(self.provider, self.provider_reference)

    @property
    def needs_review(self) -> bool:
        return bool(self.review_reasons)


@dataclass
class MaterializedOrder:
    """Materializer result. ``created`` is False for idempotent duplicates."""

    order: OrderWithItems
    created: bool


class OrderMaterializer:
    """Creates an order, its items and its first history entry exactly once."""

    def __init__(
        self,
        orders: OrderService | None = None,
        accounts: AccountService | None = None,
        emails: EmailService | None = None,
    ) -> None:
        self.settings = get_settings()
        self.orders = orders or OrderService()
        self.accounts = accounts or AccountService()
        self.emails = emails or EmailService()

    def _reconcile(self, payment: ConfirmedPayment) -> list[ConfirmedLineItem]:
        """Return the lines to persist, flagging the payment when they look incomplete."""
        items = [item for item in payment.items if item.quantity > 0]

        if not items:
            payment.review_reasons.append("provider reported no line items")
            return [
                ConfirmedLineItem(
                    product_name=f"{PROVIDER_LABELS.get(payment.provider, payment.provider)} order",
                    quantity=1,
                    unit_price=to_money(payment.subtotal),
                )
            ]

        lines_total = to_money(sum((item.total_price for item in items), Decimal("0")))
        if lines_total != to_money(payment.subtotal):
            logger.warning(
                "Line items for %s sum to %s but provider subtotal is %s",
                payment.idempotency_key,
                lines_total,
                payment.subtotal,
            )
            payment.review_reasons.append(f"line items sum to {lines_total}, subtotal {payment.subtotal}")
        return items

    def _history_note(self, payment: ConfirmedPayment) -> str:
        note = f"Payment received via {PROVIDER_LABELS.get(payment.provider, payment.provider)}"
        if payment.needs_review:
            note += " - manual review: " + "; ".join(payment.review_reasons)
        return note

    async def _linked_user_id(self, payment: ConfirmedPayment) -> str | None:
        # Account linking is optional; a paid order is recorded without it
        try:
            return await self.accounts.find_user_id_by_email(payment.customer_email)
        except Exception as e:
            logger.warning("Account lookup failed for %s, recording order unlinked: %s", payment.idempotency_key, str(e))
            return None

    async def materialize(self, payment: ConfirmedPayment) -> MaterializedOrder:
        """Record the order for a confirmed payment, or return the existing one.

        Args:
            payment: Provider-authoritative payment data.

        Returns:
            MaterializedOrder: The order with items and whether this call created it.

        Raises:
            postgrest.exceptions.APIError: On database failures other than the
                idempotency-key unique violation. Nothing is left half-written.
        """
        key = payment.idempotency_key

        # Re-check right before insert; the caller's earlier check may be stale
        existing = await self.orders.find_order_by_idempotency_key(key)
        if existing:
            logger.info("Order %s already recorded for %s", existing.get("order_number"), key)
            return MaterializedOrder(order=existing, created=False)

        items = self._reconcile(payment)
        user_id = await self._linked_user_id(payment)

        order_row: dict[str, Any] = {
            "order_number": generate_order_number(self.settings.order_number_prefix),
            "idempotency_key": key,
            "provider": payment.provider,
            "provider_reference": payment.provider_reference,
            "customer_email": payment.customer_email,
            "customer_name": payment.customer_name,
            "customer_phone": payment.customer_phone,
            "shipping_address": dict(payment.shipping_address),
            "subtotal": to_money(payment.subtotal),
            "shipping_cost": to_money(payment.shipping_cost),
            "total": to_money(payment.total),
            "currency": payment.currency.lower(),
            "status": "confirmed",
            "user_id": user_id,
            "needs_review": payment.needs_review,
        }
        item_rows = [
            {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "product_image": item.product_image,
                "quantity": item.quantity,
                "unit_price": to_money(item.unit_price),
                "total_price": item.total_price,
                "variant": item.options,
            }
            for item in items
        ]
        history_row = {
            "old_status": None,
            "new_status": "confirmed",
            "note": self._history_note(payment),
        }

        try:
            order = await self.orders.insert_order(order_row, item_rows, history_row)
        except PostgrestAPIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise
            # A concurrent delivery won the insert
            existing = await self.orders.find_order_by_idempotency_key(key)
            if existing is None:
                raise
            logger.info("Concurrent materialization for %s resolved to order %s", key, existing.get("order_number"))
            return MaterializedOrder(order=existing, created=False)

        logger.info(
            "Order %s created for %s: %d items, total %s%s",
            order.get("order_number"),
            key,
            len(item_rows),
            order_row["total"],
            " (needs review)" if payment.needs_review else "",
        )

        await self.emails.send_order_confirmation(order)
        return MaterializedOrder(order=order, created=True)
