"""Email service using Resend for transactional emails."""

import logging
from decimal import Decimal
from html import escape
from typing import Any

import resend

from src.core.config import get_settings
from src.core.money import to_money

logger = logging.getLogger(__name__)


def _format_price(amount: Any) -> str:
    """French currency formatting, e.g. ``1 250,00 €``."""
    value = to_money(amount if amount is not None else Decimal("0"))
    whole, cents = f"{value:,.2f}".split(".")
    return f"{whole.replace(',', ' ')},{cents} €"


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.enabled = bool(settings.resend_api_key)
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url
        self.brand_name = settings.store_brand_name

    async def send_order_confirmation(self, order: dict[str, Any]) -> dict[str, Any]:
        """Send the order confirmation email for a newly recorded order.

        Delivery is best-effort: failures are logged and reported in the
        return value, never raised, so they cannot undo a recorded order.

        Args:
            order: Order row with ``order_items``.

        Returns:
            dict: ``success`` flag plus the Resend email ID or error.
        """
        to_email = order.get("customer_email")
        if not to_email:
            logger.warning("Order %s has no customer email; confirmation not sent", order.get("order_number"))
            return {"success": False, "error": "missing recipient"}
        if not self.enabled:
            logger.info("Resend not configured; skipping confirmation for order %s", order.get("order_number"))
            return {"success": False, "error": "email disabled"}

        order_number = escape(str(order.get("order_number", "")))
        customer_name = escape(order.get("customer_name") or "")

        rows = "".join(
            f"""
            <tr>
                <td style="padding: 12px; border-bottom: 1px solid #e5e5e5;">{escape(item.get("product_name", ""))}</td>
                <td style="padding: 12px; border-bottom: 1px solid #e5e5e5; text-align: center;">{item.get("quantity", 1)}</td>
                <td style="padding: 12px; border-bottom: 1px solid #e5e5e5; text-align: right;">{_format_price(item.get("total_price"))}</td>
            </tr>"""
            for item in order.get("order_items") or []
        )

        address = order.get("shipping_address") or {}
        address_lines = [
            address.get("name"),
            address.get("line1"),
            address.get("line2"),
            " ".join(part for part in (address.get("postal_code"), address.get("city")) if part),
            address.get("country"),
        ]
        address_html = "<br>".join(escape(line) for line in address_lines if line)

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Confirmation de commande {order_number}</title>
</head>
<body style="font-family: Georgia, 'Times New Roman', serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-weight: normal; text-align: center;">{escape(self.brand_name)}</h1>
    <p>Bonjour {customer_name},</p>
    <p>Merci pour votre commande <strong>{order_number}</strong>. Nous la préparons avec soin.</p>

    <table style="width: 100%; border-collapse: collapse; margin: 24px 0;">
        <thead>
            <tr>
                <th style="padding: 12px; text-align: left;">Article</th>
                <th style="padding: 12px; text-align: center;">Qté</th>
                <th style="padding: 12px; text-align: right;">Prix</th>
            </tr>
        </thead>
        <tbody>{rows}
        </tbody>
    </table>

    <p style="text-align: right;">
        Sous-total : {_format_price(order.get("subtotal"))}<br>
        Livraison : {_format_price(order.get("shipping_cost"))}<br>
        <strong>Total : {_format_price(order.get("total"))}</strong>
    </p>

    <h3 style="font-weight: normal;">Adresse de livraison</h3>
    <p>{address_html}</p>

    <p style="font-size: 12px; color: #9ca3af; text-align: center; margin-top: 30px;">
        Suivez votre commande depuis votre compte : <a href="{self.frontend_url}/account">{self.frontend_url}/account</a>
    </p>
</body>
</html>
"""

        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": f"Confirmation de votre commande {order.get('order_number', '')}",
                "html": html_content,
            })

            logger.info("Order confirmation sent to %s, id: %s", to_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send order confirmation to %s: %s", to_email, str(e))
            return {"success": False, "error": str(e)}
