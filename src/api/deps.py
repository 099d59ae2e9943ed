"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Request

from src.core.rate_limiter import UNKNOWN_CLIENT_ADDRESS
from src.services.paypal_checkout_service import PayPalCheckoutService
from src.services.stripe_checkout_service import StripeCheckoutService


def get_client_address(request: Request) -> str:
    """Resolve the client address used as the rate limit bucket.

    Prefers the first ``X-Forwarded-For`` entry, then ``X-Real-IP``. All
    callers without either share the ``"unknown"`` bucket. These headers are
    only as trustworthy as the proxy in front of the service.

    Args:
        request: The incoming request.

    Returns:
        str: Client address or ``"unknown"``.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT_ADDRESS


def get_stripe_checkout_service() -> StripeCheckoutService:
    """Provide a Stripe checkout service per request."""
    return StripeCheckoutService()


def get_paypal_checkout_service() -> PayPalCheckoutService:
    """Provide a PayPal checkout service per request."""
    return PayPalCheckoutService()


# Type aliases for cleaner route signatures
ClientAddress = Annotated[str, Depends(get_client_address)]
StripeCheckout = Annotated[StripeCheckoutService, Depends(get_stripe_checkout_service)]
PayPalCheckout = Annotated[PayPalCheckoutService, Depends(get_paypal_checkout_service)]
