"""Checkout API routes for Stripe and PayPal."""

from fastapi import APIRouter, status

from src.api.deps import ClientAddress, PayPalCheckout, StripeCheckout
from src.schemas.checkout import (
    CheckoutRequest,
    CheckoutSessionResponse,
    CheckoutSessionSummary,
    OrderItemResponse,
    OrderResponse,
    PayPalCaptureRequest,
    PayPalCaptureResponse,
)

router = APIRouter(prefix="/checkout", tags=["checkout"])

CART_ERRORS = {
    400: {"description": "empty_cart, product_not_found, product_unavailable, invalid_quantity or invalid_shipping_cost"},
    429: {"description": "Too many checkout attempts from this address"},
    502: {"description": "Payment provider request failed"},
}


def _order_response(order: dict) -> OrderResponse:
    items = [OrderItemResponse.model_validate(item) for item in order.get("order_items") or []]
    return OrderResponse.model_validate({**order, "items": items})


@router.post(
    "/stripe/session",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CART_ERRORS,
    summary="Create Stripe Checkout Session",
    description="Validates the cart against the catalog and creates a Stripe-hosted checkout session.",
)
async def create_stripe_session(
    data: CheckoutRequest,
    client_address: ClientAddress,
    service: StripeCheckout,
) -> CheckoutSessionResponse:
    """Create a Stripe Checkout Session for the cart.

    The storefront should redirect to the returned url.
    """
    result = await service.create_checkout_session(data, client_address)
    return CheckoutSessionResponse(provider="stripe", **result)


@router.get(
    "/stripe/session/{session_id}",
    response_model=CheckoutSessionSummary,
    responses={
        404: {"description": "Session unknown or not paid"},
        410: {"description": "Session older than the lookup window"},
    },
    summary="Get paid checkout session",
    description="Read-only summary of a paid checkout session for the payment success page.",
)
async def get_stripe_session(session_id: str, service: StripeCheckout) -> CheckoutSessionSummary:
    """Return the summary of a paid, recent checkout session."""
    summary = await service.get_checkout_session_summary(session_id)
    return CheckoutSessionSummary.model_validate(summary)


@router.post(
    "/paypal/order",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CART_ERRORS,
    summary="Create PayPal order",
    description="Validates the cart against the catalog and creates a PayPal order awaiting approval.",
)
async def create_paypal_order(
    data: CheckoutRequest,
    client_address: ClientAddress,
    service: PayPalCheckout,
) -> CheckoutSessionResponse:
    """Create a PayPal order for the cart.

    The storefront should redirect to the returned approval url.
    """
    result = await service.create_order(data, client_address)
    return CheckoutSessionResponse(provider="paypal", **result)


@router.post(
    "/paypal/capture",
    response_model=PayPalCaptureResponse,
    responses={
        402: {"description": "PayPal reports the payment as not completed"},
        502: {"description": "Payment provider request failed"},
    },
    summary="Capture PayPal payment",
    description="Captures an approved PayPal order and records it. Repeated calls return the same order.",
)
async def capture_paypal_order(data: PayPalCaptureRequest, service: PayPalCheckout) -> PayPalCaptureResponse:
    """Capture an approved PayPal order.

    Returns the recorded order; ``already_processed`` is set when the order
    existed before this call.
    """
    result, already_processed = await service.capture_order(data.order_id)
    return PayPalCaptureResponse(
        already_processed=already_processed,
        order=_order_response(result.order),
        provider_reference=data.order_id,
    )
