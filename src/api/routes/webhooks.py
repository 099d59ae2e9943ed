"""Webhook API routes for payment provider events."""

import logging

from fastapi import APIRouter, Request, status

from src.api.deps import StripeCheckout
from src.api.middleware.error_handler import APIError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives and processes Stripe webhook events. Requires valid signature.",
)
async def stripe_webhook(request: Request, service: StripeCheckout) -> dict[str, str]:
    """Handle Stripe webhook events.

    Handles:
    - checkout.session.completed / async_payment_succeeded: records the order
    - checkout.session.async_payment_failed, payment_intent.payment_failed:
      cancels a pending order if one exists
    - charge.refunded: cancels the order on a full refund

    Only signature failures are rejected. Application errors are logged and
    acknowledged so Stripe does not retry what it cannot fix; unexpected
    failures surface as 500 and are retried by Stripe, which is safe because
    order creation is idempotent.

    Args:
        request: FastAPI request object for reading raw body and headers.
        service: Stripe checkout service.

    Returns:
        dict: Acknowledgment message.
    """
    payload = await request.body()
    event = service.verify_webhook_signature(payload, request.headers.get("stripe-signature"))

    event_type = event.get("type", "")
    logger.info("Processing Stripe webhook event %s (%s)", event.get("id"), event_type)

    try:
        outcome = await service.handle_event(event)
    except APIError as e:
        logger.error("Stripe event %s (%s) not processed: %s", event.get("id"), event_type, e.message)
        return {"status": "received"}

    logger.info("Stripe event %s (%s): %s", event.get("id"), event_type, outcome)
    return {"status": "received"}
