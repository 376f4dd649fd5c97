"""Inbound Stripe webhook endpoint."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_stripe_event_processor
from app.core.config import get_settings
from app.integrations.stripe_gateway import StripeVerificationError, verify_event
from app.services.stripe_events import StripeEventProcessor

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    processor: StripeEventProcessor = Depends(get_stripe_event_processor),
):
    """Verify and apply a Stripe event.

    400 on verification failure, 503 when the endpoint secret is not configured,
    500 only when the order payment update keeps failing (so Stripe retries).
    """
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")

    body = await request.body()
    try:
        event = verify_event(body, request.headers.get("stripe-signature"), settings.stripe_webhook_secret)
    except StripeVerificationError as e:
        logger.warning("stripe_signature_rejected", reason=e.detail)
        raise HTTPException(status_code=400, detail=e.detail)

    outcome = await processor.handle(event)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
