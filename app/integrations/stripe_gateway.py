"""Stripe webhook signature verification."""

import json
from typing import Any

import stripe


class StripeVerificationError(Exception):
    """Signature header missing, payload unparseable or signature mismatch."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


def verify_event(payload: bytes, sig_header: str | None, secret: str) -> dict[str, Any]:
    """Verify a raw webhook body against the endpoint secret and return the event.

    The event is returned as the plain JSON dict Stripe sent, so handlers can
    use ordinary dict access regardless of the stripe library's object model.

    Raises:
        StripeVerificationError: On any verification failure (maps to HTTP 400)
    """
    if not sig_header:
        raise StripeVerificationError("Missing stripe-signature header")
    try:
        stripe.Webhook.construct_event(payload, sig_header, secret)
    except ValueError as e:
        raise StripeVerificationError("Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        raise StripeVerificationError("Invalid signature") from e
    return json.loads(payload)
