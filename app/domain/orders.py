"""Order state rules: item parsing, mutability and payment transitions.

Pure domain functions -- no DB access.
"""

import json
from datetime import datetime
from typing import Any

from app.core.exceptions import OrderLockedError
from app.schemas.orders import OrderRecord, PaymentStatus


def parse_items(raw: Any, strict: bool = False) -> list[dict]:
    """Normalize the stored items column into a list of dicts.

    Legacy rows store items as a JSON string and some hold a single object.

    Args:
        raw: Column value (list, dict, JSON string or None)
        strict: Raise ValueError on malformed JSON instead of returning []

    Returns:
        List of item dicts (possibly empty)
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            if strict:
                raise ValueError("Order items JSON is malformed") from e
            return []
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, dict)]
    if strict:
        raise ValueError("Order items are not a list")
    return []


def is_paid(order: OrderRecord) -> bool:
    return order.payment_status == PaymentStatus.PAID


def ensure_modifiable(order: OrderRecord) -> None:
    """Raise OrderLockedError if items or address may no longer change."""
    if is_paid(order):
        raise OrderLockedError(order.order_number, "order has been paid")
    if order.order_locked:
        raise OrderLockedError(order.order_number, order.order_locked_reason or "payment link created")


def is_duplicate_checkout(order: OrderRecord, session_id: str) -> bool:
    """A paid order already carrying this checkout session is a redelivery."""
    return is_paid(order) and order.stripe_checkout_session_id == session_id


def paid_changes(
    paid_at: datetime,
    payment_intent_id: str | None = None,
    checkout_session_id: str | None = None,
    invoice_id: str | None = None,
) -> dict[str, Any]:
    """Column changes for marking an order paid. Only known Stripe ids are written."""
    changes: dict[str, Any] = {
        "payment_status": PaymentStatus.PAID.value,
        "status": "paid",
        "paid_at": paid_at,
    }
    if payment_intent_id:
        changes["stripe_payment_intent_id"] = payment_intent_id
    if checkout_session_id:
        changes["stripe_checkout_session_id"] = checkout_session_id
    if invoice_id:
        changes["stripe_invoice_id"] = invoice_id
    return changes


def payment_link_changes(url: str, reason: str, now: datetime) -> dict[str, Any]:
    return {
        "order_locked": True,
        "order_locked_reason": reason,
        "payment_link_url": url,
        "payment_link_created_at": now,
    }
