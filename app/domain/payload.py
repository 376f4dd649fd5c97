"""Outbound webhook payload construction and signing.

Pure functions: no I/O. The payload is serialized exactly once and the same
bytes are both signed and sent, so the receiver can verify the signature
against the raw request body.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any

from app.domain.orders import parse_items
from app.schemas.orders import CustomerRecord, OrderRecord
from app.schemas.webhooks import ZapierSettings

CURRENCY = "USD"
SIGNATURE_HEADER = "X-Webhook-Signature"
TEST_HEADER = "X-Webhook-Test"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def default_product_title(weight: Any) -> str:
    return f"{weight}lb Bumper Plate"


def _item_subtotal(items: list[dict]) -> float:
    return sum(float(item.get("price") or 0) * float(item.get("quantity") or 0) for item in items)


def build_payload(
    order: OrderRecord,
    settings: ZapierSettings,
    event_type: str,
    metadata: dict[str, Any],
    customer: CustomerRecord | None = None,
    payment: dict[str, Any] | None = None,
    product_titles: dict[Any, str] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the JSON payload for an outbound order notification.

    Pure function -- no side effects, no DB access.

    Args:
        order: Order being announced
        settings: Effective Zapier settings (inclusion flags are read from here)
        event_type: "payment_link_created" or "order_completed"
        metadata: Source/trigger metadata copied verbatim into the payload
        customer: Linked customer row, if any
        payment: Payment details for order_completed (method, amount_paid, paid_at, Stripe ids)
        product_titles: Optional weight -> title map; falls back to "<weight>lb Bumper Plate"
        now: Current time (injectable for testing, defaults to datetime.now(timezone.utc))

    Returns:
        Dict ready for serialize_payload(). When include_pricing_data is off,
        no price, total or currency field appears anywhere in it.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    order_block: dict[str, Any] = {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_link_url": order.payment_link_url,
        "created_at": _iso(order.created_at),
    }

    payload: dict[str, Any] = {
        "event_type": str(event_type),
        "timestamp": now.isoformat(),
        "order": order_block,
        "metadata": dict(metadata),
    }

    items = parse_items(order.items) or []
    titles = product_titles or {}

    if settings.include_customer_data:
        payload["customer"] = {
            "id": customer.id if customer else order.customer_id,
            "email": order.customer_email,
            "first_name": customer.first_name if customer else None,
            "last_name": customer.last_name if customer else None,
            "full_name": order.customer_name,
            "phone": order.customer_phone or (customer.phone if customer else None),
            "stripe_customer_id": customer.stripe_customer_id if customer else None,
        }

    if settings.include_order_items and items:
        rendered = []
        for item in items:
            entry = {
                "weight": item.get("weight"),
                "quantity": item.get("quantity"),
                "product_title": titles.get(item.get("weight")) or default_product_title(item.get("weight")),
            }
            if settings.include_pricing_data:
                price = float(item.get("price") or 0)
                entry["price"] = price
                entry["total"] = price * float(item.get("quantity") or 0)
            rendered.append(entry)
        order_block["items"] = rendered

    if settings.include_shipping_data:
        order_block["shipping"] = {
            "address": order.shipping_address or "",
            "city": order.shipping_city or "",
            "state": order.shipping_state or "",
            "zip_code": order.shipping_zip or "",
            "phone": order.customer_phone,
        }

    if settings.include_pricing_data:
        subtotal = _item_subtotal(items)
        tax = float(order.tax_amount or 0)
        shipping = float(order.shipping_cost or 0)
        order_block["total_amount"] = float(order.total_amount or 0)
        order_block["pricing"] = {
            "subtotal": subtotal,
            "tax_amount": tax,
            "shipping_cost": shipping,
            "total": subtotal + tax + shipping,
            "currency": CURRENCY,
        }

    if payment is not None:
        if not settings.include_pricing_data:
            payment = {k: v for k, v in payment.items() if k != "amount_paid"}
        payload["payment"] = dict(payment)

    return payload


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Compact, deterministic JSON encoding. These bytes are signed and sent as-is."""
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    """Return the header value "sha256=<hex>" for an HMAC-SHA256 of body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def build_headers(
    body: bytes,
    user_agent: str,
    secret: str | None = None,
    test_mode: bool = False,
) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
    }
    if secret:
        headers[SIGNATURE_HEADER] = sign_payload(body, secret)
    if test_mode:
        headers[TEST_HEADER] = "true"
    return headers
