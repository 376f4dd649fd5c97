"""Tests for outbound payload construction, inclusion flags and signing."""

import hashlib
import hmac
import json

import pytest

from app.domain.payload import build_headers, build_payload, serialize_payload, sign_payload
from app.schemas.webhooks import ZapierSettings

pytestmark = pytest.mark.unit

PRICE_KEYS = {"price", "total", "total_amount", "pricing", "amount_paid", "currency", "subtotal"}


def _all_keys(value) -> set[str]:
    keys: set[str] = set()
    if isinstance(value, dict):
        for k, v in value.items():
            keys.add(k)
            keys |= _all_keys(v)
    elif isinstance(value, list):
        for v in value:
            keys |= _all_keys(v)
    return keys


def _settings(**flags) -> ZapierSettings:
    base = {
        "webhook_url": "https://hooks.example.com/x",
        "webhook_enabled": True,
        "include_customer_data": False,
        "include_order_items": False,
        "include_pricing_data": False,
        "include_shipping_data": False,
    }
    base.update(flags)
    return ZapierSettings(**base)


def test_minimal_payload_has_only_core_blocks(make_order, now):
    payload = build_payload(make_order(), _settings(), "payment_link_created", {"source": "test"}, now=now)

    assert set(payload) == {"event_type", "timestamp", "order", "metadata"}
    assert set(payload["order"]) == {"id", "order_number", "status", "payment_status", "payment_link_url", "created_at"}
    assert payload["timestamp"] == now.isoformat()
    assert payload["metadata"] == {"source": "test"}


def test_pricing_disabled_leaves_no_price_field_anywhere(make_order, customer, now):
    payload = build_payload(
        make_order(),
        _settings(include_customer_data=True, include_order_items=True, include_shipping_data=True),
        "order_completed",
        {"source": "stripe_webhook"},
        customer=customer,
        payment={"method": "stripe_checkout", "amount_paid": 281.8, "paid_at": now.isoformat()},
        now=now,
    )
    parsed = json.loads(serialize_payload(payload))

    assert not (_all_keys(parsed) & PRICE_KEYS)
    assert parsed["order"]["items"] == [{"weight": 45, "quantity": 2, "product_title": "45lb Bumper Plate"}]
    assert parsed["payment"] == {"method": "stripe_checkout", "paid_at": now.isoformat()}


def test_pricing_enabled_adds_pricing_block_and_item_totals(make_order, now):
    payload = build_payload(
        make_order(),
        _settings(include_order_items=True, include_pricing_data=True),
        "payment_link_created",
        {},
        now=now,
    )

    assert payload["order"]["total_amount"] == 281.8
    assert payload["order"]["pricing"] == {
        "subtotal": 240.0,
        "tax_amount": 16.8,
        "shipping_cost": 25.0,
        "total": 281.8,
        "currency": "USD",
    }
    assert payload["order"]["items"][0]["price"] == 120.0
    assert payload["order"]["items"][0]["total"] == 240.0


def test_customer_block_combines_order_and_customer_row(make_order, customer, now):
    payload = build_payload(make_order(), _settings(include_customer_data=True), "payment_link_created", {},
                            customer=customer, now=now)

    assert payload["customer"] == {
        "id": 10,
        "email": "lifter@example.com",
        "first_name": "Pat",
        "last_name": "Lifter",
        "full_name": "Pat Lifter",
        "phone": "555-0100",
        "stripe_customer_id": "cus_test_123",
    }


def test_shipping_block_only_when_enabled(make_order, now):
    without = build_payload(make_order(), _settings(), "payment_link_created", {}, now=now)
    with_shipping = build_payload(make_order(), _settings(include_shipping_data=True), "payment_link_created", {},
                                  now=now)

    assert "shipping" not in without["order"]
    assert with_shipping["order"]["shipping"] == {
        "address": "1 Main St",
        "city": "Charlotte",
        "state": "NC",
        "zip_code": "28202",
        "phone": "555-0100",
    }


def test_items_stored_as_json_string_are_parsed(make_order, now):
    order = make_order(items='[{"weight": 25, "quantity": 4, "price": 70}]')
    payload = build_payload(order, _settings(include_order_items=True), "payment_link_created", {}, now=now)

    assert payload["order"]["items"] == [{"weight": 25, "quantity": 4, "product_title": "25lb Bumper Plate"}]


def test_product_titles_override_default(make_order, now):
    payload = build_payload(make_order(), _settings(include_order_items=True), "payment_link_created", {},
                            product_titles={45: "Competition 45"}, now=now)

    assert payload["order"]["items"][0]["product_title"] == "Competition 45"


def test_serialize_is_compact():
    assert serialize_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'


def test_signature_is_hmac_sha256_of_exact_bytes():
    body = serialize_payload({"event_type": "order_completed"})
    expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    assert sign_payload(body, "secret") == f"sha256={expected}"


def test_headers_include_signature_only_with_secret():
    body = b"{}"

    unsigned = build_headers(body, "UA/1.0")
    signed = build_headers(body, "UA/1.0", secret="s3cret", test_mode=True)

    assert "X-Webhook-Signature" not in unsigned
    assert unsigned["User-Agent"] == "UA/1.0"
    assert signed["X-Webhook-Signature"] == sign_payload(body, "s3cret")
    assert signed["X-Webhook-Test"] == "true"
