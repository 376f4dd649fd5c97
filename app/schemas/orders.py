"""Pydantic records for orders, customers and the order timeline."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrderRecord(BaseModel):
    """Storage-agnostic view of an order row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    customer_id: int | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    status: str = "pending"
    payment_status: str = PaymentStatus.PENDING
    order_locked: bool = False
    order_locked_reason: str | None = None
    payment_link_url: str | None = None
    payment_link_created_at: datetime | None = None
    # Raw column value: normally a list of dicts, legacy rows hold a JSON string
    items: Any = Field(default_factory=list)
    shipping_address: str | None = None
    shipping_city: str | None = None
    shipping_state: str | None = None
    shipping_zip: str | None = None
    tax_amount: float | None = None
    shipping_cost: float | None = None
    total_amount: float | None = None
    stripe_checkout_session_id: str | None = None
    stripe_payment_intent_id: str | None = None
    stripe_invoice_id: str | None = None
    stripe_invoice_url: str | None = None
    stripe_invoice_pdf: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    paid_at: datetime | None = None


class CustomerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    stripe_customer_id: str | None = None
    last_payment_at: datetime | None = None


class TimelineEventRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: int
    event_type: str
    event_description: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    created_by: str = "system"
    created_at: datetime | None = None


class PaymentLinkRequest(BaseModel):
    payment_link_url: str
    reason: str = "Payment link created"


class OrderModification(BaseModel):
    """Admin edit of items or shipping address. Refused once paid or locked."""

    items: list[dict[str, Any]] | None = None
    shipping_address: str | None = None
    shipping_city: str | None = None
    shipping_state: str | None = None
    shipping_zip: str | None = None
    customer_phone: str | None = None
