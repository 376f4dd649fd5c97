"""Order model: preorders for bumper plates, mutated by admin actions and Stripe webhooks."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(64), nullable=False, unique=True, index=True)

    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    customer_email = Column(String(255), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(64), nullable=True)

    status = Column(String(50), nullable=False, default="pending")
    payment_status = Column(String(50), nullable=False, default="pending", index=True)  # pending, paid, failed, cancelled

    # Set once a payment link exists; items/address are frozen from then on
    order_locked = Column(Boolean, nullable=False, default=False)
    order_locked_reason = Column(Text, nullable=True)
    payment_link_url = Column(Text, nullable=True)
    payment_link_created_at = Column(DateTime(timezone=True), nullable=True)

    # [{"weight": 45, "quantity": 2, "price": 120.0}, ...]
    items = Column(JSONB, nullable=False, default=list)

    shipping_address = Column(Text, nullable=True)
    shipping_city = Column(String(128), nullable=True)
    shipping_state = Column(String(64), nullable=True)
    shipping_zip = Column(String(32), nullable=True)

    tax_amount = Column(Numeric(10, 2), nullable=True)
    shipping_cost = Column(Numeric(10, 2), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=True)

    # Stripe references
    stripe_checkout_session_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_invoice_url = Column(Text, nullable=True)
    stripe_invoice_pdf = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
    paid_at = Column(DateTime(timezone=True), nullable=True)
