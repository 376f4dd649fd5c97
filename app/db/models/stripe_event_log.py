"""StripeEventLog model: audit trail of inbound Stripe event handling."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class StripeEventLog(Base):
    __tablename__ = "stripe_webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(128), nullable=False)
    event_id = Column(String(255), nullable=True, index=True)
    order_number = Column(String(64), nullable=True, index=True)
    status = Column(String(20), nullable=False)  # success, error, warning
    message = Column(Text, nullable=False)
    debug_data = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
