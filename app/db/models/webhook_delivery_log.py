"""WebhookDeliveryLog model: one row per outbound delivery attempt."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class WebhookDeliveryLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    webhook_url = Column(Text, nullable=False)
    payload = Column(JSONB, nullable=False)
    response_status = Column(Integer, nullable=False, default=0)  # 0 = network failure
    response_body = Column(Text, nullable=True)  # truncated
    response_time_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)
