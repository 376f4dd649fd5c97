"""OrderTimelineEvent model: append-only audit trail per order."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class OrderTimelineEvent(Base):
    __tablename__ = "order_timeline"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)  # payment_completed, payment_link_created, ...
    event_description = Column(Text, nullable=False)
    event_data = Column(JSONB, nullable=False, default=dict)
    created_by = Column(String(64), nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)
    # NO updated_at -- events are immutable (append-only)
