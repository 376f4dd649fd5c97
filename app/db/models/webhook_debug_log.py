"""Diagnostic persistence: per-step debug logs and archived test payloads."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class WebhookDebugLog(Base):
    __tablename__ = "webhook_debug_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, nullable=True, index=True)
    debug_session_id = Column(String(64), nullable=False, index=True)
    step_name = Column(String(64), nullable=False)
    step_status = Column(String(20), nullable=False)  # started, completed, failed, warning
    step_data = Column(JSONB, nullable=True)
    error_details = Column(Text, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)


class WebhookPayloadArchive(Base):
    __tablename__ = "webhook_payload_archive"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, nullable=True, index=True)
    debug_session_id = Column(String(64), nullable=False, index=True)
    webhook_url = Column(Text, nullable=False)
    payload_raw = Column(Text, nullable=False)  # exact bytes sent, utf-8
    payload_size_bytes = Column(Integer, nullable=False)
    request_headers = Column(JSONB, nullable=False, default=dict)
    response_status = Column(Integer, nullable=True)
    response_headers = Column(JSONB, nullable=True)
    response_body = Column(Text, nullable=True)
    network_error = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
