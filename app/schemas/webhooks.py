"""Pydantic records for outbound Zapier delivery, the retry queue and Stripe audit logs."""

from datetime import datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookEventType(StrEnum):
    PAYMENT_LINK_CREATED = "payment_link_created"
    ORDER_COMPLETED = "order_completed"


class QueueStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ZapierSettings(BaseModel):
    """Effective outbound webhook configuration."""

    webhook_url: str = ""
    webhook_enabled: bool = False
    webhook_timeout: int = 30
    webhook_retry_attempts: int = 3
    webhook_retry_delay: int = 5
    include_customer_data: bool = True
    include_order_items: bool = True
    include_pricing_data: bool = True
    include_shipping_data: bool = False
    webhook_secret: str = ""


class ZapierSettingsUpdate(BaseModel):
    """Partial settings update. Omitted fields keep their stored value."""

    webhook_url: str | None = None
    webhook_enabled: bool | None = None
    webhook_timeout: int | None = Field(default=None, ge=5, le=300)
    webhook_retry_attempts: int | None = Field(default=None, ge=0, le=10)
    webhook_retry_delay: int | None = Field(default=None, ge=1, le=300)
    include_customer_data: bool | None = None
    include_order_items: bool | None = None
    include_pricing_data: bool | None = None
    include_shipping_data: bool | None = None
    webhook_secret: str | None = None

    @field_validator("webhook_url")
    @classmethod
    def _url_must_parse(cls, value: str | None) -> str | None:
        if value:
            parsed = urlparse(value)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError("webhook_url must be an absolute http(s) URL")
        return value


class ZapierSettingsView(BaseModel):
    """Settings as shown to operators: the secret never leaves the server."""

    webhook_url: str
    webhook_enabled: bool
    webhook_timeout: int
    webhook_retry_attempts: int
    webhook_retry_delay: int
    include_customer_data: bool
    include_order_items: bool
    include_pricing_data: bool
    include_shipping_data: bool
    has_webhook_secret: bool


class QueueItemRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    order_id: int
    webhook_url: str
    payload: dict[str, Any]
    event_type: str
    status: str = QueueStatus.PENDING
    attempts: int = 0
    max_attempts: int = 1
    next_retry_at: datetime | None = None
    error_message: str | None = None
    debug_session_id: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None


class DeliveryLogRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    order_id: int
    webhook_url: str
    payload: dict[str, Any]
    response_status: int = 0
    response_body: str | None = None
    response_time_ms: int = 0
    success: bool = False
    error_message: str | None = None
    retry_count: int = 0
    created_at: datetime | None = None


class StripeEventLogRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_type: str
    event_id: str | None = None
    order_number: str | None = None
    status: str  # success, error, warning
    message: str
    debug_data: dict[str, Any] | None = None
    created_at: datetime | None = None


class DeliveryResult(BaseModel):
    """Outcome of a single HTTP POST to the webhook URL."""

    success: bool
    status_code: int = 0
    response_time_ms: int = 0
    response_body: str | None = None
    error: str | None = None


class DispatchResult(BaseModel):
    """Outcome of a dispatch request for one order/event."""

    dispatched: bool
    delivered: bool = False
    queued: bool = False
    skipped_reason: str | None = None
    queue_item_id: int | None = None
    status_code: int | None = None
    error: str | None = None


class QueueProcessSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0


class DeliveryStats(BaseModel):
    total_sent: int = 0
    successful: int = 0
    failed: int = 0
    pending_queue_items: int = 0
    average_response_time_ms: float = 0.0


class WebhookTriggerRequest(BaseModel):
    webhook_type: WebhookEventType


class WebhookInvestigation(BaseModel):
    """Per-order delivery investigation for operators."""

    order_id: int
    order_number: str
    payment_status: str
    payment_link_url: str | None = None
    config: dict[str, Any]
    delivery_logs: list[DeliveryLogRecord] = Field(default_factory=list)
    queue_items: list[QueueItemRecord] = Field(default_factory=list)
    analysis: dict[str, Any] = Field(default_factory=dict)
