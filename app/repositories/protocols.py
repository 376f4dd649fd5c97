"""Repository protocols: the storage seams of the webhook layer.

Services depend only on these protocols. SQLAlchemy implementations live in
app.repositories.sql, deterministic in-memory doubles in app.repositories.memory.

Every implementation MUST raise PersistenceError (never a driver exception)
when a read or write fails.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from app.schemas.diagnostics import DebugHistoryEntry, DebugStepLogRecord, PayloadArchiveRecord
from app.schemas.orders import CustomerRecord, OrderRecord, TimelineEventRecord
from app.schemas.webhooks import DeliveryLogRecord, DeliveryStats, QueueItemRecord, StripeEventLogRecord


@runtime_checkable
class OrderRepository(Protocol):
    async def get(self, order_id: int) -> OrderRecord | None: ...

    async def get_by_number(self, order_number: str) -> OrderRecord | None: ...

    async def find_recent_pending_by_email(self, email: str) -> OrderRecord | None:
        """Most recently created pending order for email (case-insensitive)."""
        ...

    async def find_by_checkout_session(self, session_id: str) -> OrderRecord | None: ...

    async def find_by_invoice(self, invoice_id: str) -> OrderRecord | None: ...

    async def update(self, order_id: int, changes: dict[str, Any]) -> OrderRecord:
        """Apply column changes and return the updated order.

        Raises:
            OrderNotFoundError: If the order vanished
            PersistenceError: On storage failure
        """
        ...

    async def add_timeline_event(self, event: TimelineEventRecord) -> None: ...


@runtime_checkable
class CustomerRepository(Protocol):
    async def get(self, customer_id: int) -> CustomerRecord | None: ...

    async def touch_last_payment(self, customer_id: int, paid_at: datetime) -> None: ...


@runtime_checkable
class SettingsRepository(Protocol):
    async def get_values(self, keys: list[str]) -> dict[str, str]: ...

    async def set_values(self, values: dict[str, str]) -> None: ...


@runtime_checkable
class WebhookQueueRepository(Protocol):
    async def add(self, item: QueueItemRecord) -> QueueItemRecord: ...

    async def claim_due(self, now: datetime, limit: int) -> list[QueueItemRecord]:
        """Oldest-first pending items due at now, flipped to processing."""
        ...

    async def update(self, item_id: int, changes: dict[str, Any]) -> None: ...

    async def list_items(
        self,
        status: str | None = None,
        order_id: int | None = None,
        limit: int = 50,
    ) -> list[QueueItemRecord]: ...

    async def count(self, status: str) -> int: ...


@runtime_checkable
class DeliveryLogRepository(Protocol):
    async def add(self, record: DeliveryLogRecord) -> None: ...

    async def list_for_order(self, order_id: int, limit: int = 50) -> list[DeliveryLogRecord]: ...

    async def summary(self) -> DeliveryStats:
        """Totals over all delivery attempts. pending_queue_items is left at 0."""
        ...


@runtime_checkable
class AuditLogRepository(Protocol):
    async def add_stripe_event(self, record: StripeEventLogRecord) -> None: ...


@runtime_checkable
class DebugLogRepository(Protocol):
    async def add_step(self, record: DebugStepLogRecord) -> None: ...

    async def add_payload_archive(self, record: PayloadArchiveRecord) -> None: ...

    async def failure_analysis(self, order_id: int, limit: int) -> list[DebugHistoryEntry] | None:
        """Rows of the pre-aggregated failure view, or None when the view does not exist."""
        ...

    async def raw_steps(self, order_id: int, limit: int = 1000) -> list[DebugStepLogRecord] | None:
        """Newest-first raw step logs, or None when the debug log table does not exist."""
        ...


@dataclass
class Repositories:
    """Bundle handed to services by the API dependency layer."""

    orders: OrderRepository
    customers: CustomerRepository
    settings: SettingsRepository
    queue: WebhookQueueRepository
    deliveries: DeliveryLogRepository
    audit: AuditLogRepository
    debug_logs: DebugLogRepository
