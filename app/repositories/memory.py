"""In-memory repository implementations.

Deterministic test doubles for the repository protocols, also usable for
local runs without PostgreSQL. Records are copied on the way in and out so
callers never share mutable state with the store.
"""

from datetime import UTC, datetime
from typing import Any

from app.core.exceptions import OrderNotFoundError
from app.repositories.protocols import Repositories
from app.schemas.diagnostics import DebugHistoryEntry, DebugStepLogRecord, PayloadArchiveRecord
from app.schemas.orders import CustomerRecord, OrderRecord, PaymentStatus, TimelineEventRecord
from app.schemas.webhooks import (
    DeliveryLogRecord,
    DeliveryStats,
    QueueItemRecord,
    QueueStatus,
    StripeEventLogRecord,
)

_EPOCH = datetime.min.replace(tzinfo=UTC)


class InMemoryOrderRepository:
    def __init__(self, orders: list[OrderRecord] | None = None):
        self.orders: dict[int, OrderRecord] = {o.id: o.model_copy(deep=True) for o in orders or []}
        self.timeline: list[TimelineEventRecord] = []
        self.update_calls = 0

    async def get(self, order_id: int) -> OrderRecord | None:
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def get_by_number(self, order_number: str) -> OrderRecord | None:
        return self._first(lambda o: o.order_number == order_number)

    async def find_recent_pending_by_email(self, email: str) -> OrderRecord | None:
        matches = [
            o for o in self.orders.values()
            if (o.customer_email or "").lower() == email.lower() and o.payment_status == PaymentStatus.PENDING
        ]
        if not matches:
            return None
        newest = max(matches, key=lambda o: o.created_at or _EPOCH)
        return newest.model_copy(deep=True)

    async def find_by_checkout_session(self, session_id: str) -> OrderRecord | None:
        return self._first(lambda o: o.stripe_checkout_session_id == session_id)

    async def find_by_invoice(self, invoice_id: str) -> OrderRecord | None:
        return self._first(lambda o: o.stripe_invoice_id == invoice_id)

    def _first(self, predicate) -> OrderRecord | None:
        for order in self.orders.values():
            if predicate(order):
                return order.model_copy(deep=True)
        return None

    async def update(self, order_id: int, changes: dict[str, Any]) -> OrderRecord:
        self.update_calls += 1
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        updated = order.model_copy(update={**changes, "updated_at": datetime.now(UTC)}, deep=True)
        self.orders[order_id] = updated
        return updated.model_copy(deep=True)

    async def add_timeline_event(self, event: TimelineEventRecord) -> None:
        self.timeline.append(event.model_copy(update={"created_at": event.created_at or datetime.now(UTC)}))

    def events_for(self, order_id: int) -> list[str]:
        return [e.event_type for e in self.timeline if e.order_id == order_id]


class InMemoryCustomerRepository:
    def __init__(self, customers: list[CustomerRecord] | None = None):
        self.customers: dict[int, CustomerRecord] = {c.id: c.model_copy() for c in customers or []}

    async def get(self, customer_id: int) -> CustomerRecord | None:
        customer = self.customers.get(customer_id)
        return customer.model_copy() if customer else None

    async def touch_last_payment(self, customer_id: int, paid_at: datetime) -> None:
        customer = self.customers.get(customer_id)
        if customer is not None:
            self.customers[customer_id] = customer.model_copy(update={"last_payment_at": paid_at})


class InMemorySettingsRepository:
    def __init__(self, values: dict[str, str] | None = None):
        self.values: dict[str, str] = dict(values or {})

    async def get_values(self, keys: list[str]) -> dict[str, str]:
        return {k: self.values[k] for k in keys if k in self.values}

    async def set_values(self, values: dict[str, str]) -> None:
        self.values.update(values)


class InMemoryWebhookQueueRepository:
    def __init__(self):
        self.items: dict[int, QueueItemRecord] = {}
        self._next_id = 1

    async def add(self, item: QueueItemRecord) -> QueueItemRecord:
        stored = item.model_copy(
            update={"id": self._next_id, "created_at": item.created_at or datetime.now(UTC)},
            deep=True,
        )
        self.items[self._next_id] = stored
        self._next_id += 1
        return stored.model_copy(deep=True)

    async def claim_due(self, now: datetime, limit: int) -> list[QueueItemRecord]:
        due = [
            i for i in self.items.values()
            if i.status == QueueStatus.PENDING and i.next_retry_at is not None and i.next_retry_at <= now
        ]
        due.sort(key=lambda i: (i.created_at or _EPOCH, i.id))
        claimed = []
        for item in due[:limit]:
            item.status = QueueStatus.PROCESSING
            claimed.append(item.model_copy(deep=True))
        return claimed

    async def update(self, item_id: int, changes: dict[str, Any]) -> None:
        item = self.items.get(item_id)
        if item is not None:
            self.items[item_id] = item.model_copy(update=changes, deep=True)

    async def list_items(
        self,
        status: str | None = None,
        order_id: int | None = None,
        limit: int = 50,
    ) -> list[QueueItemRecord]:
        items = [
            i for i in self.items.values()
            if (status is None or i.status == status) and (order_id is None or i.order_id == order_id)
        ]
        items.sort(key=lambda i: (i.created_at or _EPOCH, i.id), reverse=True)
        return [i.model_copy(deep=True) for i in items[:limit]]

    async def count(self, status: str) -> int:
        return sum(1 for i in self.items.values() if i.status == status)


class InMemoryDeliveryLogRepository:
    def __init__(self):
        self.records: list[DeliveryLogRecord] = []

    async def add(self, record: DeliveryLogRecord) -> None:
        self.records.append(record.model_copy(
            update={"id": len(self.records) + 1, "created_at": record.created_at or datetime.now(UTC)},
        ))

    async def list_for_order(self, order_id: int, limit: int = 50) -> list[DeliveryLogRecord]:
        matching = [r for r in reversed(self.records) if r.order_id == order_id]
        return matching[:limit]

    async def summary(self) -> DeliveryStats:
        total = len(self.records)
        successful = sum(1 for r in self.records if r.success)
        average = sum(r.response_time_ms for r in self.records) / total if total else 0.0
        return DeliveryStats(
            total_sent=total,
            successful=successful,
            failed=total - successful,
            average_response_time_ms=round(average, 2),
        )


class InMemoryAuditLogRepository:
    def __init__(self):
        self.stripe_events: list[StripeEventLogRecord] = []

    async def add_stripe_event(self, record: StripeEventLogRecord) -> None:
        self.stripe_events.append(record)


class InMemoryDebugLogRepository:
    """Debug log store with switchable capabilities.

    view_rows=None simulates a database without the failure-analysis view;
    table_present=False simulates a database without the raw debug log table.
    """

    def __init__(self, view_rows: list[DebugHistoryEntry] | None = None, table_present: bool = True):
        self.view_rows = view_rows
        self.table_present = table_present
        self.steps: list[DebugStepLogRecord] = []
        self.archives: list[PayloadArchiveRecord] = []

    async def add_step(self, record: DebugStepLogRecord) -> None:
        self.steps.append(record.model_copy(update={"created_at": record.created_at or datetime.now(UTC)}))

    async def add_payload_archive(self, record: PayloadArchiveRecord) -> None:
        self.archives.append(record)

    async def failure_analysis(self, order_id: int, limit: int) -> list[DebugHistoryEntry] | None:
        if self.view_rows is None:
            return None
        rows = [r for r in self.view_rows if r.order_id == order_id]
        return rows[:limit]

    async def raw_steps(self, order_id: int, limit: int = 1000) -> list[DebugStepLogRecord] | None:
        if not self.table_present:
            return None
        rows = [s for s in self.steps if s.order_id == order_id]
        rows.sort(key=lambda s: s.created_at or _EPOCH, reverse=True)
        return rows[:limit]


def build_memory_repositories(
    orders: list[OrderRecord] | None = None,
    customers: list[CustomerRecord] | None = None,
    settings: dict[str, str] | None = None,
) -> Repositories:
    return Repositories(
        orders=InMemoryOrderRepository(orders),
        customers=InMemoryCustomerRepository(customers),
        settings=InMemorySettingsRepository(settings),
        queue=InMemoryWebhookQueueRepository(),
        deliveries=InMemoryDeliveryLogRepository(),
        audit=InMemoryAuditLogRepository(),
        debug_logs=InMemoryDebugLogRepository(),
    )
