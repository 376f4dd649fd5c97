"""SQLAlchemy (async) implementations of the repository protocols.

Each repository takes an injected session factory. Driver and ORM errors
are converted to PersistenceError so the service layer sees one transient
failure type.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import OrderNotFoundError, PersistenceError
from app.db.models.admin_setting import AdminSetting
from app.db.models.customer import Customer
from app.db.models.order import Order
from app.db.models.order_timeline import OrderTimelineEvent
from app.db.models.stripe_event_log import StripeEventLog
from app.db.models.webhook_debug_log import WebhookDebugLog, WebhookPayloadArchive
from app.db.models.webhook_delivery_log import WebhookDeliveryLog
from app.db.models.webhook_queue import WebhookQueueItem
from app.repositories.protocols import Repositories
from app.schemas.diagnostics import DebugHistoryEntry, DebugStepLogRecord, PayloadArchiveRecord
from app.schemas.orders import CustomerRecord, OrderRecord, TimelineEventRecord
from app.schemas.webhooks import (
    DeliveryLogRecord,
    DeliveryStats,
    QueueItemRecord,
    QueueStatus,
    StripeEventLogRecord,
)

logger = structlog.get_logger(__name__)

FAILURE_ANALYSIS_VIEW = "webhook_failure_analysis"
DEBUG_LOG_TABLE = WebhookDebugLog.__tablename__


class _SqlRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.warning("persistence_error", operation=operation, error=str(e), error_type=type(e).__name__)
            raise PersistenceError(f"{operation} failed: {e}") from e


class SqlOrderRepository(_SqlRepository):
    async def get(self, order_id: int) -> OrderRecord | None:
        async with self._session("order_get") as session:
            order = await session.get(Order, order_id)
            return OrderRecord.model_validate(order) if order else None

    async def get_by_number(self, order_number: str) -> OrderRecord | None:
        return await self._first("order_get_by_number", Order.order_number == order_number)

    async def find_recent_pending_by_email(self, email: str) -> OrderRecord | None:
        return await self._first(
            "order_find_by_email",
            func.lower(Order.customer_email) == email.lower(),
            Order.payment_status == "pending",
            order_by=Order.created_at.desc(),
        )

    async def find_by_checkout_session(self, session_id: str) -> OrderRecord | None:
        return await self._first("order_find_by_session", Order.stripe_checkout_session_id == session_id)

    async def find_by_invoice(self, invoice_id: str) -> OrderRecord | None:
        return await self._first("order_find_by_invoice", Order.stripe_invoice_id == invoice_id)

    async def _first(self, operation: str, *criteria, order_by=None) -> OrderRecord | None:
        async with self._session(operation) as session:
            query = select(Order).where(*criteria)
            if order_by is not None:
                query = query.order_by(order_by)
            result = await session.execute(query.limit(1))
            order = result.scalar_one_or_none()
            return OrderRecord.model_validate(order) if order else None

    async def update(self, order_id: int, changes: dict[str, Any]) -> OrderRecord:
        async with self._session("order_update") as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            for field, value in changes.items():
                setattr(order, field, value)
            order.updated_at = datetime.now(UTC)
            await session.commit()
            await session.refresh(order)
            return OrderRecord.model_validate(order)

    async def add_timeline_event(self, event: TimelineEventRecord) -> None:
        async with self._session("timeline_insert") as session:
            session.add(OrderTimelineEvent(**event.model_dump(exclude_none=True)))
            await session.commit()


class SqlCustomerRepository(_SqlRepository):
    async def get(self, customer_id: int) -> CustomerRecord | None:
        async with self._session("customer_get") as session:
            customer = await session.get(Customer, customer_id)
            return CustomerRecord.model_validate(customer) if customer else None

    async def touch_last_payment(self, customer_id: int, paid_at: datetime) -> None:
        async with self._session("customer_touch") as session:
            customer = await session.get(Customer, customer_id)
            if customer is None:
                return
            customer.last_payment_at = paid_at
            customer.updated_at = datetime.now(UTC)
            await session.commit()


class SqlSettingsRepository(_SqlRepository):
    async def get_values(self, keys: list[str]) -> dict[str, str]:
        async with self._session("settings_get") as session:
            result = await session.execute(select(AdminSetting).where(AdminSetting.key.in_(keys)))
            return {row.key: row.value for row in result.scalars().all()}

    async def set_values(self, values: dict[str, str]) -> None:
        async with self._session("settings_set") as session:
            for key, value in values.items():
                row = await session.get(AdminSetting, key)
                if row is None:
                    session.add(AdminSetting(key=key, value=value))
                else:
                    row.value = value
            await session.commit()


class SqlWebhookQueueRepository(_SqlRepository):
    async def add(self, item: QueueItemRecord) -> QueueItemRecord:
        async with self._session("queue_insert") as session:
            row = WebhookQueueItem(**item.model_dump(exclude={"id", "created_at"}, exclude_none=True))
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return QueueItemRecord.model_validate(row)

    async def claim_due(self, now: datetime, limit: int) -> list[QueueItemRecord]:
        async with self._session("queue_claim") as session:
            result = await session.execute(
                select(WebhookQueueItem)
                .where(
                    WebhookQueueItem.status == QueueStatus.PENDING.value,
                    WebhookQueueItem.next_retry_at <= now,
                )
                .order_by(WebhookQueueItem.created_at.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            rows = result.scalars().all()
            for row in rows:
                row.status = QueueStatus.PROCESSING.value
            await session.commit()
            return [QueueItemRecord.model_validate(row) for row in rows]

    async def update(self, item_id: int, changes: dict[str, Any]) -> None:
        async with self._session("queue_update") as session:
            row = await session.get(WebhookQueueItem, item_id)
            if row is None:
                return
            for field, value in changes.items():
                setattr(row, field, value)
            await session.commit()

    async def list_items(
        self,
        status: str | None = None,
        order_id: int | None = None,
        limit: int = 50,
    ) -> list[QueueItemRecord]:
        async with self._session("queue_list") as session:
            query = select(WebhookQueueItem)
            if status is not None:
                query = query.where(WebhookQueueItem.status == status)
            if order_id is not None:
                query = query.where(WebhookQueueItem.order_id == order_id)
            result = await session.execute(query.order_by(WebhookQueueItem.created_at.desc()).limit(limit))
            return [QueueItemRecord.model_validate(row) for row in result.scalars().all()]

    async def count(self, status: str) -> int:
        async with self._session("queue_count") as session:
            result = await session.execute(
                select(func.count()).select_from(WebhookQueueItem).where(WebhookQueueItem.status == status)
            )
            return result.scalar_one()


class SqlDeliveryLogRepository(_SqlRepository):
    async def add(self, record: DeliveryLogRecord) -> None:
        async with self._session("delivery_log_insert") as session:
            session.add(WebhookDeliveryLog(**record.model_dump(exclude={"id", "created_at"})))
            await session.commit()

    async def list_for_order(self, order_id: int, limit: int = 50) -> list[DeliveryLogRecord]:
        async with self._session("delivery_log_list") as session:
            result = await session.execute(
                select(WebhookDeliveryLog)
                .where(WebhookDeliveryLog.order_id == order_id)
                .order_by(WebhookDeliveryLog.created_at.desc())
                .limit(limit)
            )
            return [DeliveryLogRecord.model_validate(row) for row in result.scalars().all()]

    async def summary(self) -> DeliveryStats:
        async with self._session("delivery_log_summary") as session:
            result = await session.execute(
                select(
                    func.count(WebhookDeliveryLog.id),
                    func.count(WebhookDeliveryLog.id).filter(WebhookDeliveryLog.success.is_(True)),
                    func.avg(WebhookDeliveryLog.response_time_ms),
                )
            )
            total, successful, avg_ms = result.one()
            return DeliveryStats(
                total_sent=total or 0,
                successful=successful or 0,
                failed=(total or 0) - (successful or 0),
                average_response_time_ms=round(float(avg_ms or 0), 2),
            )


class SqlAuditLogRepository(_SqlRepository):
    async def add_stripe_event(self, record: StripeEventLogRecord) -> None:
        async with self._session("stripe_event_log_insert") as session:
            session.add(StripeEventLog(**record.model_dump(exclude={"created_at"})))
            await session.commit()


class SqlDebugLogRepository(_SqlRepository):
    async def add_step(self, record: DebugStepLogRecord) -> None:
        async with self._session("debug_log_insert") as session:
            session.add(WebhookDebugLog(**record.model_dump(exclude={"created_at"})))
            await session.commit()

    async def add_payload_archive(self, record: PayloadArchiveRecord) -> None:
        async with self._session("payload_archive_insert") as session:
            session.add(WebhookPayloadArchive(**record.model_dump()))
            await session.commit()

    async def _relation_exists(self, session: AsyncSession, name: str, view: bool) -> bool:
        def _probe(sync_session) -> bool:
            inspector = inspect(sync_session.connection())
            if view:
                return name in inspector.get_view_names()
            return inspector.has_table(name)

        return await session.run_sync(_probe)

    async def failure_analysis(self, order_id: int, limit: int) -> list[DebugHistoryEntry] | None:
        async with self._session("failure_analysis_query") as session:
            if not await self._relation_exists(session, FAILURE_ANALYSIS_VIEW, view=True):
                return None
            result = await session.execute(
                text(
                    f"SELECT * FROM {FAILURE_ANALYSIS_VIEW} "
                    "WHERE order_id = :order_id ORDER BY last_attempt DESC LIMIT :limit"
                ),
                {"order_id": order_id, "limit": limit},
            )
            return [DebugHistoryEntry.model_validate(dict(row._mapping)) for row in result]

    async def raw_steps(self, order_id: int, limit: int = 1000) -> list[DebugStepLogRecord] | None:
        async with self._session("debug_log_query") as session:
            if not await self._relation_exists(session, DEBUG_LOG_TABLE, view=False):
                return None
            result = await session.execute(
                select(WebhookDebugLog)
                .where(WebhookDebugLog.order_id == order_id)
                .order_by(WebhookDebugLog.created_at.desc())
                .limit(limit)
            )
            return [
                DebugStepLogRecord.model_validate(row, from_attributes=True)
                for row in result.scalars().all()
            ]


def build_sql_repositories(session_factory: async_sessionmaker[AsyncSession]) -> Repositories:
    return Repositories(
        orders=SqlOrderRepository(session_factory),
        customers=SqlCustomerRepository(session_factory),
        settings=SqlSettingsRepository(session_factory),
        queue=SqlWebhookQueueRepository(session_factory),
        deliveries=SqlDeliveryLogRepository(session_factory),
        audit=SqlAuditLogRepository(session_factory),
        debug_logs=SqlDebugLogRepository(session_factory),
    )
