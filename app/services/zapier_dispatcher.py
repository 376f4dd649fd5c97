"""ZapierDispatcher: signed outbound order notifications with a durable retry queue.

Flow for a notification:
1. Load effective settings; skip (not an error) when disabled or no URL
2. Build the payload per inclusion flags, serialize once, sign the bytes
3. POST immediately and record the attempt in the delivery log
4. On failure enqueue a retry item; process_queue() drains due items later
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from app.core.config import Settings
from app.core.exceptions import OrderNotFoundError, PersistenceError
from app.domain.payload import build_headers, build_payload, serialize_payload
from app.domain.webhook_queue import after_attempt, initial_queue_item
from app.repositories.protocols import Repositories
from app.schemas.orders import OrderRecord
from app.schemas.webhooks import (
    DeliveryLogRecord,
    DeliveryResult,
    DeliveryStats,
    DispatchResult,
    QueueProcessSummary,
    QueueStatus,
    WebhookEventType,
    WebhookInvestigation,
    ZapierSettings,
)
from app.services.zapier_settings import ZapierSettingsService

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def post_payload(
    client: httpx.AsyncClient,
    url: str,
    body: bytes,
    headers: dict[str, str],
    timeout: float,
    body_limit: int,
) -> tuple[DeliveryResult, httpx.Response | None]:
    """POST pre-serialized bytes and capture the outcome. Never raises on HTTP or transport errors."""
    started = time.perf_counter()
    try:
        response = await client.post(url, content=body, headers=headers, timeout=timeout)
    except httpx.HTTPError as e:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return DeliveryResult(
            success=False,
            status_code=0,
            response_time_ms=elapsed_ms,
            error=str(e) or type(e).__name__,
        ), None

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    response_body = response.text[:body_limit]
    success = response.is_success
    return DeliveryResult(
        success=success,
        status_code=response.status_code,
        response_time_ms=elapsed_ms,
        response_body=response_body,
        error=None if success else f"HTTP {response.status_code}: {response_body}",
    ), response


class ZapierDispatcher:
    def __init__(
        self,
        repositories: Repositories,
        settings_service: ZapierSettingsService,
        http_client: httpx.AsyncClient,
        config: Settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repos = repositories
        self.settings_service = settings_service
        self.http_client = http_client
        self.config = config
        self.clock = clock or _utcnow

    async def dispatch(
        self,
        order: OrderRecord,
        event_type: WebhookEventType,
        metadata: dict[str, Any],
        payment: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Deliver one notification now, queueing a retry if the first attempt fails."""
        settings = await self.settings_service.get()
        if not settings.webhook_enabled:
            logger.info("zapier_dispatch_skipped", reason="disabled", order_number=order.order_number)
            return DispatchResult(dispatched=False, skipped_reason="Webhook integration is disabled")
        if not settings.webhook_url:
            logger.info("zapier_dispatch_skipped", reason="no_url", order_number=order.order_number)
            return DispatchResult(dispatched=False, skipped_reason="Webhook URL not configured")

        customer = None
        if settings.include_customer_data and order.customer_id is not None:
            customer = await self.repos.customers.get(order.customer_id)

        payload = build_payload(
            order,
            settings,
            event_type=event_type,
            metadata=metadata,
            customer=customer,
            payment=payment,
            now=self.clock(),
        )
        result = await self._deliver(order.id, settings.webhook_url, payload, settings, retry_count=0)

        if result.success:
            logger.info(
                "zapier_webhook_delivered",
                order_number=order.order_number,
                event_type=str(event_type),
                status_code=result.status_code,
                response_time_ms=result.response_time_ms,
            )
            return DispatchResult(dispatched=True, delivered=True, status_code=result.status_code)

        item = initial_queue_item(
            order_id=order.id,
            webhook_url=settings.webhook_url,
            payload=payload,
            event_type=event_type,
            retry_attempts=settings.webhook_retry_attempts,
            retry_delay=settings.webhook_retry_delay,
            error_message=result.error,
            now=self.clock(),
            cap=self.config.webhook_max_retry_delay_seconds,
        )
        stored = await self.repos.queue.add(item)
        logger.warning(
            "zapier_webhook_queued",
            order_number=order.order_number,
            event_type=str(event_type),
            queue_item_id=stored.id,
            queue_status=str(stored.status),
            next_retry_at=stored.next_retry_at.isoformat() if stored.next_retry_at else None,
            error=result.error,
        )
        return DispatchResult(
            dispatched=True,
            queued=stored.status == QueueStatus.PENDING,
            queue_item_id=stored.id,
            status_code=result.status_code,
            error=result.error,
        )

    async def trigger_payment_link_created(self, order_id: int, metadata: dict[str, Any]) -> DispatchResult:
        order = await self.repos.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return await self.dispatch(order, WebhookEventType.PAYMENT_LINK_CREATED, metadata)

    async def trigger_order_completed(
        self,
        order_id: int,
        payment: dict[str, Any],
        metadata: dict[str, Any],
    ) -> DispatchResult:
        order = await self.repos.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return await self.dispatch(order, WebhookEventType.ORDER_COMPLETED, metadata, payment=payment)

    async def process_queue(self) -> QueueProcessSummary:
        """Drain due pending items, oldest first, up to the batch size.

        One bad item never stops the batch: unexpected errors mark that item failed.
        """
        now = self.clock()
        settings = await self.settings_service.get()
        items = await self.repos.queue.claim_due(now, self.config.webhook_queue_batch_size)
        summary = QueueProcessSummary()

        for item in items:
            summary.processed += 1
            try:
                result = await self._deliver(
                    item.order_id, item.webhook_url, item.payload, settings, retry_count=item.attempts
                )
                changes = after_attempt(
                    item,
                    success=result.success,
                    error_message=result.error,
                    retry_delay=settings.webhook_retry_delay,
                    now=self.clock(),
                    cap=self.config.webhook_max_retry_delay_seconds,
                )
                await self.repos.queue.update(item.id, changes)
            except Exception as e:
                logger.error(
                    "webhook_queue_item_error",
                    queue_item_id=item.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await self._mark_failed(item.id, str(e))
                summary.failed += 1
                continue

            if changes["status"] == QueueStatus.COMPLETED:
                summary.succeeded += 1
            elif changes["status"] == QueueStatus.FAILED:
                summary.failed += 1
                logger.warning("webhook_queue_item_exhausted", queue_item_id=item.id, attempts=changes["attempts"])
            else:
                summary.rescheduled += 1

        if items:
            logger.info("webhook_queue_processed", **summary.model_dump())
        return summary

    async def _mark_failed(self, item_id: int | None, message: str) -> None:
        if item_id is None:
            return
        try:
            await self.repos.queue.update(
                item_id,
                {"status": QueueStatus.FAILED.value, "failed_at": self.clock(), "error_message": message},
            )
        except PersistenceError as e:
            logger.error("webhook_queue_mark_failed_error", queue_item_id=item_id, error=str(e))

    async def _deliver(
        self,
        order_id: int,
        url: str,
        payload: dict[str, Any],
        settings: ZapierSettings,
        retry_count: int,
    ) -> DeliveryResult:
        body = serialize_payload(payload)
        headers = build_headers(body, self.config.webhook_user_agent, secret=settings.webhook_secret or None)
        result, _ = await post_payload(
            self.http_client,
            url,
            body,
            headers,
            timeout=settings.webhook_timeout,
            body_limit=self.config.webhook_response_body_limit,
        )
        await self._record(order_id, url, payload, result, retry_count)
        return result

    async def _record(
        self,
        order_id: int,
        url: str,
        payload: dict[str, Any],
        result: DeliveryResult,
        retry_count: int,
    ) -> None:
        try:
            await self.repos.deliveries.add(DeliveryLogRecord(
                order_id=order_id,
                webhook_url=url,
                payload=payload,
                response_status=result.status_code,
                response_body=result.response_body,
                response_time_ms=result.response_time_ms,
                success=result.success,
                error_message=result.error,
                retry_count=retry_count,
            ))
        except PersistenceError as e:
            logger.error("webhook_delivery_log_failed", order_id=order_id, error=str(e))

    async def stats(self) -> DeliveryStats:
        summary = await self.repos.deliveries.summary()
        summary.pending_queue_items = await self.repos.queue.count(QueueStatus.PENDING.value)
        return summary

    async def investigate(self, order_number: str) -> WebhookInvestigation:
        """Per-order view of delivery attempts, queue items and config for operators."""
        order = await self.repos.orders.get_by_number(order_number)
        if order is None:
            raise OrderNotFoundError(order_number)

        logs = await self.repos.deliveries.list_for_order(order.id)
        queue_items = await self.repos.queue.list_items(order_id=order.id)
        settings = await self.settings_service.get()

        last_attempt = None
        if logs:
            last_attempt = logs[0].created_at
        elif queue_items:
            last_attempt = queue_items[0].created_at

        analysis = {
            "total_attempts": len(logs),
            "successful_deliveries": sum(1 for log in logs if log.success),
            "failed_deliveries": sum(1 for log in logs if not log.success),
            "pending_deliveries": sum(1 for i in queue_items if i.status == QueueStatus.PENDING),
            "failed_queue_items": sum(1 for i in queue_items if i.status == QueueStatus.FAILED),
            "last_attempt": last_attempt.isoformat() if last_attempt else None,
            "last_error": next((log.error_message for log in logs if not log.success), None),
            "average_response_time_ms": (
                round(sum(log.response_time_ms for log in logs) / len(logs), 2) if logs else 0.0
            ),
        }
        return WebhookInvestigation(
            order_id=order.id,
            order_number=order.order_number,
            payment_status=order.payment_status,
            payment_link_url=order.payment_link_url,
            config={
                "enabled": settings.webhook_enabled,
                "url": settings.webhook_url,
                "has_webhook_secret": bool(settings.webhook_secret),
            },
            delivery_logs=logs,
            queue_items=queue_items,
            analysis=analysis,
        )
