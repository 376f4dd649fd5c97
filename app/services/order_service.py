"""OrderService: admin-side order actions that interact with the webhook layer.

- Payment link creation locks the order and announces it downstream
- Item/address edits are refused once an order is paid or locked
- Manual re-trigger of either outbound notification
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from app.core.exceptions import OrderLockedError, OrderNotFoundError, WebhookPreconditionError
from app.domain.orders import ensure_modifiable, is_paid, payment_link_changes
from app.repositories.protocols import OrderRepository
from app.schemas.orders import OrderModification, OrderRecord, TimelineEventRecord
from app.schemas.webhooks import DispatchResult, WebhookEventType
from app.services.zapier_dispatcher import ZapierDispatcher

logger = structlog.get_logger(__name__)


class OrderService:
    def __init__(
        self,
        orders: OrderRepository,
        dispatcher: ZapierDispatcher,
        clock: Callable[[], datetime] | None = None,
    ):
        self.orders = orders
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(UTC))

    async def _require(self, order_id: int) -> OrderRecord:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _timeline(
        self, order: OrderRecord, event_type: str, description: str, data: dict[str, Any], actor: str
    ) -> None:
        try:
            await self.orders.add_timeline_event(TimelineEventRecord(
                order_id=order.id,
                event_type=event_type,
                event_description=description,
                event_data=data,
                created_by=actor,
            ))
        except Exception as e:
            logger.warning("timeline_event_failed", order_number=order.order_number, event_type=event_type, error=str(e))

    async def lock_for_payment_link(self, order_id: int, url: str, reason: str, actor: str = "admin") -> OrderRecord:
        """Attach a payment link, lock the order and notify downstream (best-effort).

        Raises:
            OrderNotFoundError: Unknown order
            OrderLockedError: Order already paid
        """
        order = await self._require(order_id)
        if is_paid(order):
            raise OrderLockedError(order.order_number, "order has been paid")

        updated = await self.orders.update(order_id, payment_link_changes(url, reason, self.clock()))
        logger.info("order_locked_for_payment_link", order_number=updated.order_number, actor=actor)

        await self._timeline(
            updated,
            "payment_link_created",
            "Payment link created and order locked",
            {"payment_link_url": url, "reason": reason},
            actor,
        )

        try:
            await self.dispatcher.dispatch(
                updated,
                WebhookEventType.PAYMENT_LINK_CREATED,
                metadata={"source": "admin_panel", "created_via": "payment_link"},
            )
        except Exception as e:
            logger.warning(
                "payment_link_webhook_failed",
                order_number=updated.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
        return updated

    async def modify_order(self, order_id: int, modification: OrderModification, actor: str = "admin") -> OrderRecord:
        """Apply an item/address edit.

        Raises:
            OrderNotFoundError: Unknown order
            OrderLockedError: Order paid or locked
        """
        order = await self._require(order_id)
        ensure_modifiable(order)

        changes = modification.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return order

        updated = await self.orders.update(order_id, changes)
        await self._timeline(updated, "order_modified", "Order details modified", {"fields": sorted(changes)}, actor)
        logger.info("order_modified", order_number=updated.order_number, fields=sorted(changes))
        return updated

    async def trigger_webhook(self, order_number: str, webhook_type: WebhookEventType) -> DispatchResult:
        """Manually fire a notification for an order.

        payment_link_created needs a payment link; order_completed needs a paid order.

        Raises:
            OrderNotFoundError: Unknown order number
            WebhookPreconditionError: Order not in a state that fits the notification
        """
        order = await self.orders.get_by_number(order_number)
        if order is None:
            raise OrderNotFoundError(order_number)

        metadata: dict[str, Any] = {"source": "admin_manual_trigger", "trigger": "manual"}
        if webhook_type == WebhookEventType.PAYMENT_LINK_CREATED:
            if not order.payment_link_url:
                raise WebhookPreconditionError("Order has no payment link")
            metadata["created_via"] = "manual"
            result = await self.dispatcher.dispatch(order, webhook_type, metadata)
        else:
            if not is_paid(order):
                raise WebhookPreconditionError("Order has not been paid")
            payment = {
                "method": "stripe",
                "amount_paid": order.total_amount,
                "paid_at": order.paid_at.isoformat() if order.paid_at else None,
                "stripe_payment_intent_id": order.stripe_payment_intent_id,
                "stripe_invoice_id": order.stripe_invoice_id,
            }
            result = await self.dispatcher.dispatch(order, webhook_type, metadata, payment=payment)

        logger.info(
            "webhook_manually_triggered",
            order_number=order_number,
            webhook_type=str(webhook_type),
            delivered=result.delivered,
            queued=result.queued,
        )
        return result
