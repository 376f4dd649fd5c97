"""StripeEventProcessor: applies verified Stripe events to orders.

Response contract (Stripe retries anything that is not 2xx):
- Handled, duplicate or unknown order -> 200 (acknowledged, never retried)
- Order payment update still failing after local retries -> 500
- Side effects (timeline, customer touch, outbound notification, audit log)
  are best-effort and never change the response.

Idempotency comes from state checks (already paid with the same session id),
not from locks. Two deliveries racing past the check can both notify downstream.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from app.core.config import Settings
from app.core.exceptions import OrderUpdateRetriesExhaustedError, PersistenceError
from app.domain.order_lookup import resolve_order
from app.domain.orders import is_duplicate_checkout, is_paid, paid_changes
from app.repositories.protocols import Repositories
from app.schemas.orders import OrderRecord, PaymentStatus, TimelineEventRecord
from app.schemas.webhooks import StripeEventLogRecord
from app.services.zapier_dispatcher import ZapierDispatcher

logger = structlog.get_logger(__name__)

TIMELINE_ACTOR = "stripe_webhook"


class WebhookOutcome(BaseModel):
    status_code: int = 200
    body: dict[str, Any] = Field(default_factory=lambda: {"received": True})


def _received(**extra: Any) -> WebhookOutcome:
    return WebhookOutcome(body={"received": True, **extra})


def _amount(cents: int | None) -> float | None:
    return round(cents / 100, 2) if cents is not None else None


class StripeEventProcessor:
    def __init__(
        self,
        repositories: Repositories,
        dispatcher: ZapierDispatcher,
        config: Settings,
        wait: wait_base | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repos = repositories
        self.dispatcher = dispatcher
        self.config = config
        self.wait = wait or wait_exponential(
            multiplier=config.order_update_backoff_multiplier,
            min=config.order_update_backoff_multiplier,
            max=config.order_update_backoff_max,
        )
        self.clock = clock or (lambda: datetime.now(UTC))
        self._handlers: dict[str, Callable[[dict, dict], Awaitable[WebhookOutcome]]] = {
            "checkout.session.completed": self._checkout_completed,
            "checkout.session.expired": self._checkout_expired,
            "invoice.payment_succeeded": self._invoice_payment_succeeded,
            "invoice.payment_failed": self._invoice_payment_failed,
            "invoice.finalized": self._invoice_finalized,
        }

    async def handle(self, event: dict[str, Any]) -> WebhookOutcome:
        event_type = event["type"]
        obj = event["data"]["object"]
        logger.info("stripe_webhook_received", event_type=event_type, event_id=event.get("id"))

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("stripe_event_unhandled", event_type=event_type)
            await self._audit(event, None, "warning", f"Unhandled event type: {event_type}")
            return _received()
        return await handler(event, obj)

    # ── Order update with bounded retries ───────────────────────────

    async def _mark_paid(self, order: OrderRecord, changes: dict[str, Any]) -> tuple[OrderRecord, int]:
        """Write the paid transition: 1 original + (max_attempts - 1) retries on PersistenceError.

        Raises:
            OrderUpdateRetriesExhaustedError: If every attempt failed
        """
        attempts = 0
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(PersistenceError),
            stop=stop_after_attempt(self.config.order_update_max_attempts),
            wait=self.wait,
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "order_update_retrying",
                order_number=order.order_number,
                attempt=rs.attempt_number,
                sleep_seconds=rs.next_action.sleep,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    updated = await self.repos.orders.update(order.id, changes)
        except PersistenceError as e:
            logger.error(
                "order_update_failed",
                order_number=order.order_number,
                attempts=attempts,
                error=str(e),
            )
            raise OrderUpdateRetriesExhaustedError(order.order_number, attempts) from e

        logger.info("order_marked_paid", order_number=order.order_number, attempts=attempts)
        return updated, attempts

    # ── Handlers ────────────────────────────────────────────────────

    async def _checkout_completed(self, event: dict, session: dict) -> WebhookOutcome:
        session_id = session.get("id")
        if session.get("mode") != "payment":
            logger.info("checkout_session_ignored", session_id=session_id, mode=session.get("mode"))
            return _received()

        # A redelivered session must not fall through to another pending order
        if session_id:
            already_paid = await self.repos.orders.find_by_checkout_session(session_id)
            if already_paid is not None and is_duplicate_checkout(already_paid, session_id):
                logger.info(
                    "stripe_duplicate_payment_ignored",
                    order_number=already_paid.order_number,
                    session_id=session_id,
                )
                await self._audit(event, already_paid.order_number, "warning", "Duplicate delivery, order already paid")
                return _received(duplicate=True)

        lookup = await resolve_order(self.repos.orders, session)
        if lookup is None:
            logger.error("stripe_order_not_found", session_id=session_id, event_id=event.get("id"))
            await self._audit(
                event,
                (session.get("metadata") or {}).get("order_number"),
                "error",
                f"Order not found for checkout session {session_id}",
                {"session_id": session_id},
            )
            return _received(error="Order not found", session_id=session_id)

        order = lookup.order
        if is_duplicate_checkout(order, session_id):
            logger.info("stripe_duplicate_payment_ignored", order_number=order.order_number, session_id=session_id)
            await self._audit(event, order.order_number, "warning", "Duplicate delivery, order already paid")
            return _received(duplicate=True)

        paid_at = self.clock()
        changes = paid_changes(
            paid_at,
            payment_intent_id=session.get("payment_intent"),
            checkout_session_id=session_id,
        )
        try:
            order, attempts = await self._mark_paid(order, changes)
        except OrderUpdateRetriesExhaustedError as e:
            await self._audit(event, order.order_number, "error", str(e), {"session_id": session_id})
            return WebhookOutcome(
                status_code=500,
                body={"error": "Database update failed", "order_number": order.order_number, "session_id": session_id},
            )

        amount_paid = _amount(session.get("amount_total"))
        await self._timeline(order, "payment_completed", "Payment completed via Stripe payment link", {
            "checkout_session_id": session_id,
            "payment_intent_id": session.get("payment_intent"),
            "amount_paid": amount_paid,
            "currency": session.get("currency"),
            "lookup_method": lookup.strategy,
            "update_attempts": attempts,
        })
        await self._touch_customer(order, paid_at)
        await self._notify_completed(
            order,
            payment={
                "method": "stripe_checkout",
                "amount_paid": amount_paid,
                "paid_at": paid_at.isoformat(),
                "stripe_payment_intent_id": session.get("payment_intent"),
            },
            trigger="checkout_session_completed",
        )
        await self._audit(
            event,
            order.order_number,
            "success",
            f"Order marked as paid via {lookup.strategy}",
            {"session_id": session_id, "order_id": order.id, "update_attempts": attempts},
        )
        return _received()

    async def _checkout_expired(self, event: dict, session: dict) -> WebhookOutcome:
        session_id = session.get("id")
        order_number = (session.get("metadata") or {}).get("order_number")
        await self._audit(event, order_number, "warning", f"Checkout session expired: {session_id}")

        if order_number:
            lookup = await resolve_order(self.repos.orders, session)
            if lookup is not None:
                await self._timeline(
                    lookup.order,
                    "payment_link_expired",
                    "Payment link expired without completion",
                    {"checkout_session_id": session_id, "expired_at": self.clock().isoformat()},
                )
        return _received()

    async def _find_invoice_order(self, invoice: dict) -> OrderRecord | None:
        order = await self.repos.orders.find_by_invoice(invoice.get("id"))
        if order is None:
            order_number = (invoice.get("metadata") or {}).get("order_number")
            if order_number:
                order = await self.repos.orders.get_by_number(order_number)
        return order

    async def _invoice_payment_succeeded(self, event: dict, invoice: dict) -> WebhookOutcome:
        invoice_id = invoice.get("id")
        order = await self._find_invoice_order(invoice)
        if order is None:
            logger.error("stripe_order_not_found", invoice_id=invoice_id, event_id=event.get("id"))
            await self._audit(event, None, "error", f"Order not found for invoice {invoice_id}", {"invoice_id": invoice_id})
            return _received(error="Order not found", invoice_id=invoice_id)

        if is_paid(order):
            logger.info("stripe_duplicate_payment_ignored", order_number=order.order_number, invoice_id=invoice_id)
            await self._audit(event, order.order_number, "warning", "Duplicate delivery, order already paid")
            return _received(duplicate=True)

        paid_at = self.clock()
        changes = paid_changes(paid_at, payment_intent_id=invoice.get("payment_intent"), invoice_id=invoice_id)
        try:
            order, attempts = await self._mark_paid(order, changes)
        except OrderUpdateRetriesExhaustedError as e:
            await self._audit(event, order.order_number, "error", str(e), {"invoice_id": invoice_id})
            return WebhookOutcome(
                status_code=500,
                body={"error": "Database update failed", "order_number": order.order_number, "invoice_id": invoice_id},
            )

        amount_paid = _amount(invoice.get("amount_paid"))
        await self._timeline(order, "payment_received", "Payment received via Stripe invoice", {
            "invoice_id": invoice_id,
            "amount_paid": amount_paid,
            "update_attempts": attempts,
        })
        await self._touch_customer(order, paid_at)
        await self._notify_completed(
            order,
            payment={
                "method": "stripe_invoice",
                "amount_paid": amount_paid,
                "paid_at": paid_at.isoformat(),
                "stripe_invoice_id": invoice_id,
            },
            trigger="invoice_payment_succeeded",
        )
        await self._audit(event, order.order_number, "success", "Order marked as paid via invoice", {"invoice_id": invoice_id})
        return _received()

    async def _invoice_payment_failed(self, event: dict, invoice: dict) -> WebhookOutcome:
        invoice_id = invoice.get("id")
        order = await self._find_invoice_order(invoice)
        if order is None:
            await self._audit(event, None, "error", f"Order not found for invoice {invoice_id}", {"invoice_id": invoice_id})
            return _received(error="Order not found", invoice_id=invoice_id)

        if is_paid(order):
            logger.warning("payment_failed_ignored_for_paid_order", order_number=order.order_number, invoice_id=invoice_id)
            await self._audit(event, order.order_number, "warning", "Payment failure ignored, order already paid")
            return _received()

        outcome = await self._apply(order, {"payment_status": PaymentStatus.FAILED.value}, invoice_id=invoice_id)
        if outcome is not None:
            return outcome

        await self._timeline(order, "payment_failed", "Payment failed for Stripe invoice", {
            "invoice_id": invoice_id,
            "attempt_count": invoice.get("attempt_count"),
            "amount_due": _amount(invoice.get("amount_due")),
        })
        await self._audit(event, order.order_number, "warning", "Invoice payment failed", {"invoice_id": invoice_id})
        return _received()

    async def _invoice_finalized(self, event: dict, invoice: dict) -> WebhookOutcome:
        invoice_id = invoice.get("id")
        order = await self._find_invoice_order(invoice)
        if order is None:
            await self._audit(event, None, "error", f"Order not found for invoice {invoice_id}", {"invoice_id": invoice_id})
            return _received(error="Order not found", invoice_id=invoice_id)

        changes = {
            "stripe_invoice_id": invoice_id,
            "stripe_invoice_url": invoice.get("hosted_invoice_url"),
            "stripe_invoice_pdf": invoice.get("invoice_pdf"),
        }
        outcome = await self._apply(order, changes, invoice_id=invoice_id)
        if outcome is not None:
            return outcome

        await self._timeline(order, "invoice_finalized", "Stripe invoice finalized and ready for payment", {
            "invoice_id": invoice_id,
            "hosted_invoice_url": invoice.get("hosted_invoice_url"),
        })
        await self._audit(event, order.order_number, "success", "Invoice finalized", {"invoice_id": invoice_id})
        return _received()

    async def _apply(self, order: OrderRecord, changes: dict[str, Any], **context: Any) -> WebhookOutcome | None:
        """Single write for non-payment transitions. Returns a 500 outcome on failure."""
        try:
            await self.repos.orders.update(order.id, changes)
        except PersistenceError as e:
            logger.error("order_update_failed", order_number=order.order_number, error=str(e), **context)
            return WebhookOutcome(
                status_code=500,
                body={"error": "Database update failed", "order_number": order.order_number, **context},
            )
        return None

    # ── Best-effort side effects ────────────────────────────────────

    async def _timeline(self, order: OrderRecord, event_type: str, description: str, data: dict[str, Any]) -> None:
        try:
            await self.repos.orders.add_timeline_event(TimelineEventRecord(
                order_id=order.id,
                event_type=event_type,
                event_description=description,
                event_data=data,
                created_by=TIMELINE_ACTOR,
            ))
        except Exception as e:
            logger.warning("timeline_event_failed", order_number=order.order_number, event_type=event_type, error=str(e))

    async def _touch_customer(self, order: OrderRecord, paid_at: datetime) -> None:
        if order.customer_id is None:
            return
        try:
            await self.repos.customers.touch_last_payment(order.customer_id, paid_at)
        except Exception as e:
            logger.warning("customer_touch_failed", order_number=order.order_number, error=str(e))

    async def _notify_completed(self, order: OrderRecord, payment: dict[str, Any], trigger: str) -> None:
        try:
            result = await self.dispatcher.trigger_order_completed(
                order.id,
                payment=payment,
                metadata={"source": TIMELINE_ACTOR, "trigger": trigger},
            )
        except Exception as e:
            logger.warning(
                "order_completed_webhook_failed",
                order_number=order.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        if result.dispatched and not result.delivered:
            logger.warning("order_completed_webhook_deferred", order_number=order.order_number, error=result.error)

    async def _audit(
        self,
        event: dict,
        order_number: str | None,
        status: str,
        message: str,
        debug_data: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self.repos.audit.add_stripe_event(StripeEventLogRecord(
                event_type=event.get("type", "unknown"),
                event_id=event.get("id"),
                order_number=order_number,
                status=status,
                message=message,
                debug_data=debug_data,
            ))
        except Exception as e:
            logger.warning("stripe_event_audit_failed", event_id=event.get("id"), error=str(e))
