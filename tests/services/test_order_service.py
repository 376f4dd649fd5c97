"""Tests for OrderService: payment-link locking, edit guard and manual notifications."""

import json

import pytest

from app.core.exceptions import OrderLockedError, OrderNotFoundError, PersistenceError, WebhookPreconditionError
from app.repositories.memory import InMemoryOrderRepository
from app.schemas.orders import OrderModification
from app.schemas.webhooks import WebhookEventType
from app.services.order_service import OrderService
from app.services.zapier_dispatcher import ZapierDispatcher

pytestmark = pytest.mark.unit


@pytest.fixture
def service(repos, dispatcher, clock):
    return OrderService(repos.orders, dispatcher, clock=clock)


class TestPaymentLink:
    async def test_locks_order_and_notifies(self, service, repos, http_handler, now):
        order = await service.lock_for_payment_link(1, "https://buy.stripe.com/new", "Quote accepted")

        assert order.order_locked is True
        assert order.order_locked_reason == "Quote accepted"
        assert order.payment_link_url == "https://buy.stripe.com/new"
        assert order.payment_link_created_at == now
        assert repos.orders.events_for(1) == ["payment_link_created"]

        sent = json.loads(http_handler.posts[0].content)
        assert sent["event_type"] == "payment_link_created"
        assert sent["order"]["payment_link_url"] == "https://buy.stripe.com/new"
        assert sent["metadata"]["source"] == "admin_panel"

    async def test_paid_order_is_refused(self, repos, dispatcher, make_order, http_handler):
        orders = InMemoryOrderRepository([make_order(payment_status="paid")])
        service = OrderService(orders, dispatcher)

        with pytest.raises(OrderLockedError):
            await service.lock_for_payment_link(1, "https://buy.stripe.com/new", "again")

        assert orders.update_calls == 0
        assert http_handler.posts == []

    async def test_unknown_order(self, service):
        with pytest.raises(OrderNotFoundError):
            await service.lock_for_payment_link(99, "https://buy.stripe.com/x", "r")

    async def test_timeline_failure_still_notifies(self, repos, dispatcher, make_order, http_handler):
        class TimelineDownOrderRepository(InMemoryOrderRepository):
            async def add_timeline_event(self, event):
                raise PersistenceError("order_timeline is locked")

        repos.orders = TimelineDownOrderRepository([make_order()])
        service = OrderService(repos.orders, dispatcher)

        order = await service.lock_for_payment_link(1, "https://buy.stripe.com/new", "Quote accepted")

        assert order.order_locked is True
        assert (await repos.orders.get(1)).order_locked is True
        assert json.loads(http_handler.posts[0].content)["event_type"] == "payment_link_created"

    async def test_downstream_failure_keeps_lock(self, repos, config, clock, scripted_http, settings_service):
        client, handler = scripted_http(500)
        service = OrderService(repos.orders, ZapierDispatcher(repos, settings_service, client, config, clock=clock))

        order = await service.lock_for_payment_link(1, "https://buy.stripe.com/new", "r")

        assert order.order_locked is True
        assert len(handler.posts) == 1
        assert await repos.queue.count("pending") == 1


class TestModifyOrder:
    async def test_pending_order_can_be_edited(self, service, repos):
        order = await service.modify_order(1, OrderModification(shipping_city="Raleigh"))

        assert order.shipping_city == "Raleigh"
        assert repos.orders.timeline[-1].event_data == {"fields": ["shipping_city"]}

    async def test_locked_order_cannot_be_edited(self, service, repos):
        await service.lock_for_payment_link(1, "https://buy.stripe.com/new", "Payment link created")
        calls = repos.orders.update_calls

        with pytest.raises(OrderLockedError):
            await service.modify_order(1, OrderModification(items=[{"weight": 25, "quantity": 2, "price": 70}]))

        assert repos.orders.update_calls == calls

    async def test_empty_edit_is_a_no_op(self, service, repos):
        await service.modify_order(1, OrderModification())

        assert repos.orders.update_calls == 0


class TestTriggerWebhook:
    async def test_payment_link_notification(self, service, http_handler):
        result = await service.trigger_webhook("CBP-1001", WebhookEventType.PAYMENT_LINK_CREATED)

        assert result.delivered is True
        sent = json.loads(http_handler.posts[0].content)
        assert sent["metadata"] == {"source": "admin_manual_trigger", "trigger": "manual", "created_via": "manual"}

    async def test_payment_link_notification_requires_link(self, repos, dispatcher, make_order):
        service = OrderService(InMemoryOrderRepository([make_order(payment_link_url=None)]), dispatcher)

        with pytest.raises(WebhookPreconditionError):
            await service.trigger_webhook("CBP-1001", WebhookEventType.PAYMENT_LINK_CREATED)

    async def test_order_completed_requires_paid(self, service, http_handler):
        with pytest.raises(WebhookPreconditionError):
            await service.trigger_webhook("CBP-1001", WebhookEventType.ORDER_COMPLETED)

        assert http_handler.posts == []

    async def test_order_completed_for_paid_order(self, repos, make_order, dispatcher, http_handler, now):
        repos.orders = InMemoryOrderRepository([make_order(payment_status="paid", paid_at=now)])
        service = OrderService(repos.orders, dispatcher)

        result = await service.trigger_webhook("CBP-1001", WebhookEventType.ORDER_COMPLETED)

        assert result.delivered is True
        sent = json.loads(http_handler.posts[0].content)
        assert sent["event_type"] == "order_completed"
        assert sent["payment"]["paid_at"] == now.isoformat()

    async def test_unknown_order_number(self, service):
        with pytest.raises(OrderNotFoundError):
            await service.trigger_webhook("CBP-404", WebhookEventType.ORDER_COMPLETED)
