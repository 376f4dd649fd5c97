"""Tests for StripeEventProcessor: idempotency, order lookup, bounded retries and side effects."""

import json
from datetime import UTC, datetime

import pytest
from tenacity import wait_none

from app.core.exceptions import PersistenceError
from app.repositories.memory import InMemoryOrderRepository
from app.services.stripe_events import StripeEventProcessor
from app.services.zapier_dispatcher import ZapierDispatcher

pytestmark = pytest.mark.unit

ALWAYS = 99


def _make_stripe_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _checkout_session(**overrides) -> dict:
    session = {
        "id": "cs_test_1",
        "mode": "payment",
        "payment_intent": "pi_test_1",
        "amount_total": 28180,
        "currency": "usd",
        "customer_details": {"email": "lifter@example.com"},
        "metadata": {"order_number": "CBP-1001"},
    }
    session.update(overrides)
    return session


class FlakyOrderRepository(InMemoryOrderRepository):
    """Order store whose first `failures` updates raise PersistenceError."""

    def __init__(self, orders, failures: int):
        super().__init__(orders)
        self.failures = failures

    async def update(self, order_id, changes):
        if self.failures > 0:
            self.failures -= 1
            self.update_calls += 1
            raise PersistenceError("connection reset by peer")
        return await super().update(order_id, changes)


@pytest.fixture
def processor(repos, dispatcher, config, clock):
    return StripeEventProcessor(repos, dispatcher, config, wait=wait_none(), clock=clock)


def _use_flaky_orders(repos, make_order, failures: int, **order_overrides) -> FlakyOrderRepository:
    flaky = FlakyOrderRepository([make_order(**order_overrides)], failures)
    repos.orders = flaky
    return flaky


# ============================================================================
# checkout.session.completed
# ============================================================================


class TestCheckoutCompleted:
    async def test_marks_order_paid_and_notifies(self, processor, repos, http_handler, now):
        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", _checkout_session()))

        assert outcome.status_code == 200
        assert outcome.body == {"received": True}

        order = await repos.orders.get(1)
        assert order.payment_status == "paid"
        assert order.stripe_checkout_session_id == "cs_test_1"
        assert order.stripe_payment_intent_id == "pi_test_1"
        assert order.paid_at == now

        assert repos.orders.events_for(1) == ["payment_completed"]
        assert repos.customers.customers[10].last_payment_at == now

        assert len(http_handler.posts) == 1
        sent = json.loads(http_handler.posts[0].content)
        assert sent["event_type"] == "order_completed"
        assert sent["metadata"] == {"source": "stripe_webhook", "trigger": "checkout_session_completed"}
        assert sent["payment"]["amount_paid"] == 281.8

        assert repos.audit.stripe_events[-1].status == "success"
        assert "metadata_order_number" in repos.audit.stripe_events[-1].message

    async def test_duplicate_delivery_is_acknowledged_without_writes(self, processor, repos, make_order, http_handler):
        repos.orders = InMemoryOrderRepository([
            make_order(payment_status="paid", stripe_checkout_session_id="cs_test_1"),
        ])

        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", _checkout_session()))

        assert outcome.status_code == 200
        assert outcome.body == {"received": True, "duplicate": True}
        assert repos.orders.update_calls == 0
        assert repos.orders.timeline == []
        assert http_handler.posts == []

    async def test_redelivery_after_success_notifies_once(self, processor, repos, http_handler):
        event = _make_stripe_event("checkout.session.completed", _checkout_session())

        await processor.handle(event)
        second = await processor.handle(event)

        assert second.body["duplicate"] is True
        assert repos.orders.update_calls == 1
        assert len(http_handler.posts) == 1

    async def test_redelivery_does_not_pay_another_pending_order(self, processor, repos, make_order, http_handler):
        """Without metadata the email fallback would pick the next pending order on redelivery."""
        repos.orders = InMemoryOrderRepository([
            make_order(id=1, order_number="CBP-1001", created_at=datetime(2026, 3, 2, 9, 0, tzinfo=UTC)),
            make_order(id=2, order_number="CBP-1002", created_at=datetime(2026, 3, 1, 9, 0, tzinfo=UTC)),
        ])
        event = _make_stripe_event("checkout.session.completed", _checkout_session(id="cs_x", metadata={}))

        first = await processor.handle(event)
        second = await processor.handle(event)

        assert first.body == {"received": True}
        assert second.body == {"received": True, "duplicate": True}
        assert (await repos.orders.get(1)).payment_status == "paid"
        assert (await repos.orders.get(2)).payment_status == "pending"
        assert repos.orders.update_calls == 1
        assert len(http_handler.posts) == 1

    async def test_unknown_order_is_acknowledged_without_writes(self, processor, repos):
        session = _checkout_session(
            id="cs_unknown",
            metadata={"order_number": "CBP-9999"},
            customer_details={"email": "ghost@example.com"},
        )

        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", session))

        assert outcome.status_code == 200
        assert outcome.body == {"received": True, "error": "Order not found", "session_id": "cs_unknown"}
        assert repos.orders.update_calls == 0
        assert repos.audit.stripe_events[-1].status == "error"

    async def test_email_fallback_resolves_order(self, processor, repos):
        session = _checkout_session(metadata={})

        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", session))

        assert outcome.status_code == 200
        assert (await repos.orders.get(1)).payment_status == "paid"
        assert repos.orders.timeline[0].event_data["lookup_method"] == "customer_email_recent"

    async def test_non_payment_mode_is_ignored(self, processor, repos):
        outcome = await processor.handle(
            _make_stripe_event("checkout.session.completed", _checkout_session(mode="subscription"))
        )

        assert outcome.body == {"received": True}
        assert repos.orders.update_calls == 0

    async def test_transient_failures_are_retried(self, processor, repos, make_order):
        flaky = _use_flaky_orders(repos, make_order, failures=3)

        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", _checkout_session()))

        assert outcome.status_code == 200
        assert flaky.update_calls == 4
        assert (await flaky.get(1)).payment_status == "paid"
        assert flaky.timeline[0].event_data["update_attempts"] == 4

    async def test_exhausted_retries_return_500_for_stripe_retry(self, processor, repos, make_order, http_handler):
        flaky = _use_flaky_orders(repos, make_order, failures=ALWAYS)

        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", _checkout_session()))

        assert outcome.status_code == 500
        assert outcome.body == {
            "error": "Database update failed",
            "order_number": "CBP-1001",
            "session_id": "cs_test_1",
        }
        assert flaky.update_calls == 4
        assert (await flaky.get(1)).payment_status == "pending"
        assert flaky.timeline == []
        assert http_handler.posts == []

    async def test_downstream_failure_does_not_change_response(self, repos, settings_service, config, clock,
                                                               scripted_http):
        client, handler = scripted_http(503)
        dispatcher = ZapierDispatcher(repos, settings_service, client, config, clock=clock)
        processor = StripeEventProcessor(repos, dispatcher, config, wait=wait_none(), clock=clock)

        outcome = await processor.handle(_make_stripe_event("checkout.session.completed", _checkout_session()))

        assert outcome.status_code == 200
        assert len(handler.posts) == 1
        assert await repos.queue.count("pending") == 1


# ============================================================================
# checkout.session.expired
# ============================================================================


async def test_expired_session_adds_timeline_only(processor, repos):
    outcome = await processor.handle(_make_stripe_event("checkout.session.expired", _checkout_session()))

    assert outcome.body == {"received": True}
    assert repos.orders.update_calls == 0
    assert repos.orders.events_for(1) == ["payment_link_expired"]


# ============================================================================
# Invoice events
# ============================================================================


def _invoice(**overrides) -> dict:
    invoice = {
        "id": "in_test_1",
        "payment_intent": "pi_inv_1",
        "amount_paid": 28180,
        "amount_due": 28180,
        "attempt_count": 1,
        "hosted_invoice_url": "https://invoice.stripe.com/i/test",
        "invoice_pdf": "https://invoice.stripe.com/i/test.pdf",
        "metadata": {"order_number": "CBP-1001"},
    }
    invoice.update(overrides)
    return invoice


class TestInvoiceEvents:
    async def test_payment_succeeded_by_metadata(self, processor, repos, http_handler):
        outcome = await processor.handle(_make_stripe_event("invoice.payment_succeeded", _invoice()))

        assert outcome.status_code == 200
        order = await repos.orders.get(1)
        assert order.payment_status == "paid"
        assert order.stripe_invoice_id == "in_test_1"
        assert repos.orders.events_for(1) == ["payment_received"]
        sent = json.loads(http_handler.posts[0].content)
        assert sent["payment"]["method"] == "stripe_invoice"
        assert sent["metadata"]["trigger"] == "invoice_payment_succeeded"

    async def test_payment_succeeded_by_invoice_id(self, processor, repos, make_order):
        repos.orders = InMemoryOrderRepository([make_order(stripe_invoice_id="in_test_1")])

        await processor.handle(_make_stripe_event("invoice.payment_succeeded", _invoice(metadata={})))

        assert (await repos.orders.get(1)).payment_status == "paid"

    async def test_payment_succeeded_duplicate(self, processor, repos, make_order):
        repos.orders = InMemoryOrderRepository([make_order(payment_status="paid", stripe_invoice_id="in_test_1")])

        outcome = await processor.handle(_make_stripe_event("invoice.payment_succeeded", _invoice()))

        assert outcome.body == {"received": True, "duplicate": True}
        assert repos.orders.update_calls == 0

    async def test_payment_succeeded_exhausted_retries(self, processor, repos, make_order):
        _use_flaky_orders(repos, make_order, failures=ALWAYS)

        outcome = await processor.handle(_make_stripe_event("invoice.payment_succeeded", _invoice()))

        assert outcome.status_code == 500
        assert outcome.body["invoice_id"] == "in_test_1"

    async def test_payment_succeeded_unknown_order(self, processor, repos):
        outcome = await processor.handle(
            _make_stripe_event("invoice.payment_succeeded", _invoice(id="in_x", metadata={}))
        )

        assert outcome.status_code == 200
        assert outcome.body["error"] == "Order not found"
        assert repos.orders.update_calls == 0

    async def test_payment_failed_marks_pending_order_failed(self, processor, repos):
        outcome = await processor.handle(_make_stripe_event("invoice.payment_failed", _invoice()))

        assert outcome.status_code == 200
        assert (await repos.orders.get(1)).payment_status == "failed"
        assert repos.orders.events_for(1) == ["payment_failed"]

    async def test_payment_failed_never_downgrades_paid_order(self, processor, repos, make_order):
        repos.orders = InMemoryOrderRepository([make_order(payment_status="paid")])

        outcome = await processor.handle(_make_stripe_event("invoice.payment_failed", _invoice()))

        assert outcome.status_code == 200
        assert (await repos.orders.get(1)).payment_status == "paid"
        assert repos.orders.update_calls == 0

    async def test_payment_failed_write_error_returns_500(self, processor, repos, make_order):
        _use_flaky_orders(repos, make_order, failures=1)

        outcome = await processor.handle(_make_stripe_event("invoice.payment_failed", _invoice()))

        assert outcome.status_code == 500
        assert outcome.body == {
            "error": "Database update failed",
            "order_number": "CBP-1001",
            "invoice_id": "in_test_1",
        }

    async def test_finalized_stores_invoice_links(self, processor, repos):
        outcome = await processor.handle(_make_stripe_event("invoice.finalized", _invoice()))

        assert outcome.status_code == 200
        order = await repos.orders.get(1)
        assert order.stripe_invoice_url == "https://invoice.stripe.com/i/test"
        assert order.stripe_invoice_pdf == "https://invoice.stripe.com/i/test.pdf"
        assert order.payment_status == "pending"
        assert repos.orders.events_for(1) == ["invoice_finalized"]


async def test_unhandled_event_type_is_acknowledged(processor, repos):
    outcome = await processor.handle(_make_stripe_event("customer.created", {"id": "cus_1"}))

    assert outcome.body == {"received": True}
    assert repos.audit.stripe_events[-1].status == "warning"
    assert repos.orders.update_calls == 0
