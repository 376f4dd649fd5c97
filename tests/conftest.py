"""Shared test fixtures for all test groups."""

from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from app.core.config import Settings
from app.repositories.memory import build_memory_repositories
from app.schemas.orders import CustomerRecord, OrderRecord
from app.services.zapier_dispatcher import ZapierDispatcher
from app.services.zapier_settings import ZapierSettingsService

ZAPIER_URL = "https://hooks.zapier.com/hooks/catch/123/abc"
ZAPIER_SECRET = "zap_secret_test"
FIXED_NOW = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)

ENABLED_ZAPIER_SETTINGS = {
    "zapier_webhook_enabled": "true",
    "zapier_webhook_url": ZAPIER_URL,
    "zapier_webhook_secret": ZAPIER_SECRET,
    "zapier_webhook_retry_attempts": "3",
    "zapier_webhook_retry_delay": "5",
}


@pytest.fixture
def config() -> Settings:
    """Deterministic settings, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def make_order() -> Callable[..., OrderRecord]:
    """Factory for a pending, link-bearing order with two 45lb plates."""

    def _make(**overrides) -> OrderRecord:
        data = {
            "id": 1,
            "order_number": "CBP-1001",
            "customer_id": 10,
            "customer_email": "lifter@example.com",
            "customer_name": "Pat Lifter",
            "customer_phone": "555-0100",
            "status": "pending",
            "payment_status": "pending",
            "payment_link_url": "https://buy.stripe.com/test_abc",
            "items": [{"weight": 45, "quantity": 2, "price": 120.0}],
            "shipping_address": "1 Main St",
            "shipping_city": "Charlotte",
            "shipping_state": "NC",
            "shipping_zip": "28202",
            "tax_amount": 16.8,
            "shipping_cost": 25.0,
            "total_amount": 281.8,
            "created_at": datetime(2026, 3, 1, 9, 0, tzinfo=UTC),
        }
        data.update(overrides)
        return OrderRecord(**data)

    return _make


@pytest.fixture
def customer() -> CustomerRecord:
    return CustomerRecord(
        id=10,
        email="lifter@example.com",
        first_name="Pat",
        last_name="Lifter",
        phone="555-0100",
        stripe_customer_id="cus_test_123",
    )


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays scripted responses.

    Each script entry is an int status code or an exception class to raise.
    The last entry repeats once the script is exhausted.
    """

    def __init__(self, *script):
        self.script = list(script) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("connection refused", request=request)
        return httpx.Response(step, text="ok" if step < 400 else "upstream error")

    @property
    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


@pytest.fixture
def http_handler() -> RecordingHandler:
    return RecordingHandler(200)


@pytest.fixture
def http_client(http_handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(http_handler))


@pytest.fixture
def scripted_http():
    """Factory: scripted_http(200, 500, httpx.ConnectError) -> (client, handler)."""

    def _make(*script):
        handler = RecordingHandler(*script)
        return httpx.AsyncClient(transport=httpx.MockTransport(handler)), handler

    return _make


@pytest.fixture
def repos(make_order, customer):
    return build_memory_repositories(
        orders=[make_order()],
        customers=[customer],
        settings=dict(ENABLED_ZAPIER_SETTINGS),
    )


@pytest.fixture
def settings_service(repos, config) -> ZapierSettingsService:
    return ZapierSettingsService(repos.settings, config)


@pytest.fixture
def dispatcher(repos, settings_service, http_client, config, clock) -> ZapierDispatcher:
    return ZapierDispatcher(repos, settings_service, http_client, config, clock=clock)
