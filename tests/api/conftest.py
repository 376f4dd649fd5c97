"""API-specific test fixtures.

The test app mirrors app.main.create_app but swaps the lifespan: no database
or Redis, an httpx client backed by a MockTransport and an in-memory debug
session store. Repositories are overridden with the shared in-memory bundle.
"""

from contextlib import asynccontextmanager

import httpx
import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient
from tenacity import wait_none

from app.api.deps import get_dispatcher, get_repositories, get_stripe_event_processor
from app.api.routes import api_router
from app.core.config import get_settings
from app.main import generic_exception_handler, http_exception_handler
from app.middleware.correlation import setup_correlation_middleware
from app.services.debug_sessions import InMemoryDebugSessionStore
from app.services.stripe_events import StripeEventProcessor

ADMIN_TOKEN = "admin-test-token"
CRON_SECRET = "cron-test-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def api_env(monkeypatch):
    """Configure the shared secrets through the environment, as deployments do."""
    monkeypatch.setenv("ADMIN_API_TOKEN", ADMIN_TOKEN)
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", STRIPE_WEBHOOK_SECRET)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}


def build_test_app(repos, http_handler) -> FastAPI:
    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        app.state.shutting_down = False
        app.state.uses_redis = False
        app.state.debug_sessions = InMemoryDebugSessionStore(ttl_seconds=3600, max_entries=50)
        app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(http_handler))
        yield
        await app.state.http_client.aclose()

    app = FastAPI(title="storefront-webhooks-test", lifespan=test_lifespan)
    setup_correlation_middleware(app)

    # Exception handlers (needed for debug_id testing)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    def _processor(repositories=Depends(get_repositories), dispatcher=Depends(get_dispatcher)):
        return StripeEventProcessor(repositories, dispatcher, get_settings(), wait=wait_none())

    app.dependency_overrides[get_repositories] = lambda: repos
    app.dependency_overrides[get_stripe_event_processor] = _processor
    return app


@pytest.fixture
def test_app(api_env, repos, http_handler) -> FastAPI:
    return build_test_app(repos, http_handler)


@pytest.fixture
def api_client(test_app):
    """FastAPI test client with in-memory storage and a mocked outbound HTTP transport."""
    with TestClient(test_app, raise_server_exceptions=False) as client:
        yield client
