"""FastAPI dependency providers for services and process-wide state.

Tests override get_repositories / get_http_client / get_debug_session_store
through app.dependency_overrides.
"""

import httpx
from fastapi import Depends, Request

from app.core.config import get_settings
from app.db.base import get_session_factory
from app.repositories.protocols import Repositories
from app.repositories.sql import build_sql_repositories
from app.services.debug_sessions import DebugSessionStore
from app.services.order_service import OrderService
from app.services.stripe_events import StripeEventProcessor
from app.services.webhook_diagnostics import WebhookDiagnostics
from app.services.zapier_dispatcher import ZapierDispatcher
from app.services.zapier_settings import ZapierSettingsService


def get_repositories() -> Repositories:
    return build_sql_repositories(get_session_factory())


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_debug_session_store(request: Request) -> DebugSessionStore:
    return request.app.state.debug_sessions


def get_zapier_settings_service(repos: Repositories = Depends(get_repositories)) -> ZapierSettingsService:
    return ZapierSettingsService(repos.settings, get_settings())


def get_dispatcher(
    repos: Repositories = Depends(get_repositories),
    settings_service: ZapierSettingsService = Depends(get_zapier_settings_service),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> ZapierDispatcher:
    return ZapierDispatcher(repos, settings_service, http_client, get_settings())


def get_stripe_event_processor(
    repos: Repositories = Depends(get_repositories),
    dispatcher: ZapierDispatcher = Depends(get_dispatcher),
) -> StripeEventProcessor:
    return StripeEventProcessor(repos, dispatcher, get_settings())


def get_order_service(
    repos: Repositories = Depends(get_repositories),
    dispatcher: ZapierDispatcher = Depends(get_dispatcher),
) -> OrderService:
    return OrderService(repos.orders, dispatcher)


def get_webhook_diagnostics(
    repos: Repositories = Depends(get_repositories),
    settings_service: ZapierSettingsService = Depends(get_zapier_settings_service),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    store: DebugSessionStore = Depends(get_debug_session_store),
) -> WebhookDiagnostics:
    return WebhookDiagnostics(repos, settings_service, http_client, store, get_settings())
