"""Admin routes for the outbound Zapier integration: settings, retry queue, delivery stats."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_dispatcher, get_repositories, get_zapier_settings_service
from app.core.auth import require_admin
from app.core.exceptions import WebhookConfigurationError
from app.repositories.protocols import Repositories
from app.schemas.webhooks import (
    DeliveryStats,
    QueueProcessSummary,
    QueueStatus,
    ZapierSettingsUpdate,
    ZapierSettingsView,
)
from app.services.zapier_dispatcher import ZapierDispatcher
from app.services.zapier_settings import ZapierSettingsService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------- Settings ----------


@router.get("/zapier-settings", response_model=ZapierSettingsView)
async def get_zapier_settings(
    service: ZapierSettingsService = Depends(get_zapier_settings_service),
    _: str = Depends(require_admin),
):
    """Effective settings. The secret is never returned, only whether one is set."""
    return service.redact(await service.get())


@router.patch("/zapier-settings", response_model=ZapierSettingsView)
async def update_zapier_settings(
    body: ZapierSettingsUpdate,
    service: ZapierSettingsService = Depends(get_zapier_settings_service),
    _: str = Depends(require_admin),
):
    try:
        settings = await service.update(body)
    except WebhookConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return service.redact(settings)


# ---------- Queue ----------


@router.get("/webhook-queue")
async def list_webhook_queue(
    status: QueueStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    repos: Repositories = Depends(get_repositories),
    _: str = Depends(require_admin),
):
    items = await repos.queue.list_items(status=status.value if status else None, limit=limit)
    counts = {s.value: await repos.queue.count(s.value) for s in QueueStatus}
    return {"items": [i.model_dump(mode="json") for i in items], "counts": counts}


@router.post("/webhook-queue/process", response_model=QueueProcessSummary)
async def process_webhook_queue(
    dispatcher: ZapierDispatcher = Depends(get_dispatcher),
    _: str = Depends(require_admin),
):
    """Drain due retries now instead of waiting for the cron trigger."""
    return await dispatcher.process_queue()


# ---------- Stats ----------


@router.get("/webhook-stats", response_model=DeliveryStats)
async def webhook_stats(
    dispatcher: ZapierDispatcher = Depends(get_dispatcher),
    _: str = Depends(require_admin),
):
    return await dispatcher.stats()
