"""External cron trigger for the webhook retry queue."""

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_dispatcher
from app.core.auth import require_cron
from app.schemas.webhooks import QueueProcessSummary
from app.services.zapier_dispatcher import ZapierDispatcher

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.api_route("/process-webhooks", methods=["GET", "POST"], response_model=QueueProcessSummary)
async def process_webhooks(
    dispatcher: ZapierDispatcher = Depends(get_dispatcher),
    _: str = Depends(require_cron),
):
    summary = await dispatcher.process_queue()
    logger.info("cron_webhook_queue_run", **summary.model_dump())
    return summary
