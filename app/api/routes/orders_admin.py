"""Admin order actions that touch the webhook layer: lock/payment link, edits, manual triggers, delivery logs."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_dispatcher, get_order_service
from app.core.auth import require_admin
from app.core.exceptions import OrderLockedError, OrderNotFoundError, WebhookPreconditionError
from app.schemas.orders import OrderModification, OrderRecord, PaymentLinkRequest
from app.schemas.webhooks import DispatchResult, WebhookInvestigation, WebhookTriggerRequest
from app.services.order_service import OrderService
from app.services.zapier_dispatcher import ZapierDispatcher

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.post("/{order_id}/payment-link", response_model=OrderRecord)
async def create_payment_link(
    order_id: int,
    body: PaymentLinkRequest,
    service: OrderService = Depends(get_order_service),
    _: str = Depends(require_admin),
):
    """Attach a payment link and lock the order against further edits."""
    try:
        return await service.lock_for_payment_link(order_id, body.payment_link_url, body.reason)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch("/{order_id}", response_model=OrderRecord)
async def modify_order(
    order_id: int,
    body: OrderModification,
    service: OrderService = Depends(get_order_service),
    _: str = Depends(require_admin),
):
    try:
        return await service.modify_order(order_id, body)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{order_number}/webhooks/trigger", response_model=DispatchResult)
async def trigger_webhook(
    order_number: str,
    body: WebhookTriggerRequest,
    service: OrderService = Depends(get_order_service),
    _: str = Depends(require_admin),
):
    try:
        return await service.trigger_webhook(order_number, body.webhook_type)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except WebhookPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{order_number}/webhook-logs", response_model=WebhookInvestigation)
async def webhook_logs(
    order_number: str,
    dispatcher: ZapierDispatcher = Depends(get_dispatcher),
    _: str = Depends(require_admin),
):
    try:
        return await dispatcher.investigate(order_number)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
