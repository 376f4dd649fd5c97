"""Webhook diagnostic endpoints: run a diagnosis, read history, inspect a live session."""

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_webhook_diagnostics
from app.core.auth import require_admin
from app.schemas.diagnostics import DebugHistoryEntry, DebugSession, DiagnosticResult
from app.services.webhook_diagnostics import WebhookDiagnostics

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/orders/{order_id}/webhook-diagnosis", response_model=DiagnosticResult)
async def diagnose_order_webhook(
    order_id: int,
    diagnostics: WebhookDiagnostics = Depends(get_webhook_diagnostics),
    _: str = Depends(require_admin),
):
    return await diagnostics.run(order_id)


@router.get("/orders/{order_id}/webhook-diagnosis", response_model=list[DebugHistoryEntry])
async def webhook_diagnosis_history(
    order_id: int,
    limit: int = Query(10, ge=1, le=100),
    diagnostics: WebhookDiagnostics = Depends(get_webhook_diagnostics),
    _: str = Depends(require_admin),
):
    return await diagnostics.history(order_id, limit=limit)


@router.get("/debug-sessions/{session_id}", response_model=DebugSession)
async def get_debug_session(
    session_id: str,
    diagnostics: WebhookDiagnostics = Depends(get_webhook_diagnostics),
    _: str = Depends(require_admin),
):
    session = await diagnostics.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Debug session not found or expired")
    return session
