"""Webhook diagnostic rules.

Pure functions used by the diagnostic pipeline: stage validators, failure
classification, result aggregation and client-side history aggregation.
"""

from collections.abc import Iterable
from typing import Any
from urllib.parse import urlparse

import httpx

from app.domain.orders import parse_items
from app.schemas.diagnostics import (
    DebugHistoryEntry,
    DebugStep,
    DebugStepLogRecord,
    DiagnosticIssue,
    DiagnosticResult,
    DiagnosticStep,
    StageOutcome,
    StepStatus,
)
from app.schemas.orders import OrderRecord
from app.schemas.webhooks import ZapierSettings

MIN_TIMEOUT_SECONDS = 5
MAX_TIMEOUT_SECONDS = 300

RECOMMENDATIONS = {
    "configuration": "Fix webhook configuration in admin settings and re-run diagnosis",
    "order_data": "Ensure order contains all required fields before creating a payment link",
    "network": "Check network connectivity / DNS / SSL for webhook URL",
    "payload": "Review payload structure or size constraints",
}


def _failed(errors: list[str], data: dict[str, Any] | None = None) -> StageOutcome:
    return StageOutcome(status=StepStatus.FAILED, data=data or {}, error="; ".join(errors))


def is_valid_webhook_url(url: str | None) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_configuration(settings: ZapierSettings) -> StageOutcome:
    """Stage 1: enabled flag, URL present and parseable, timeout in range."""
    errors: list[str] = []

    if not settings.webhook_enabled:
        errors.append("Webhook integration is disabled")

    if not settings.webhook_url:
        errors.append("Webhook URL is not configured")
    elif not is_valid_webhook_url(settings.webhook_url):
        errors.append("Webhook URL is invalid")

    if not MIN_TIMEOUT_SECONDS <= settings.webhook_timeout <= MAX_TIMEOUT_SECONDS:
        errors.append(
            f"Webhook timeout is outside valid range ({MIN_TIMEOUT_SECONDS}-{MAX_TIMEOUT_SECONDS} seconds)"
        )

    data = {
        "webhook_enabled": settings.webhook_enabled,
        "webhook_url": settings.webhook_url,
        "webhook_timeout": settings.webhook_timeout,
        "has_webhook_secret": bool(settings.webhook_secret),
    }
    if errors:
        return _failed(errors, data)
    return StageOutcome(status=StepStatus.COMPLETED, data=data)


def validate_order_data(order: OrderRecord | None) -> StageOutcome:
    """Stage 2: required order fields and well-formed items."""
    if order is None:
        return _failed(["Order not found"])

    errors: list[str] = []
    if not order.order_number:
        errors.append("Order number is missing")
    if not order.customer_email:
        errors.append("Customer email is missing")
    if not order.items:
        errors.append("Order items are missing")
    if not order.payment_link_url:
        errors.append("Payment link URL is missing")

    item_count = 0
    if order.items:
        try:
            items = parse_items(order.items, strict=True)
        except ValueError as e:
            errors.append(str(e))
        else:
            item_count = len(items)
            if not items:
                errors.append("Order items array is empty or invalid")
            for index, item in enumerate(items, start=1):
                if item.get("weight") in (None, ""):
                    errors.append(f"Item {index}: weight is missing")
                elif not _positive(item.get("weight")):
                    errors.append(f"Item {index}: weight is invalid")
                if not _positive(item.get("quantity")):
                    errors.append(f"Item {index}: quantity is invalid")
                if not _positive(item.get("price")):
                    errors.append(f"Item {index}: price is invalid")

    data = {"order_number": order.order_number, "item_count": item_count}
    if errors:
        return _failed(errors, data)
    return StageOutcome(status=StepStatus.COMPLETED, data=data)


def _positive(value: Any) -> bool:
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def validate_payload(payload: dict[str, Any], body: bytes, max_bytes: int) -> StageOutcome:
    """Stage 4: required identifiers present and encoded size under max_bytes."""
    order = payload.get("order") or {}
    errors: list[str] = []

    if not order.get("id"):
        errors.append("Order ID is missing from payload")
    if not order.get("order_number"):
        errors.append("Order number is missing from payload")
    if not order.get("payment_link_url"):
        errors.append("Payment link URL is missing from payload")

    size = len(body)
    if size > max_bytes:
        errors.append(f"Payload size ({size} bytes) exceeds {max_bytes} byte limit")

    data = {"payload_size_bytes": size, "event_type": payload.get("event_type")}
    if errors:
        return _failed(errors, data)
    return StageOutcome(status=StepStatus.COMPLETED, data=data)


def classify_connectivity_error(exc: BaseException) -> str:
    """Operator-facing bucket for a failed probe: "network" or "unknown"."""
    if isinstance(exc, httpx.TransportError):
        return "network"
    return "unknown"


def aggregate_result(
    session_id: str,
    order_id: int,
    steps: list[DebugStep],
    outcomes: dict[str, StageOutcome],
    total_time_ms: int,
) -> DiagnosticResult:
    """Summarize a finished diagnostic session.

    Args:
        session_id: Debug session id
        order_id: Order under diagnosis
        steps: Recorded steps in execution order (final status per stage)
        outcomes: Stage outcomes keyed by DiagnosticStep value
        total_time_ms: Wall time of the whole run

    Returns:
        DiagnosticResult with counts, failure points, recommendations and
        issue buckets (configuration / network / data).
    """
    failed = [s for s in steps if s.status == StepStatus.FAILED]
    warnings = [s for s in steps if s.status == StepStatus.WARNING]
    completed = [s for s in steps if s.status == StepStatus.COMPLETED]

    issues: list[DiagnosticIssue] = []
    recommendations: list[str] = []

    def _outcome_failed(step: DiagnosticStep) -> StageOutcome | None:
        outcome = outcomes.get(step.value)
        if outcome is not None and outcome.status == StepStatus.FAILED:
            return outcome
        return None

    config = _outcome_failed(DiagnosticStep.CHECK_CONFIGURATION)
    if config is not None:
        recommendations.append(RECOMMENDATIONS["configuration"])
        issues.append(DiagnosticIssue(
            category="configuration",
            steps=_split(config.error),
            recommendation=RECOMMENDATIONS["configuration"],
        ))

    connectivity = _outcome_failed(DiagnosticStep.TEST_CONNECTIVITY)
    if connectivity is not None:
        recommendations.append(RECOMMENDATIONS["network"])
        issues.append(DiagnosticIssue(
            category="network",
            steps=_split(connectivity.error),
            recommendation=RECOMMENDATIONS["network"],
        ))

    data_problems: list[str] = []
    order_data = _outcome_failed(DiagnosticStep.VALIDATE_ORDER_DATA)
    if order_data is not None:
        recommendations.append(RECOMMENDATIONS["order_data"])
        data_problems.extend(_split(order_data.error))
    payload = _outcome_failed(DiagnosticStep.BUILD_PAYLOAD)
    if payload is not None:
        recommendations.append(RECOMMENDATIONS["payload"])
        data_problems.extend(_split(payload.error))
    if data_problems:
        issues.append(DiagnosticIssue(
            category="data",
            steps=data_problems,
            recommendation=RECOMMENDATIONS["payload"] if order_data is None else RECOMMENDATIONS["order_data"],
        ))

    return DiagnosticResult(
        success=not failed,
        debug_session_id=session_id,
        order_id=order_id,
        total_steps=len(steps),
        completed_steps=len(completed),
        failed_steps=len(failed),
        warning_steps=len(warnings),
        total_time_ms=total_time_ms,
        failure_points=[f"{s.step}: {s.error or 'Unknown error'}" for s in failed],
        recommendations=recommendations,
        issues=issues,
        steps=steps,
    )


def _split(error: str | None) -> list[str]:
    if not error:
        return []
    return [part for part in error.split("; ") if part]


def aggregate_debug_logs(rows: Iterable[DebugStepLogRecord], limit: int = 10) -> list[DebugHistoryEntry]:
    """Rebuild per-session history from raw step logs.

    Groups by debug_session_id, counts statuses, sums execution time, keeps
    the newest timestamp and summarizes the first three failed step names.
    Rows are expected newest first; output is sorted newest first.
    """
    sessions: dict[str, DebugHistoryEntry] = {}
    failures: dict[str, list[str]] = {}

    for row in rows:
        entry = sessions.get(row.debug_session_id)
        if entry is None:
            entry = DebugHistoryEntry(
                debug_session_id=row.debug_session_id,
                order_id=row.order_id,
                last_attempt=row.created_at,
            )
            sessions[row.debug_session_id] = entry
            failures[row.debug_session_id] = []

        entry.total_steps += 1
        if row.step_status == StepStatus.FAILED:
            entry.failed_steps += 1
            failures[row.debug_session_id].append(row.step_name)
        elif row.step_status == StepStatus.WARNING:
            entry.warning_steps += 1
        elif row.step_status == StepStatus.COMPLETED:
            entry.completed_steps += 1
        if row.created_at is not None and (entry.last_attempt is None or row.created_at > entry.last_attempt):
            entry.last_attempt = row.created_at
        entry.total_execution_time_ms += row.execution_time_ms or 0

    for session_id, entry in sessions.items():
        entry.failure_summary = "; ".join(failures[session_id][:3])

    ordered = sorted(
        sessions.values(),
        key=lambda e: e.last_attempt.timestamp() if e.last_attempt else 0.0,
        reverse=True,
    )
    return ordered[:limit]
