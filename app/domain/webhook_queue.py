"""Retry queue transitions for outbound webhook deliveries.

Pure functions: given an item and a delivery outcome, compute the column
changes. The dispatcher persists whatever these return.
"""

from datetime import datetime, timedelta
from typing import Any

from app.schemas.webhooks import QueueItemRecord, QueueStatus

MAX_RETRY_DELAY_SECONDS = 300


def retry_delay_seconds(base_delay: int, attempts: int, cap: int = MAX_RETRY_DELAY_SECONDS) -> int:
    """Exponential backoff: base * 2^(attempts-1), capped.

    Args:
        base_delay: Configured webhook_retry_delay in seconds
        attempts: Attempts made so far (>= 1)
        cap: Upper bound in seconds

    Returns:
        Delay in seconds before the next attempt
    """
    exponent = max(attempts - 1, 0)
    return min(cap, base_delay * (2 ** exponent))


def initial_queue_item(
    order_id: int,
    webhook_url: str,
    payload: dict[str, Any],
    event_type: str,
    retry_attempts: int,
    retry_delay: int,
    error_message: str | None,
    now: datetime,
    cap: int = MAX_RETRY_DELAY_SECONDS,
) -> QueueItemRecord:
    """Queue record for a delivery whose first attempt just failed.

    With no retries configured the item is born failed so it still shows up
    in the queue view.
    """
    max_attempts = retry_attempts + 1
    item = QueueItemRecord(
        order_id=order_id,
        webhook_url=webhook_url,
        payload=payload,
        event_type=str(event_type),
        attempts=1,
        max_attempts=max_attempts,
        error_message=error_message,
    )
    if item.attempts >= max_attempts:
        item.status = QueueStatus.FAILED
        item.failed_at = now
    else:
        item.status = QueueStatus.PENDING
        item.next_retry_at = now + timedelta(seconds=retry_delay_seconds(retry_delay, item.attempts, cap))
    return item


def after_attempt(
    item: QueueItemRecord,
    success: bool,
    error_message: str | None,
    retry_delay: int,
    now: datetime,
    cap: int = MAX_RETRY_DELAY_SECONDS,
) -> dict[str, Any]:
    """Column changes after a queued item was delivered (or not)."""
    if success:
        return {"status": QueueStatus.COMPLETED.value, "completed_at": now, "error_message": None}

    attempts = item.attempts + 1
    if attempts >= item.max_attempts:
        return {
            "status": QueueStatus.FAILED.value,
            "attempts": attempts,
            "failed_at": now,
            "error_message": error_message,
        }
    return {
        "status": QueueStatus.PENDING.value,
        "attempts": attempts,
        "next_retry_at": now + timedelta(seconds=retry_delay_seconds(retry_delay, attempts, cap)),
        "error_message": error_message,
    }
