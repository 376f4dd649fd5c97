"""Order resolution for inbound Stripe checkout sessions.

An ordered list of independent, tagged strategies; the first one that
returns an order wins. The tag is logged so operators can see how an event
was matched.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from app.repositories.protocols import OrderRepository
from app.schemas.orders import OrderRecord

logger = structlog.get_logger(__name__)

METADATA_ORDER_NUMBER = "metadata_order_number"
CUSTOMER_EMAIL_RECENT = "customer_email_recent"
EXISTING_SESSION_ID = "existing_session_id"


@dataclass(frozen=True)
class LookupStrategy:
    name: str
    find: Callable[[OrderRepository, dict[str, Any]], Awaitable[OrderRecord | None]]


@dataclass(frozen=True)
class LookupResult:
    order: OrderRecord
    strategy: str


def _session_email(session: dict[str, Any]) -> str | None:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


async def _by_metadata_order_number(orders: OrderRepository, session: dict[str, Any]) -> OrderRecord | None:
    order_number = (session.get("metadata") or {}).get("order_number")
    if not order_number:
        return None
    return await orders.get_by_number(order_number)


async def _by_customer_email(orders: OrderRepository, session: dict[str, Any]) -> OrderRecord | None:
    email = _session_email(session)
    if not email:
        return None
    return await orders.find_recent_pending_by_email(email)


async def _by_existing_session(orders: OrderRepository, session: dict[str, Any]) -> OrderRecord | None:
    session_id = session.get("id")
    if not session_id:
        return None
    return await orders.find_by_checkout_session(session_id)


CHECKOUT_STRATEGIES: tuple[LookupStrategy, ...] = (
    LookupStrategy(METADATA_ORDER_NUMBER, _by_metadata_order_number),
    LookupStrategy(CUSTOMER_EMAIL_RECENT, _by_customer_email),
    LookupStrategy(EXISTING_SESSION_ID, _by_existing_session),
)


async def resolve_order(
    orders: OrderRepository,
    session: dict[str, Any],
    strategies: Sequence[LookupStrategy] = CHECKOUT_STRATEGIES,
) -> LookupResult | None:
    """Run strategies in order and return the first match with its tag.

    Args:
        orders: Order repository to query
        session: Stripe checkout session object (dict form)
        strategies: Ordered strategies; defaults to CHECKOUT_STRATEGIES

    Returns:
        LookupResult, or None if no strategy found an order
    """
    for strategy in strategies:
        order = await strategy.find(orders, session)
        if order is not None:
            logger.info(
                "order_resolved",
                strategy=strategy.name,
                order_number=order.order_number,
                session_id=session.get("id"),
            )
            return LookupResult(order=order, strategy=strategy.name)

    logger.warning(
        "order_not_resolved",
        session_id=session.get("id"),
        tried=[s.name for s in strategies],
    )
    return None
