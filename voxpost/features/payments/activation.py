"""
voxpost/features/payments/activation.py

Plan activation: turns a confirmed payment into a plan upgrade.

Activation is keyed by order id and may be triggered by the webhook, the
return-URL landing and manual verification, in any order and any number of
times. The compare-and-swap on the order row guarantees the plan is granted
exactly once.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy import select, update

from voxpost.core.database import get_db_session, payment_orders, users, utc_now
from voxpost.core.errors import NotFoundError, OrderNotFoundError
from voxpost.core.logging import log_event
from voxpost.features.payments.orders import get_order
from voxpost.features.plans.ledger import set_plan
from voxpost.features.plans.pricing import get_plan
from voxpost.features.usage.service import append_usage_record
from voxpost.models.payment import ORDER_PAID, PaymentOrder
from voxpost.models.user import User


@dataclass
class ActivationResult:
    already_processed: bool
    order: PaymentOrder
    user: Optional[User] = None


def add_one_month(value: datetime) -> datetime:
    """Same time next calendar month, clamped to the last day (Jan 31 -> Feb 28/29)."""
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def _load_user(session, user_id: int) -> Optional[User]:
    row = session.execute(select(users).where(users.c.id == user_id)).first()
    return User.from_row(row) if row else None


def activate(order_id: str, now: Optional[datetime] = None) -> ActivationResult:
    """
    Grant the plan bought by an order, at most once.

    Args:
        order_id: Local order id
        now: Activation time (defaults to current UTC time)

    Returns:
        ActivationResult; already_processed=True when the order was paid
        before this call or a concurrent caller won the race

    Raises:
        OrderNotFoundError: Order was never created
        NotFoundError: Order owner no longer exists
    """
    ts = now or utc_now()

    order = get_order(order_id)
    if order is None:
        log_event(
            "error",
            "payment.activation_order_missing",
            order_id=order_id,
            error_code=OrderNotFoundError.code,
        )
        raise OrderNotFoundError(order_id)

    if order.is_paid:
        log_event("info", "payment.already_processed", user_id=order.user_id, order_id=order_id)
        with get_db_session() as session:
            user = _load_user(session, order.user_id)
        return ActivationResult(already_processed=True, order=order, user=user)

    plan = get_plan(order.plan_type)
    expires_at = add_one_month(ts)

    with get_db_session() as session:
        swapped = session.execute(
            update(payment_orders)
            .where(
                payment_orders.c.order_id == order_id,
                payment_orders.c.status != ORDER_PAID,
            )
            .values(status=ORDER_PAID, paid_at=ts, updated_at=ts)
        )
        if swapped.rowcount == 0:
            # Lost the race; the winner owns the plan grant
            user = _load_user(session, order.user_id)
            paid_order = get_order(order_id, session=session)
            log_event("info", "payment.already_processed", user_id=order.user_id, order_id=order_id)
            return ActivationResult(already_processed=True, order=paid_order, user=user)

        if _load_user(session, order.user_id) is None:
            raise NotFoundError(f"User not found: {order.user_id}")

        user = set_plan(order.user_id, plan.plan_type, plan.minutes, expires_at, session=session)
        append_usage_record(session, user, 0, now=ts)
        paid_order = get_order(order_id, session=session)

    log_event(
        "info",
        "payment.plan_activated",
        user_id=user.id,
        order_id=order_id,
        extra={
            "plan_type": plan.plan_type,
            "minutes": plan.minutes,
            "expires_at": expires_at.isoformat(),
        },
    )
    return ActivationResult(already_processed=False, order=paid_order, user=user)
