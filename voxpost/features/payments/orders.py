"""
voxpost/features/payments/orders.py

Payment order tracker.

Orders are created locally before the gateway is contacted and are never
deleted. Status transitions are monotonic: once an order is paid it stays
paid, whatever callback arrives afterwards.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voxpost.core.database import get_db_session, payment_orders, utc_now
from voxpost.core.errors import ConflictError, OrderNotFoundError, ValidationError
from voxpost.core.logging import log_event
from voxpost.models.payment import (
    ORDER_CANCELLED,
    ORDER_CREATED,
    ORDER_FAILED,
    ORDER_PAID,
    ORDER_STATUSES,
    PaymentOrder,
)

# status -> statuses it may replace
_ALLOWED_FROM = {
    ORDER_CREATED: (ORDER_CREATED,),
    ORDER_FAILED: (ORDER_CREATED, ORDER_FAILED, ORDER_CANCELLED),
    ORDER_CANCELLED: (ORDER_CREATED, ORDER_FAILED, ORDER_CANCELLED),
    ORDER_PAID: (ORDER_CREATED, ORDER_FAILED, ORDER_CANCELLED),
}


def new_order_id(user_id: int, now: Optional[datetime] = None) -> str:
    """order_<epoch millis>_<user id>; unique per user per millisecond."""
    ts = now or utc_now()
    return f"order_{int(ts.timestamp() * 1000)}_{user_id}"


def _select_order(session: Session, order_id: str):
    return session.execute(
        select(payment_orders).where(payment_orders.c.order_id == order_id)
    ).first()


def create_order(user_id: int, plan_type: str, amount: int, order_id: str) -> PaymentOrder:
    """
    Record a new order in status 'created'.

    Raises:
        ConflictError: order_id already exists
    """
    now = utc_now()
    try:
        with get_db_session() as session:
            session.execute(
                insert(payment_orders).values(
                    order_id=order_id,
                    user_id=user_id,
                    plan_type=plan_type,
                    amount=amount,
                    status=ORDER_CREATED,
                    created_at=now,
                    updated_at=now,
                )
            )
            order = PaymentOrder.from_row(_select_order(session, order_id))
    except IntegrityError:
        raise ConflictError(f"Order already exists: {order_id}")

    log_event(
        "info",
        "payment.order_created",
        user_id=user_id,
        order_id=order_id,
        extra={"plan_type": plan_type, "amount": amount},
    )
    return order


def get_order(order_id: str, *, session: Optional[Session] = None) -> Optional[PaymentOrder]:
    if session is not None:
        row = _select_order(session, order_id)
        return PaymentOrder.from_row(row) if row else None
    with get_db_session() as own_session:
        row = _select_order(own_session, order_id)
        return PaymentOrder.from_row(row) if row else None


def update_status(
    order_id: str,
    status: str,
    paid_at: Optional[datetime] = None,
) -> PaymentOrder:
    """
    Move an order to a new status without ever leaving 'paid'.

    A transition that is not allowed (e.g. failed after paid) is a no-op
    and returns the stored order unchanged.

    Raises:
        ValidationError: Unknown status
        OrderNotFoundError: No such order
    """
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {status}")

    now = utc_now()
    values = {"status": status, "updated_at": now}
    if status == ORDER_PAID:
        values["paid_at"] = paid_at or now

    with get_db_session() as session:
        if _select_order(session, order_id) is None:
            raise OrderNotFoundError(order_id)
        result = session.execute(
            update(payment_orders)
            .where(
                payment_orders.c.order_id == order_id,
                payment_orders.c.status.in_(_ALLOWED_FROM[status]),
            )
            .values(**values)
        )
        order = PaymentOrder.from_row(_select_order(session, order_id))

    if result.rowcount:
        log_event(
            "info",
            "payment.order_status",
            user_id=order.user_id,
            order_id=order_id,
            extra={"status": status},
        )
    else:
        log_event(
            "info",
            "payment.order_status_ignored",
            user_id=order.user_id,
            order_id=order_id,
            extra={"requested": status, "current": order.status},
        )
    return order


def list_user_orders(user_id: int, limit: int = 50) -> List[PaymentOrder]:
    with get_db_session() as session:
        rows = session.execute(
            select(payment_orders)
            .where(payment_orders.c.user_id == user_id)
            .order_by(payment_orders.c.created_at.desc(), payment_orders.c.id.desc())
            .limit(limit)
        ).all()
        return [PaymentOrder.from_row(row) for row in rows]
