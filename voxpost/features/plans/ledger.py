"""
voxpost/features/plans/ledger.py

Plan ledger: the authoritative plan state of each user.

Handles:
- Plan status lookup (tier, minute balance, premium flag, expiry)
- Plan transitions (upgrade on activation, downgrade on expiry)

Every transition writes the full (plan_type, minutes, expiry) triple and
derives is_premium from the plan type, so the two can never disagree.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from voxpost.core.database import get_db_session, users, utc_now
from voxpost.core.errors import NotFoundError, ValidationError
from voxpost.features.plans.pricing import FREE_PLAN, PLAN_TYPES, Minutes, is_unlimited
from voxpost.models.user import PlanStatus, User


def _load_user_row(session: Session, user_id: int):
    row = session.execute(select(users).where(users.c.id == user_id)).first()
    if not row:
        raise NotFoundError(f"User not found: {user_id}")
    return row


def get_plan_status(user_id: int) -> PlanStatus:
    """Current plan of a user. Raises NotFoundError for unknown users."""
    with get_db_session() as session:
        user = User.from_row(_load_user_row(session, user_id))
    return PlanStatus(
        plan_type=user.plan_type,
        minutes_remaining=user.minutes_remaining,
        is_premium=user.is_premium,
        expires_at=user.plan_expires_at,
    )


def _validate_transition(plan_type: str, minutes_remaining: Minutes) -> None:
    if plan_type not in PLAN_TYPES:
        raise ValidationError(
            f"Invalid plan type: {plan_type}",
            details={"allowed": list(PLAN_TYPES)},
        )
    if is_unlimited(minutes_remaining):
        return
    if isinstance(minutes_remaining, bool) or not isinstance(minutes_remaining, int):
        raise ValidationError(f"Invalid minute balance: {minutes_remaining!r}")
    if minutes_remaining < 0:
        raise ValidationError("Minute balance cannot be negative")


def _apply_plan(
    session: Session,
    user_id: int,
    plan_type: str,
    minutes_remaining: Minutes,
    expires_at: Optional[datetime],
) -> User:
    _load_user_row(session, user_id)
    unlimited = is_unlimited(minutes_remaining)
    session.execute(
        update(users)
        .where(users.c.id == user_id)
        .values(
            plan_type=plan_type,
            minutes_remaining=0 if unlimited else minutes_remaining,
            unlimited_minutes=unlimited,
            plan_expires_at=expires_at,
            is_premium=plan_type != FREE_PLAN,
            updated_at=utc_now(),
        )
    )
    return User.from_row(_load_user_row(session, user_id))


def set_plan(
    user_id: int,
    plan_type: str,
    minutes_remaining: Minutes,
    expires_at: Optional[datetime],
    *,
    session: Optional[Session] = None,
) -> User:
    """
    Apply a plan transition.

    Args:
        user_id: User to update
        plan_type: One of free, lite, pro, max
        minutes_remaining: New balance (int >= 0 or "unlimited")
        expires_at: Plan expiry, None for the free tier
        session: Open session to join; a new transaction is used otherwise

    Returns:
        Updated User snapshot

    Raises:
        ValidationError: Unknown plan type or negative balance
        NotFoundError: Unknown user
    """
    _validate_transition(plan_type, minutes_remaining)
    if session is not None:
        return _apply_plan(session, user_id, plan_type, minutes_remaining, expires_at)
    with get_db_session() as own_session:
        return _apply_plan(own_session, user_id, plan_type, minutes_remaining, expires_at)
