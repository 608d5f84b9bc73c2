"""
voxpost/features/expiry/service.py

Plan expiry sweep.

Runs lazily on each authenticated request instead of on a schedule. The
downgrade is a single conditional UPDATE, so when several requests race
exactly one of them observes was_downgraded=True.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select, update

from voxpost.core.database import as_utc, get_db_session, users, utc_now
from voxpost.core.errors import NotFoundError
from voxpost.core.logging import log_event
from voxpost.features.plans.pricing import FREE_PLAN, free_tier_minutes

NO_EXPIRY = -1
_DAY = timedelta(days=1)


@dataclass
class SweepResult:
    was_downgraded: bool
    days_left: int


def days_until(expires_at: Optional[datetime], now: datetime) -> int:
    """Whole days left, rounded up; -1 when there is no expiry."""
    if expires_at is None:
        return NO_EXPIRY
    return math.ceil((as_utc(expires_at) - now) / _DAY)


def sweep_if_expired(user_id: int, now: Optional[datetime] = None) -> SweepResult:
    """
    Downgrade the user to the free tier once the paid plan has lapsed.

    Raises:
        NotFoundError: Unknown user
    """
    ts = now or utc_now()
    with get_db_session() as session:
        row = session.execute(
            select(users.c.is_premium, users.c.plan_expires_at).where(users.c.id == user_id)
        ).first()
        if not row:
            raise NotFoundError(f"User not found: {user_id}")

        days_left = days_until(row.plan_expires_at, ts)
        if row.plan_expires_at is None or days_left > 0 or not row.is_premium:
            return SweepResult(was_downgraded=False, days_left=days_left)

        result = session.execute(
            update(users)
            .where(
                users.c.id == user_id,
                users.c.is_premium == True,  # noqa: E712
                users.c.plan_expires_at <= ts,
            )
            .values(
                plan_type=FREE_PLAN,
                minutes_remaining=free_tier_minutes(),
                unlimited_minutes=False,
                plan_expires_at=None,
                is_premium=False,
                updated_at=ts,
            )
        )
        downgraded = result.rowcount == 1

    if downgraded:
        log_event("info", "plan.expired_downgrade", user_id=user_id, extra={"days_left": days_left})
    return SweepResult(was_downgraded=downgraded, days_left=days_left)
