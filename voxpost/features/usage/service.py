"""
voxpost/features/usage/service.py

Usage metering service.

Handles:
- Balance checks before any transcription work
- Minute deduction (rounded up, clamped at zero)
- Append-only usage records, deduplicated by request id
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voxpost.core.database import get_db_session, usage_records, users, utc_now
from voxpost.core.errors import NotFoundError, UsageLimitExceededError, ValidationError
from voxpost.core.logging import log_event
from voxpost.features.plans.pricing import Minutes, is_unlimited
from voxpost.models.usage import UsageRecord
from voxpost.models.user import User


@dataclass
class DeductionResult:
    """Outcome of one metering call."""
    user: User
    usage_record_id: int
    duplicate: bool = False


def minutes_for_duration(duration_seconds: int) -> int:
    """Billable minutes for a clip: any started minute counts."""
    return math.ceil(duration_seconds / 60)


def _load_user(session, user_id: int) -> User:
    row = session.execute(select(users).where(users.c.id == user_id)).first()
    if not row:
        raise NotFoundError(f"User not found: {user_id}")
    return User.from_row(row)


def check_balance(user_id: int) -> Minutes:
    """
    Return the remaining balance or raise when it is exhausted.

    Raises:
        UsageLimitExceededError: Finite balance is zero
        NotFoundError: Unknown user
    """
    with get_db_session() as session:
        user = _load_user(session, user_id)

    remaining = user.minutes_remaining
    if not is_unlimited(remaining) and remaining <= 0:
        log_event(
            "info",
            "usage.limit_exceeded",
            user_id=user_id,
            error_code=UsageLimitExceededError.code,
        )
        raise UsageLimitExceededError(
            "No recording minutes remaining. Please upgrade your plan.",
            details={"remainingMinutes": 0, "planType": user.plan_type},
        )
    return remaining


def append_usage_record(
    session: Session,
    user: User,
    duration_seconds: int,
    *,
    request_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Insert a ledger entry carrying the user's balance after the change."""
    remaining = None if is_unlimited(user.minutes_remaining) else user.minutes_remaining
    result = session.execute(
        insert(usage_records).values(
            user_id=user.id,
            duration_seconds=duration_seconds,
            remaining_minutes=remaining,
            request_id=request_id,
            created_at=now or utc_now(),
        )
    )
    return result.inserted_primary_key[0]


def _find_by_request_id(request_id: str) -> Optional[UsageRecord]:
    with get_db_session() as session:
        row = session.execute(
            select(usage_records).where(usage_records.c.request_id == request_id)
        ).first()
        return UsageRecord.from_row(row) if row else None


def _duplicate_result(record: UsageRecord) -> DeductionResult:
    with get_db_session() as session:
        user = _load_user(session, record.user_id)
    log_event(
        "info",
        "usage.duplicate_request",
        user_id=record.user_id,
        extra={"usage_request_id": record.request_id, "usage_record_id": record.id},
    )
    return DeductionResult(user=user, usage_record_id=record.id, duplicate=True)


def deduct(user_id: int, duration_seconds: int, request_id: Optional[str] = None) -> DeductionResult:
    """
    Charge a recording against the user's balance.

    The decrement is one conditional UPDATE so concurrent deductions cannot
    drive the balance below zero. Unlimited balances are left untouched but
    still get a usage record.

    Args:
        user_id: User to charge
        duration_seconds: Clip length; cost is ceil(seconds / 60) minutes
        request_id: Optional client id; repeats deduct nothing

    Returns:
        DeductionResult with the post-deduction user
    """
    if duration_seconds is None or duration_seconds < 0:
        raise ValidationError("Duration must be a non-negative number of seconds")

    if request_id:
        existing = _find_by_request_id(request_id)
        if existing is not None:
            return _duplicate_result(existing)

    cost = minutes_for_duration(duration_seconds)
    now = utc_now()

    try:
        with get_db_session() as session:
            _load_user(session, user_id)
            session.execute(
                update(users)
                .where(users.c.id == user_id, users.c.unlimited_minutes == False)  # noqa: E712
                .values(
                    minutes_remaining=case(
                        (users.c.minutes_remaining > cost, users.c.minutes_remaining - cost),
                        else_=0,
                    ),
                    updated_at=now,
                )
            )
            user = _load_user(session, user_id)
            record_id = append_usage_record(
                session, user, duration_seconds, request_id=request_id, now=now
            )
    except IntegrityError:
        # A concurrent call with the same request id committed first;
        # the whole transaction (decrement included) was rolled back.
        if not request_id:
            raise
        existing = _find_by_request_id(request_id)
        if existing is None:
            raise
        return _duplicate_result(existing)

    log_event(
        "info",
        "usage.deducted",
        user_id=user_id,
        extra={"cost_minutes": cost, "remaining_minutes": user.minutes_remaining},
    )
    return DeductionResult(user=user, usage_record_id=record_id)


def get_usage_history(user_id: int, limit: int = 50) -> List[UsageRecord]:
    """Usage records of a user, newest first."""
    with get_db_session() as session:
        rows = session.execute(
            select(usage_records)
            .where(usage_records.c.user_id == user_id)
            .order_by(usage_records.c.created_at.desc(), usage_records.c.id.desc())
            .limit(limit)
        ).all()
        return [UsageRecord.from_row(row) for row in rows]
