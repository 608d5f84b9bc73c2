"""Usage metering: rounding, clamping, unlimited balances and dedupe."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from voxpost.core.database import get_db_session, usage_records
from voxpost.core.errors import UsageLimitExceededError, ValidationError
from voxpost.features.plans.pricing import UNLIMITED
from voxpost.features.usage.service import (
    check_balance,
    deduct,
    get_usage_history,
    minutes_for_duration,
)


def _record_count(user_id):
    with get_db_session() as session:
        return session.execute(
            select(func.count()).select_from(usage_records).where(usage_records.c.user_id == user_id)
        ).scalar()


@pytest.mark.parametrize("seconds,minutes", [(0, 0), (1, 1), (60, 1), (61, 2), (125, 3)])
def test_any_started_minute_is_billed(seconds, minutes):
    assert minutes_for_duration(seconds) == minutes


def test_deduct_rounds_up(make_user):
    user = make_user()
    result = deduct(user.id, 61)
    assert result.user.minutes_remaining == 28
    assert result.duplicate is False


def test_balance_clamps_at_zero(make_user):
    user = make_user(minutes=2)
    result = deduct(user.id, 600)
    assert result.user.minutes_remaining == 0

    history = get_usage_history(user.id)
    assert history[0].remaining_minutes == 0
    assert history[0].duration_seconds == 600


def test_unlimited_balance_not_decremented_but_recorded(make_user):
    user = make_user("max", UNLIMITED, datetime(2030, 1, 1, tzinfo=timezone.utc))

    result = deduct(user.id, 3600)

    assert result.user.minutes_remaining == UNLIMITED
    assert get_usage_history(user.id)[0].remaining_minutes == UNLIMITED
    assert check_balance(user.id) == UNLIMITED


def test_check_balance_rejects_empty_balance(make_user):
    user = make_user(minutes=0)
    with pytest.raises(UsageLimitExceededError) as exc:
        check_balance(user.id)
    assert exc.value.status_code == 403
    assert exc.value.details["remainingMinutes"] == 0


def test_negative_duration_rejected(make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        deduct(user.id, -5)
    assert _record_count(user.id) == 0


def test_repeated_request_id_deducts_once(make_user):
    user = make_user()

    first = deduct(user.id, 120, request_id="clip-1")
    second = deduct(user.id, 120, request_id="clip-1")

    assert second.duplicate is True
    assert second.usage_record_id == first.usage_record_id
    assert second.user.minutes_remaining == 28
    assert _record_count(user.id) == 1


def test_history_is_newest_first(make_user):
    user = make_user()
    deduct(user.id, 60)
    deduct(user.id, 120)
    history = get_usage_history(user.id)
    assert [r.duration_seconds for r in history] == [120, 60]
