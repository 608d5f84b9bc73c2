"""Cross-domain router: expired, premium and free precedence."""
from datetime import datetime, timedelta, timezone

import pytest

from voxpost.features.routing.service import classify_origin, route
from voxpost.models.user import User

FREE = "https://voxpost.app"
PREMIUM = "https://app.voxpost.app"
NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _user(**overrides):
    fields = dict(id=1, email="u@example.com", plan_type="free", minutes_remaining=30, is_premium=False)
    fields.update(overrides)
    return User(**fields)


def _route(user, origin):
    return route(user, origin, NOW, free_origin=FREE, premium_origin=PREMIUM)


@pytest.mark.parametrize(
    "host,expected",
    [
        ("voxpost.app", "free"),
        ("app.voxpost.app", "premium"),
        ("APP.voxpost.app:443", "premium"),
        ("https://voxpost.app", "free"),
        ("localhost:8000", "unknown"),
        (None, "unknown"),
    ],
)
def test_classify_origin(host, expected):
    assert classify_origin(host, FREE, PREMIUM) == expected


def test_expired_user_on_premium_origin_sent_to_free_origin():
    stale = _user(plan_type="pro", is_premium=True, plan_expires_at=NOW - timedelta(days=1))
    decision = _route(stale, "premium")
    assert decision.redirect_to == f"{FREE}/premium"
    assert decision.reason == "expired"


def test_expired_user_on_free_origin_stays():
    stale = _user(plan_type="pro", is_premium=True, plan_expires_at=NOW - timedelta(days=1))
    assert _route(stale, "free").should_redirect is False


def test_expired_user_on_unknown_origin_redirected():
    stale = _user(plan_type="lite", is_premium=True, plan_expires_at=NOW)
    assert _route(stale, "unknown").reason == "expired"


def test_free_user_on_premium_origin_sent_to_free_dashboard():
    decision = _route(_user(), "premium")
    assert decision.redirect_to == f"{FREE}/dashboard"
    assert decision.reason == "free_user"


def test_premium_user_on_free_origin_sent_to_premium_dashboard():
    premium = _user(plan_type="max", minutes_remaining="unlimited", is_premium=True,
                    plan_expires_at=NOW + timedelta(days=20))
    decision = _route(premium, "free")
    assert decision.redirect_to == f"{PREMIUM}/dashboard"
    assert decision.reason == "premium_access"
    assert _route(premium, "premium").should_redirect is False


def test_users_already_in_place_are_not_redirected():
    assert _route(_user(), "free").should_redirect is False
    assert _route(_user(), "unknown").should_redirect is False


def test_route_is_pure():
    user = _user(plan_type="pro", is_premium=True, plan_expires_at=NOW + timedelta(days=3))
    assert _route(user, "free") == _route(user, "free")
    assert user.is_premium is True
