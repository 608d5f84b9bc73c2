"""Accounts, sessions and routing hints over HTTP."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from mocks import FakeContentProvider, FakeGateway
from voxpost.core.auth import decode_session_token, issue_session_token
from voxpost.core.config import settings
from voxpost.core.errors import AuthenticationError
from voxpost.features.plans.ledger import get_plan_status, set_plan
from voxpost.main import create_app


@pytest.fixture
def client():
    return TestClient(create_app(gateway=FakeGateway(), provider=FakeContentProvider()))


def _signup(client, email="ana@example.com", password="long-enough-pw"):
    return client.post("/api/auth/signup", json={"email": email, "password": password, "name": "Ana"})


def test_signup_sets_session_cookie(client):
    resp = _signup(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["user"]["email"] == "ana@example.com"
    assert body["user"]["planType"] == "free"
    assert body["user"]["minutesRemaining"] == 30
    assert settings.SESSION_COOKIE_NAME in resp.cookies

    me = client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["plan"]["planType"] == "free"


def test_signup_duplicate_email_conflicts(client):
    _signup(client)
    resp = _signup(client, email="ANA@example.com")
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT"


def test_signup_short_password_rejected(client):
    resp = _signup(client, password="short")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_login_and_logout(client):
    _signup(client)
    client.post("/api/auth/logout")
    assert client.get("/api/me").status_code == 401

    bad = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "wrong-password"})
    assert bad.status_code == 401

    good = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "long-enough-pw"})
    assert good.status_code == 200
    assert client.get("/api/me").status_code == 200


def test_bearer_token_accepted(client):
    user_id = _signup(client).json()["user"]["id"]
    client.cookies.clear()
    token = issue_session_token(user_id)
    resp = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == user_id


def test_expired_or_tampered_token_rejected():
    with pytest.raises(AuthenticationError):
        decode_session_token(issue_session_token(1, ttl_seconds=-10))
    with pytest.raises(AuthenticationError):
        decode_session_token(issue_session_token(1) + "x")
    assert decode_session_token(issue_session_token(7)) == 7


def test_check_routing_anonymous_never_redirects(client):
    resp = client.get("/api/auth/check-routing", headers={"host": "app.voxpost.app"})
    assert resp.json() == {
        "authenticated": False,
        "routing": {"shouldRedirect": False, "redirectUrl": None, "reason": None},
    }


def test_check_routing_free_user_on_premium_origin(client):
    _signup(client)
    resp = client.get("/api/auth/check-routing", headers={"host": "app.voxpost.app"})
    assert resp.json()["routing"] == {
        "shouldRedirect": True,
        "redirectUrl": "https://voxpost.app/dashboard",
        "reason": "free_user",
    }


def test_authenticated_request_sweeps_expired_plan(client):
    user_id = _signup(client).json()["user"]["id"]
    set_plan(user_id, "pro", 400, datetime.now(timezone.utc) - timedelta(days=1))

    resp = client.get("/api/me", headers={"host": "app.voxpost.app"})

    body = resp.json()
    assert body["plan"]["planType"] == "free"
    assert body["plan"]["minutesRemaining"] == 30
    # After the sweep the user is a plain free user on the premium origin
    assert body["routing"]["reason"] == "free_user"
    assert get_plan_status(user_id).is_premium is False


def test_plan_status_endpoint_reports_days_left(client):
    user_id = _signup(client).json()["user"]["id"]
    set_plan(user_id, "lite", 60, datetime.now(timezone.utc) + timedelta(days=5, hours=1))

    body = client.get("/api/user/plan-status").json()

    assert body["planType"] == "lite"
    assert body["isPremium"] is True
    assert body["daysLeft"] == 6
