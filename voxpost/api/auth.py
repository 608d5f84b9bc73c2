"""
Auth API routes.

- POST /api/auth/signup: Create account, set session cookie
- POST /api/auth/login: Verify credentials, set session cookie
- POST /api/auth/logout: Clear session cookie
- GET  /api/auth/check-routing: Where the current user belongs
- GET  /api/me: Current user with plan status and routing decision
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from voxpost.api.deps import current_origin
from voxpost.core.auth import clear_session_cookie, get_optional_user, require_user, set_session_cookie
from voxpost.core.errors import AuthenticationError
from voxpost.core.logging import log_event
from voxpost.features.plans.ledger import get_plan_status
from voxpost.features.routing.service import RouteDecision, route
from voxpost.features.users.service import authenticate, create_user
from voxpost.models.user import User


router = APIRouter(tags=["auth"])


class SignupRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


def _session_payload(user: User, request: Request) -> dict:
    decision = route(user, current_origin(request))
    return {"user": user.public_dict(), "routing": decision.public_dict()}


@router.post("/api/auth/signup", status_code=201)
def signup(body: SignupRequest, request: Request, response: Response):
    user = create_user(body.email, body.password, name=body.name, phone=body.phone)
    set_session_cookie(response, user.id)
    return _session_payload(user, request)


@router.post("/api/auth/login")
def login(body: LoginRequest, request: Request, response: Response):
    user = authenticate(body.email, body.password)
    if user is None:
        log_event("info", "auth.login_failed")
        raise AuthenticationError("Invalid email or password")
    set_session_cookie(response, user.id)
    log_event("info", "auth.login", user_id=user.id)
    return _session_payload(user, request)


@router.post("/api/auth/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"success": True}


@router.get("/api/auth/check-routing")
def check_routing(request: Request, user: Optional[User] = Depends(get_optional_user)):
    """Anonymous visitors are never redirected."""
    if user is None:
        return {"authenticated": False, "routing": RouteDecision().public_dict()}
    return {"authenticated": True, "routing": route(user, current_origin(request)).public_dict()}


@router.get("/api/me")
def me(request: Request, user: User = Depends(require_user)):
    payload = _session_payload(user, request)
    payload["plan"] = get_plan_status(user.id).public_dict()
    return payload
