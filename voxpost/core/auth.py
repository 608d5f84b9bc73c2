"""
Session auth for the voxpost API.

Sessions are HS256 JWTs signed with SESSION_SECRET and carried in a cookie
scoped to COOKIE_DOMAIN, so one login is valid on both the free and the
premium origin. An Authorization: Bearer header is accepted as well.
"""
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, Request, Response

from voxpost.core.config import settings
from voxpost.core.database import utc_now
from voxpost.core.errors import AuthenticationError, NotFoundError
from voxpost.core.logging import log_event
from voxpost.features.expiry.service import sweep_if_expired
from voxpost.features.users.service import get_user
from voxpost.models.user import User

JWT_ALGORITHM = "HS256"


def issue_session_token(user_id: int, ttl_seconds: Optional[int] = None) -> str:
    now = utc_now()
    ttl = ttl_seconds if ttl_seconds is not None else settings.SESSION_TTL_SECONDS
    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl)).timestamp()),
    }
    return jwt.encode(payload, settings.SESSION_SECRET, algorithm=JWT_ALGORITHM)


def decode_session_token(token: str) -> int:
    """
    Verify a session token and return the user id.

    Raises:
        AuthenticationError: Expired, tampered or malformed token
    """
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Session expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid session")
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid session")


def set_session_cookie(response: Response, user_id: int) -> str:
    token = issue_session_token(user_id)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=settings.SESSION_TTL_SECONDS,
        domain=settings.COOKIE_DOMAIN,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return token


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(settings.SESSION_COOKIE_NAME, domain=settings.COOKIE_DOMAIN, path="/")


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


def get_optional_user(request: Request) -> Optional[User]:
    """
    Current user, or None for anonymous requests.

    Runs the plan expiry sweep before loading the user so every handler
    sees post-sweep plan state. A stale or invalid session is treated as
    anonymous.
    """
    token = _token_from_request(request)
    if not token:
        return None
    try:
        user_id = decode_session_token(token)
    except AuthenticationError as exc:
        log_event("info", "auth.session_rejected", error_code=exc.code, extra={"reason": exc.message})
        return None

    try:
        sweep_if_expired(user_id)
    except NotFoundError:
        return None
    return get_user(user_id)


def require_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationError("Authentication required")
    return user
