"""
User domain service.
- create_user(email, password, ...)
- authenticate(email, password)
- get_user(user_id) / get_user_by_email(email)
- delete_user(user_id)
"""

import re
from typing import Optional
import bcrypt
from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError

from voxpost.core.config import settings
from voxpost.core.database import get_db_session, recordings, users as app_users, utc_now
from voxpost.core.errors import ConflictError, NotFoundError, ValidationError
from voxpost.core.logging import log_event
from voxpost.features.plans.pricing import FREE_PLAN, free_tier_minutes
from voxpost.models.user import User

MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not _EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def get_user(user_id: int) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.id == user_id)).first()
        return User.from_row(row) if row else None


def get_user_by_email(email: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(
            select(app_users).where(app_users.c.email == email.strip().lower())
        ).first()
        return User.from_row(row) if row else None


def create_user(
    email: str,
    password: str,
    name: Optional[str] = None,
    phone: Optional[str] = None,
) -> User:
    """
    Register a local account on the free tier.

    Raises:
        ValidationError: Bad email or password shorter than 8 characters
        ConflictError: Email already registered
    """
    normalized = normalize_email(email)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    now = utc_now()
    try:
        with get_db_session() as session:
            result = session.execute(
                insert(app_users).values(
                    email=normalized,
                    password_hash=hash_password(password),
                    name=name,
                    phone=phone,
                    provider="local",
                    plan_type=FREE_PLAN,
                    minutes_remaining=free_tier_minutes(),
                    unlimited_minutes=False,
                    plan_expires_at=None,
                    is_premium=False,
                    created_at=now,
                    updated_at=now,
                )
            )
            user_id = result.inserted_primary_key[0]
            row = session.execute(select(app_users).where(app_users.c.id == user_id)).first()
            user = User.from_row(row)
    except IntegrityError:
        raise ConflictError("An account with this email already exists")

    log_event("info", "user.created", user_id=user.id)
    return user


def authenticate(email: str, password: str) -> Optional[User]:
    """User for valid credentials, None otherwise."""
    with get_db_session() as session:
        row = session.execute(
            select(app_users).where(app_users.c.email == (email or "").strip().lower())
        ).first()
        if not row or not verify_password(password or "", row.password_hash):
            return None
        return User.from_row(row)


def delete_user(user_id: int) -> None:
    """
    Remove an account and its recordings.

    Payment orders and usage records are kept as the financial audit trail.
    """
    with get_db_session() as session:
        row = session.execute(select(app_users.c.id).where(app_users.c.id == user_id)).first()
        if not row:
            raise NotFoundError(f"User not found: {user_id}")
        session.execute(delete(recordings).where(recordings.c.user_id == user_id))
        session.execute(delete(app_users).where(app_users.c.id == user_id))

    log_event("info", "user.deleted", user_id=user_id)
