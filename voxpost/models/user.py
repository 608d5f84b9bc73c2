from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from voxpost.core.database import as_utc
from voxpost.features.plans.pricing import UNLIMITED, Minutes


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    provider: str = "local"
    plan_type: str = "free"
    minutes_remaining: Minutes = 30
    plan_expires_at: Optional[datetime] = None
    is_premium: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "User":
        return cls(
            id=row.id,
            email=row.email,
            name=row.name,
            phone=row.phone,
            provider=row.provider,
            plan_type=row.plan_type,
            minutes_remaining=UNLIMITED if row.unlimited_minutes else row.minutes_remaining,
            plan_expires_at=as_utc(row.plan_expires_at),
            is_premium=bool(row.is_premium),
            created_at=as_utc(row.created_at),
        )

    def public_dict(self) -> dict:
        """camelCase view returned by the HTTP API."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "planType": self.plan_type,
            "minutesRemaining": self.minutes_remaining,
            "isPremium": self.is_premium,
            "planExpiresAt": self.plan_expires_at.isoformat() if self.plan_expires_at else None,
        }


class PlanStatus(BaseModel):
    """Authoritative plan state of one user."""
    model_config = ConfigDict(frozen=True)

    plan_type: str
    minutes_remaining: Minutes
    is_premium: bool
    expires_at: Optional[datetime] = None

    def public_dict(self) -> dict:
        return {
            "planType": self.plan_type,
            "minutesRemaining": self.minutes_remaining,
            "isPremium": self.is_premium,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }
