from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from voxpost.core.database import as_utc
from voxpost.features.plans.pricing import UNLIMITED, Minutes


class UsageRecord(BaseModel):
    """One append-only minute ledger entry."""
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    duration_seconds: int
    remaining_minutes: Minutes
    request_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "UsageRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            duration_seconds=row.duration_seconds,
            remaining_minutes=UNLIMITED if row.remaining_minutes is None else row.remaining_minutes,
            request_id=row.request_id,
            created_at=as_utc(row.created_at),
        )

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "duration": self.duration_seconds,
            "remainingMinutes": self.remaining_minutes,
            "createdAt": self.created_at.isoformat(),
        }
