from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from voxpost.core.database import as_utc


class Recording(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    transcript: str
    processed_content: str
    duration_seconds: Optional[int] = None
    file_size: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "Recording":
        return cls(
            id=row.id,
            user_id=row.user_id,
            transcript=row.transcript,
            processed_content=row.processed_content,
            duration_seconds=row.duration_seconds,
            file_size=row.file_size,
            created_at=as_utc(row.created_at),
        )

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "transcript": self.transcript,
            "processedContent": self.processed_content,
            "duration": self.duration_seconds,
            "createdAt": self.created_at.isoformat(),
        }
