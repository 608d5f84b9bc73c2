"""
Recording API routes.

- POST /api/transcribe: Voice clip to transcript and polished content
- POST /api/generate-social-content: Platform variants of a text
- GET/DELETE /api/user/recordings, GET /api/user/stats, GET /api/user/export
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field

from voxpost.api.deps import get_content_provider
from voxpost.core.auth import get_optional_user, require_user
from voxpost.core.config import settings
from voxpost.core.errors import UploadError
from voxpost.features.plans.pricing import UNLIMITED
from voxpost.features.recordings.provider import ContentProvider
from voxpost.features.recordings.service import (
    delete_recordings,
    export_user_data,
    generate_social_content,
    list_recordings,
    process_recording,
    recording_stats,
)
from voxpost.models.user import User


router = APIRouter(tags=["recordings"])

# Used when the client does not report the clip length
DEFAULT_CLIP_SECONDS = 30


class SocialContentRequest(BaseModel):
    processed_content: str = Field(alias="processedContent")


@router.post("/api/transcribe")
def transcribe(
    audio: Optional[UploadFile] = File(None),
    duration_seconds: Optional[int] = Form(None),
    request_id: Optional[str] = Form(None),
    user: Optional[User] = Depends(get_optional_user),
    provider: Optional[ContentProvider] = Depends(get_content_provider),
):
    data = audio.file.read(settings.MAX_UPLOAD_BYTES + 1) if audio is not None else b""
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise UploadError("Audio file is too large", status_code=413)

    result = process_recording(
        provider,
        data,
        audio.filename if audio is not None and audio.filename else "recording.webm",
        user,
        DEFAULT_CLIP_SECONDS if duration_seconds is None else duration_seconds,
        request_id=request_id,
    )

    payload = {
        "transcript": result.transcript,
        "processedContent": result.processed_content,
        "duplicate": result.duplicate,
    }
    if result.recording is not None:
        payload["recordingId"] = result.recording.id
    if result.user is not None:
        payload["remainingMinutes"] = result.user.minutes_remaining
        payload["unlimited"] = result.user.minutes_remaining == UNLIMITED
    return payload


@router.post("/api/generate-social-content")
def social_content(
    body: SocialContentRequest,
    provider: Optional[ContentProvider] = Depends(get_content_provider),
):
    return {"socialContent": generate_social_content(provider, body.processed_content)}


@router.get("/api/user/recordings")
def get_recordings(limit: int = 50, user: User = Depends(require_user)):
    return {"recordings": [r.public_dict() for r in list_recordings(user.id, limit=limit)]}


@router.delete("/api/user/recordings")
def remove_recordings(user: User = Depends(require_user)):
    return {"success": True, "deleted": delete_recordings(user.id)}


@router.get("/api/user/stats")
def get_stats(user: User = Depends(require_user)):
    stats = recording_stats(user.id)
    stats["minutesRemaining"] = user.minutes_remaining
    stats["planType"] = user.plan_type
    return stats


@router.get("/api/user/export")
def export_data(user: User = Depends(require_user)):
    return export_user_data(user)
