"""
voxpost/features/recordings/service.py

Recording pipeline and history.

Handles:
- Voice clip processing (balance check, transcription, enhancement, metering)
- Social post variants per platform
- Recording history, stats, export and deletion
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from sqlalchemy import delete, func, insert, select

from voxpost.core.database import get_db_session, recordings, utc_now
from voxpost.core.errors import TranscriptionError, UploadError, ValidationError
from voxpost.core.logging import log_event
from voxpost.features.payments.orders import list_user_orders
from voxpost.features.recordings.provider import SOCIAL_PLATFORMS, ContentProvider
from voxpost.features.usage.service import check_balance, deduct, get_usage_history
from voxpost.models.recording import Recording
from voxpost.models.user import User


@dataclass
class ProcessedRecording:
    transcript: str
    processed_content: str
    recording: Optional[Recording] = None
    user: Optional[User] = None
    duplicate: bool = False


def _require_provider(provider: Optional[ContentProvider]) -> ContentProvider:
    if provider is None:
        raise TranscriptionError(
            "Transcription is currently unavailable",
            code="TRANSCRIPTION_UNAVAILABLE",
            status_code=503,
        )
    return provider


def process_recording(
    provider: Optional[ContentProvider],
    audio: bytes,
    filename: str,
    user: Optional[User],
    duration_seconds: int,
    request_id: Optional[str] = None,
) -> ProcessedRecording:
    """
    Transcribe and enhance one voice clip.

    Authenticated users are checked for balance before the provider is
    called and charged after it succeeds. Anonymous clips are processed
    without metering and are not stored.

    Raises:
        UploadError: Empty upload
        UsageLimitExceededError: No minutes left
        TranscriptionError: Provider failed to transcribe
        ValidationError: Transcript came back empty
    """
    if not audio:
        raise UploadError("No audio file uploaded or file is empty")
    if duration_seconds is None or duration_seconds < 0:
        raise ValidationError("Duration must be a non-negative number of seconds")

    if user is not None:
        check_balance(user.id)

    provider = _require_provider(provider)
    transcript = provider.transcribe(audio, filename)
    if not transcript:
        raise ValidationError("No speech detected in the recording")

    try:
        processed = provider.enhance(transcript) or transcript
    except Exception as exc:
        # Enhancement is optional; the raw transcript is still useful
        log_event("warning", "recording.enhance_failed", user_id=user.id if user else None,
                  extra={"error": exc})
        processed = transcript

    if user is None:
        return ProcessedRecording(transcript=transcript, processed_content=processed)

    deduction = deduct(user.id, duration_seconds, request_id=request_id)
    if deduction.duplicate:
        return ProcessedRecording(
            transcript=transcript,
            processed_content=processed,
            user=deduction.user,
            duplicate=True,
        )

    recording = _store_recording(user.id, transcript, processed, duration_seconds, len(audio))
    log_event("info", "recording.processed", user_id=user.id,
              extra={"recording_id": recording.id, "duration_seconds": duration_seconds})
    return ProcessedRecording(
        transcript=transcript,
        processed_content=processed,
        recording=recording,
        user=deduction.user,
    )


def _store_recording(
    user_id: int,
    transcript: str,
    processed: str,
    duration_seconds: int,
    file_size: int,
) -> Recording:
    with get_db_session() as session:
        result = session.execute(
            insert(recordings).values(
                user_id=user_id,
                transcript=transcript,
                processed_content=processed,
                duration_seconds=duration_seconds,
                file_size=file_size,
                created_at=utc_now(),
            )
        )
        row = session.execute(
            select(recordings).where(recordings.c.id == result.inserted_primary_key[0])
        ).first()
        return Recording.from_row(row)


def generate_social_content(provider: Optional[ContentProvider], content: str) -> Dict[str, str]:
    """Platform variants of a text; a failing platform falls back to the input."""
    if not content or not content.strip():
        raise ValidationError("Processed content is required")
    provider = _require_provider(provider)

    posts = {}
    for platform in SOCIAL_PLATFORMS:
        try:
            posts[platform] = provider.social_post(content, platform) or content
        except Exception as exc:
            log_event("warning", "recording.social_post_failed", extra={"platform": platform, "error": exc})
            posts[platform] = content
    return posts


def list_recordings(user_id: int, limit: int = 50) -> List[Recording]:
    with get_db_session() as session:
        rows = session.execute(
            select(recordings)
            .where(recordings.c.user_id == user_id)
            .order_by(recordings.c.created_at.desc(), recordings.c.id.desc())
            .limit(limit)
        ).all()
        return [Recording.from_row(row) for row in rows]


def recording_stats(user_id: int) -> Dict[str, int]:
    with get_db_session() as session:
        row = session.execute(
            select(
                func.count(recordings.c.id),
                func.coalesce(func.sum(recordings.c.duration_seconds), 0),
            ).where(recordings.c.user_id == user_id)
        ).first()
    return {"totalRecordings": int(row[0]), "totalDurationSeconds": int(row[1])}


def delete_recordings(user_id: int) -> int:
    """Delete every recording of a user; returns how many were removed."""
    with get_db_session() as session:
        result = session.execute(delete(recordings).where(recordings.c.user_id == user_id))
        deleted = result.rowcount
    log_event("info", "recording.deleted_all", user_id=user_id, extra={"count": deleted})
    return deleted


def export_user_data(user: User) -> dict:
    """Everything stored about a user, as a JSON-ready document."""
    return {
        "user": user.public_dict(),
        "recordings": [r.public_dict() for r in list_recordings(user.id, limit=10000)],
        "usage": [u.public_dict() for u in get_usage_history(user.id, limit=10000)],
        "payments": [o.public_dict() for o in list_user_orders(user.id, limit=10000)],
        "stats": recording_stats(user.id),
        "exportedAt": utc_now().isoformat(),
    }
