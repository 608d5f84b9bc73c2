"""
Content provider protocol and Groq implementation.

The recording pipeline depends only on ContentProvider; the Groq-backed
provider is built once at startup and can be swapped for a fake in tests.
"""
from typing import Optional, Protocol

import groq

from voxpost.core.config import Settings
from voxpost.core.errors import TranscriptionError
from voxpost.core.logging import log_event

SOCIAL_PLATFORMS = ("instagram", "facebook", "youtube")

ENHANCE_SYSTEM_PROMPT = (
    "Turn this voice transcript into clear, engaging social media content. "
    "Keep the speaker's vocabulary level, personality and energy. "
    "Output only the final content."
)

SOCIAL_SYSTEM_PROMPT = (
    "You are a social media content expert. Create platform-optimized content "
    "that keeps the speaker's authentic voice. Output only the final content."
)

PLATFORM_PROMPTS = {
    "instagram": "Rewrite this as an Instagram post with natural line breaks, a few emojis and 2-3 hashtags at the end (max 2200 characters):",
    "facebook": "Rewrite this as a conversational Facebook post that invites comments:",
    "youtube": "Rewrite this as a YouTube description or community post with a strong opening hook:",
}


class ContentProvider(Protocol):
    """Speech-to-text and rewrite backend."""

    def transcribe(self, audio: bytes, filename: str) -> str:
        """
        Transcribe an audio clip.

        Raises:
            TranscriptionError: Provider call failed
        """
        ...

    def enhance(self, transcript: str) -> str:
        ...

    def social_post(self, content: str, platform: str) -> str:
        ...


class GroqContentProvider:
    """Groq implementation of ContentProvider (whisper + chat completions)."""

    def __init__(
        self,
        api_key: str,
        transcription_model: str = "whisper-large-v3",
        chat_model: str = "llama-3.1-8b-instant",
        client: Optional[groq.Groq] = None,
    ):
        self.transcription_model = transcription_model
        self.chat_model = chat_model
        self._client = client or groq.Groq(api_key=api_key)

    def transcribe(self, audio: bytes, filename: str) -> str:
        try:
            transcription = self._client.audio.transcriptions.create(
                file=(filename, audio),
                model=self.transcription_model,
            )
        except groq.GroqError as exc:
            log_event("error", "provider.transcription_failed",
                      error_code=TranscriptionError.code, extra={"error": exc})
            raise TranscriptionError("Failed to transcribe audio. Please try again.")
        return (transcription.text or "").strip()

    def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        response = self._client.chat.completions.create(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=self.chat_model,
            temperature=0.7,
            max_tokens=max_tokens,
        )
        return (response.choices[0].message.content or "").strip()

    def enhance(self, transcript: str) -> str:
        return self._complete(ENHANCE_SYSTEM_PROMPT, transcript)

    def social_post(self, content: str, platform: str) -> str:
        prompt = PLATFORM_PROMPTS[platform]
        return self._complete(SOCIAL_SYSTEM_PROMPT, f"{prompt}\n\n{content}", max_tokens=800)


def build_content_provider(settings: Settings) -> Optional[ContentProvider]:
    """Provider for the configured key, or None when transcription is disabled."""
    if not settings.GROQ_API_KEY:
        log_event("warning", "provider.disabled", extra={"reason": "missing GROQ_API_KEY"})
        return None
    return GroqContentProvider(
        settings.GROQ_API_KEY,
        transcription_model=settings.GROQ_TRANSCRIPTION_MODEL,
        chat_model=settings.GROQ_CHAT_MODEL,
    )
