import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None

    # Speech-to-text / rewrite provider
    GROQ_API_KEY: Optional[str] = None
    GROQ_TRANSCRIPTION_MODEL: str = "whisper-large-v3"
    GROQ_CHAT_MODEL: str = "llama-3.1-8b-instant"

    # Cashfree payment gateway
    CASHFREE_APP_ID: Optional[str] = None
    CASHFREE_SECRET_KEY: Optional[str] = None
    CASHFREE_ENVIRONMENT: str = "SANDBOX"  # SANDBOX | PRODUCTION
    CASHFREE_API_VERSION: str = "2023-08-01"

    # Sessions (cookie shared by both origins)
    SESSION_SECRET: str = "dev-session-secret-change-me"
    SESSION_COOKIE_NAME: str = "voxpost_session"
    SESSION_TTL_SECONDS: int = 7 * 24 * 60 * 60
    COOKIE_DOMAIN: Optional[str] = None  # e.g. ".voxpost.app" in production
    BCRYPT_ROUNDS: int = 12

    # Origins
    FREE_ORIGIN: str = "https://voxpost.app"
    PREMIUM_ORIGIN: str = "https://app.voxpost.app"

    # Plans / uploads
    FREE_TIER_MINUTES: int = 30
    MAX_UPLOAD_BYTES: int = 25 * 1024 * 1024

    # CORS
    CORS_ALLOWED_ORIGINS: str = "http://localhost:5173"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def cashfree_sandbox(self) -> bool:
        return self.CASHFREE_ENVIRONMENT.upper() != "PRODUCTION"

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]
        return origins + [self.FREE_ORIGIN, self.PREMIUM_ORIGIN]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("voxpost")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "GROQ_API_KEY",
        "CASHFREE_APP_ID",
        "CASHFREE_SECRET_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
