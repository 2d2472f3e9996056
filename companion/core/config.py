import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database (document store backing)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Caller identity (Bearer JWT)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ISSUER: Optional[str] = None
    AUTH_JWT_AUDIENCE: Optional[str] = None
    ALLOW_HEADER_AUTH: bool = False  # X-User-Id fallback for dev/tests

    # App integrity check on sensitive writes
    APP_CHECK_ENFORCED: bool = True
    APP_CHECK_SECRET: Optional[str] = None

    # Account-created hook
    USER_CREATED_WEBHOOK_SECRET: Optional[str] = None

    # Journal
    JOURNAL_ENTRY_ID_STRATEGY: str = "unique"  # "unique" | "timestamp"
    WELCOME_JOURNAL_ENTRY: bool = False

    # Profiles
    SUBSCRIPTION_PERIOD_DAYS: int = 30
    DEFAULT_EMOTION_CHARACTER_SET: str = "Bubba"

    # App URLs
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("companion")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "USER_CREATED_WEBHOOK_SECRET",
    ]
    if getattr(cfg, "APP_CHECK_ENFORCED", False):
        required_keys.append("APP_CHECK_SECRET")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
