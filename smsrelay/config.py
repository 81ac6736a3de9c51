from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # Pydantic v2 settings config
    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # "production" hides the debug routes regardless of ENABLE_DEBUG_ROUTES
    ENVIRONMENT: str = "development"

    LOG_LEVEL: str = "INFO"

    # Storage
    STORAGE_MODE: Literal["memory", "sqlite"] = "memory"
    MEMORY_CAPACITY: int = 2000
    DATABASE_URL: str = "sqlite:///./data/messages.db"
    RECENT_MESSAGES_LIMIT: int = 200

    # Twilio credentials used for outbound sends
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    # Webhook signature check, skipped entirely when the secret is empty.
    # PUBLIC_BASE_URL is the externally visible origin when behind a proxy.
    WEBHOOK_SECRET: str = ""
    PUBLIC_BASE_URL: str = ""

    AUTO_REPLY_ENABLED: bool = False
    AUTO_REPLY_TEXT: str = "Got it ✅ You can continue texting here."

    ENABLE_DEBUG_ROUTES: bool = False

    # Bind address for python -m smsrelay
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Directory holding the web UI, mounted at / when set
    STATIC_DIR: str = ""

    @property
    def debug_routes_enabled(self) -> bool:
        return self.ENABLE_DEBUG_ROUTES and self.ENVIRONMENT.lower() != "production"

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
