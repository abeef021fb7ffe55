from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.

    Every integration credential is optional: a channel whose settings are
    missing reports itself as not configured instead of failing startup.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Storage - unset keeps records in process memory
    DATABASE_URL: Optional[str] = None

    # Static context documents served to the chat client
    CONTEXT_DIR: str = "public"
    OWNER_NAME: str = "Yatharth Bisht"

    # Take the visitor IP from X-Forwarded-For; enable only behind a proxy
    TRUST_PROXY_HEADERS: bool = False

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RESEND_API_KEY", "RESEND_KEY"),
    )
    RESEND_FROM_EMAIL: Optional[str] = None
    RESEND_TO_EMAIL: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com"

    # SMS / WhatsApp (Twilio) - the TWILLIO_ spelling is still accepted
    TWILIO_ACCOUNT_SID: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("TWILIO_ACCOUNT_SID", "TWILLIO_ACCOUNT_SID"),
    )
    TWILIO_AUTH_TOKEN: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("TWILIO_AUTH_TOKEN", "TWILLIO_AUTH_TOKEN"),
    )
    TWILIO_FROM_PHONE: Optional[str] = None
    TWILIO_TO_PHONE: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None
    TWILIO_WHATSAPP_TO: Optional[str] = None
    TWILIO_API_URL: str = "https://api.twilio.com"

    # Slack incoming webhook
    SLACK_WEBHOOK_URL: Optional[str] = None

    # Chat completion (OpenAI-compatible Groq endpoint)
    GROQ_API_KEY: Optional[str] = None
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    CHAT_MODEL: str = "gemma2-9b-it"
    CHAT_TEMPERATURE: float = 1.0
    CHAT_MAX_TOKENS: int = 1024
    CHAT_TOP_P: float = 1.0
    STREAM_DELAY_SECONDS: float = 0.05

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 10.0
    FANOUT_TIMEOUT_SECONDS: Optional[float] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
