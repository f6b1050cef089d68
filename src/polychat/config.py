"""Application configuration using environment variables."""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider credentials; a missing key disables that provider.
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    anthropic_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "anthropic_api_key"
        ),
    )
    gemini_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GEMINI_API_KEY", "GOOGLE_API_KEY", "gemini_api_key"
        ),
    )

    openai_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("OPENAI_BASE_URL", "openai_base_url"),
    )
    anthropic_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.anthropic.com/v1"),
        validation_alias=AliasChoices("ANTHROPIC_BASE_URL", "anthropic_base_url"),
    )
    gemini_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://generativelanguage.googleapis.com/v1beta"
        ),
        validation_alias=AliasChoices("GEMINI_BASE_URL", "gemini_base_url"),
    )

    anthropic_version: str = Field(
        default="2023-06-01",
        validation_alias=AliasChoices("ANTHROPIC_VERSION", "anthropic_version"),
    )
    claude_max_tokens: int = Field(
        default=4096,
        ge=1,
        validation_alias=AliasChoices("CLAUDE_MAX_TOKENS", "claude_max_tokens"),
    )
    gemini_max_output_tokens: int = Field(
        default=4096,
        ge=1,
        validation_alias=AliasChoices(
            "GEMINI_MAX_OUTPUT_TOKENS", "gemini_max_output_tokens"
        ),
    )
    default_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("DEFAULT_MODEL", "default_model"),
    )

    connect_timeout: float = Field(
        default=10.0,
        ge=0.1,
        validation_alias=AliasChoices("CONNECT_TIMEOUT", "connect_timeout"),
    )
    # Upper bound on the gap between two chunks of a streaming response.
    stream_idle_timeout: float = Field(
        default=60.0,
        ge=1,
        validation_alias=AliasChoices("STREAM_IDLE_TIMEOUT", "stream_idle_timeout"),
    )

    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/chat.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_database_path"),
    )
    conversation_title_length: int = Field(
        default=50,
        ge=1,
        validation_alias=AliasChoices(
            "CONVERSATION_TITLE_LENGTH", "conversation_title_length"
        ),
    )
    # In-memory chat sessions; idle ones are evicted past either limit.
    max_chat_sessions: int = Field(
        default=1000,
        ge=1,
        validation_alias=AliasChoices("MAX_CHAT_SESSIONS", "max_chat_sessions"),
    )
    chat_session_idle_ttl: float = Field(
        default=3600.0,
        gt=0,
        validation_alias=AliasChoices(
            "CHAT_SESSION_IDLE_TTL", "chat_session_idle_ttl"
        ),
    )

    attachments_max_size_bytes: int = Field(
        default=8 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "ATTACHMENTS_MAX_SIZE_BYTES",
            "attachments_max_size_bytes",
        ),
    )
    attachment_url_ttl_days: int = Field(
        default=7,
        ge=1,
        validation_alias=AliasChoices(
            "ATTACHMENT_URL_TTL_DAYS",
            "attachment_url_ttl_days",
        ),
    )
    gcs_bucket_name: str = Field(
        default="chat_images",
        validation_alias=AliasChoices("GCS_BUCKET_NAME", "gcs_bucket_name"),
    )
    # Public buckets hand out permanent object URLs; otherwise URLs are signed
    # and re-signed when a stored conversation is sent again.
    gcs_public_urls: bool = Field(
        default=True,
        validation_alias=AliasChoices("GCS_PUBLIC_URLS", "gcs_public_urls"),
    )
    gcp_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GCP_PROJECT_ID", "gcp_project_id"),
    )
    google_application_credentials: Path = Field(
        default_factory=lambda: Path("credentials/googlecloud/sa.json"),
        validation_alias=AliasChoices(
            "GOOGLE_APPLICATION_CREDENTIALS",
            "google_application_credentials",
        ),
    )

    @property
    def attachment_url_ttl(self) -> timedelta:
        return timedelta(days=self.attachment_url_ttl_days)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
