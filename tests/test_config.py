from __future__ import annotations

from datetime import timedelta

import pytest

from polychat.config import Settings, get_settings
from polychat.credentials import SettingsCredentialSource, StaticCredentialSource
from polychat.schemas.models import ProviderKind

_KEY_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "CLAUDE_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _KEY_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_defaults(clean_env) -> None:
    settings = Settings(_env_file=None)

    assert settings.default_model == "gpt-4o-mini"
    assert settings.anthropic_version == "2023-06-01"
    assert settings.claude_max_tokens == 4096
    assert settings.attachments_max_size_bytes == 8 * 1024 * 1024
    assert settings.gcs_bucket_name == "chat_images"
    assert settings.attachment_url_ttl == timedelta(days=7)
    assert settings.conversation_title_length == 50
    assert settings.max_chat_sessions == 1000
    assert settings.chat_session_idle_ttl == 3600.0
    assert settings.gcs_public_urls is True


def test_environment_aliases(clean_env) -> None:
    clean_env.setenv("CLAUDE_API_KEY", "ant-from-env")
    clean_env.setenv("GOOGLE_API_KEY", "gem-from-env")
    clean_env.setenv("STREAM_IDLE_TIMEOUT", "15")

    settings = get_settings()

    assert settings.anthropic_api_key is not None
    assert settings.anthropic_api_key.get_secret_value() == "ant-from-env"
    assert settings.gemini_api_key is not None
    assert settings.stream_idle_timeout == 15
    assert get_settings() is settings


def test_settings_credentials_never_fall_back(clean_env) -> None:
    clean_env.setenv("OPENAI_API_KEY", "sk-only")
    clean_env.setenv("GEMINI_API_KEY", "   ")
    credentials = SettingsCredentialSource(Settings(_env_file=None))

    assert credentials.get_api_key(ProviderKind.OPENAI) == "sk-only"
    assert credentials.get_api_key(ProviderKind.CLAUDE) is None
    assert credentials.get_api_key(ProviderKind.GEMINI) is None


def test_static_credentials() -> None:
    credentials = StaticCredentialSource({ProviderKind.CLAUDE: "k", ProviderKind.GEMINI: ""})

    assert credentials.get_api_key(ProviderKind.CLAUDE) == "k"
    assert credentials.get_api_key(ProviderKind.GEMINI) is None
    assert credentials.get_api_key(ProviderKind.OPENAI) is None
