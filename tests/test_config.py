"""
Settings tests — environment variables, .env files and type coercion.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from blocklease.config import AUTHENTICITY_THRESHOLD, Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "BLOCKLEASE_LLM_TIMEOUT",
        "BLOCKLEASE_DATABASE_URL",
        "EMAIL_SENDER",
        "BLOCKLEASE_READ_URL_TTL",
        "BLOCKLEASE_PUBLIC_URL",
        "BLOCKLEASE_AUTHENTICITY_THRESHOLD",
        "SMTP_HOST",
        "SMTP_PORT",
        "SMTP_USE_SSL",
        "IDENTITY_SECRET_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults_without_environment(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.openai_api_key is None
        assert settings.smtp_host is None
        assert settings.smtp_port == 587
        assert settings.smtp_use_ssl is False
        assert settings.authenticity_threshold == AUTHENTICITY_THRESHOLD


class TestEnvironment:
    def test_prefixed_values_are_coerced(self, monkeypatch) -> None:
        monkeypatch.setenv("BLOCKLEASE_LLM_TIMEOUT", "12.5")
        monkeypatch.setenv("BLOCKLEASE_READ_URL_TTL", "60")
        monkeypatch.setenv("BLOCKLEASE_AUTHENTICITY_THRESHOLD", "90")
        settings = Settings(_env_file=None)
        assert settings.llm_timeout == 12.5
        assert settings.read_url_ttl == 60
        assert settings.authenticity_threshold == 90.0

    def test_provider_variables_keep_their_names(self, monkeypatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("SMTP_HOST", "smtp.test")
        monkeypatch.setenv("SMTP_PORT", "2525")
        monkeypatch.setenv("SMTP_USE_SSL", "true")
        monkeypatch.setenv("IDENTITY_SECRET_KEY", "shh")
        settings = Settings(_env_file=None)
        assert settings.openai_api_key == "sk-env"
        assert settings.smtp_host == "smtp.test"
        assert settings.smtp_port == 2525
        assert settings.smtp_use_ssl is True
        assert settings.identity_secret_key == "shh"

    def test_public_url_trailing_slash_stripped(self, monkeypatch) -> None:
        monkeypatch.setenv("BLOCKLEASE_PUBLIC_URL", "https://leases.example/")
        assert Settings(_env_file=None).public_base_url == "https://leases.example"

    def test_invalid_number_is_validation_error(self, monkeypatch) -> None:
        monkeypatch.setenv("BLOCKLEASE_AUTHENTICITY_THRESHOLD", "abc")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_keyword_arguments_override_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("SMTP_HOST", "smtp.env")
        assert Settings(_env_file=None, smtp_host="smtp.arg").smtp_host == "smtp.arg"


class TestEnvFile:
    def test_values_read_from_env_file(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "BLOCKLEASE_DATABASE_URL=sqlite:///from-file.db\n"
            "EMAIL_SENDER=leases@example.com\n"
            "UNRELATED_VARIABLE=ignored\n",
            encoding="utf-8",
        )
        settings = Settings(_env_file=env_file)
        assert settings.database_url == "sqlite:///from-file.db"
        assert settings.email_sender == "leases@example.com"
