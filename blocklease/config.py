"""
Runtime configuration.

Every external client (model, ledger, storage, mailer, identity provider)
is built once per process from a single ``Settings`` object and injected
into the engine. Values come from the environment and an optional ``.env``
file. Block Lease tunables carry the ``BLOCKLEASE_`` prefix; provider
credentials keep their conventional names.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Constants ───────────────────────────────────────────────────────

# Minimum forensic authenticity score a title deed needs to verify a unit
AUTHENTICITY_THRESHOLD = 85.0


def _env(name: str, var: str) -> AliasChoices:
    return AliasChoices(name, var)


class Settings(BaseSettings):
    """All tunables for one process."""

    model_config = SettingsConfigDict(
        env_prefix="BLOCKLEASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Document intelligence
    openai_api_key: Optional[str] = Field(None, validation_alias=_env("openai_api_key", "OPENAI_API_KEY"))
    extraction_model: str = "gpt-5-mini"
    forensic_model: str = "gpt-5"
    llm_timeout: float = 60.0
    llm_max_retries: int = 2

    # Persistence
    database_url: str = "sqlite:///blocklease.db"
    ledger_url: str = "sqlite:///ledger.db"
    storage_dir: str = "storage"
    read_url_ttl: int = 3600

    # Public links
    public_base_url: str = Field(
        "https://blocklease.site", validation_alias=_env("public_base_url", "BLOCKLEASE_PUBLIC_URL")
    )

    # Mail
    smtp_host: Optional[str] = Field(None, validation_alias=_env("smtp_host", "SMTP_HOST"))
    smtp_port: int = Field(587, validation_alias=_env("smtp_port", "SMTP_PORT"))
    smtp_username: Optional[str] = Field(None, validation_alias=_env("smtp_username", "SMTP_USERNAME"))
    smtp_password: Optional[str] = Field(None, validation_alias=_env("smtp_password", "SMTP_PASSWORD"))
    smtp_use_ssl: bool = Field(False, validation_alias=_env("smtp_use_ssl", "SMTP_USE_SSL"))
    email_sender: str = Field("noreply@blocklease.site", validation_alias=_env("email_sender", "EMAIL_SENDER"))

    # Identity provider (KYC)
    identity_api_url: str = Field(
        "https://api.veriff.me/v1", validation_alias=_env("identity_api_url", "IDENTITY_API_URL")
    )
    identity_api_key: Optional[str] = Field(None, validation_alias=_env("identity_api_key", "IDENTITY_API_KEY"))
    identity_secret_key: Optional[str] = Field(
        None, validation_alias=_env("identity_secret_key", "IDENTITY_SECRET_KEY")
    )

    authenticity_threshold: float = AUTHENTICITY_THRESHOLD

    @field_validator("public_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")
