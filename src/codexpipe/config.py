"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in codexpipe.toml. Secrets (the Codex API key) live
in .env. Environment variables override both using ``__`` as the nested
delimiter (e.g. ``CODEX__MODEL_ID``, ``SECRETS__CODEX_API_KEY``). Secrets use
SecretStr for masking in logs.

Priority (highest wins): init args > env vars > .env > codexpipe.toml

Usage::

    from codexpipe.config import get_settings

    s = get_settings()
    print(s.codex.path)
    print(s.codex.auth_mode)
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in codexpipe.toml)
# ---------------------------------------------------------------------------

_MIN_LINE_BYTES = 64 * 1024


class _StrictModel(BaseModel):
    """Base for all config sub-models: reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class CodexConfig(_StrictModel):
    path: str = "codex"
    model_id: str | None = None  # None or blank = registry default
    # "chatgpt" = interactive session login; "api-key" = key passed via env
    auth_mode: Literal["chatgpt", "api-key"] = "chatgpt"
    api_key_env_var: str = "OPENAI_API_KEY"
    output_schema: str | None = None  # path to a JSON schema file
    sandbox: str | None = None  # e.g. "read-only", "workspace-write"
    full_auto: bool = False
    prompt_format: Literal["json", "transcript"] = "json"
    cwd: str | None = None  # None = inherit
    max_line_bytes: int = 64 * 1024 * 1024  # 64MB
    max_stderr_size: int = 1024 * 1024  # 1MB

    @field_validator("path")
    @classmethod
    def default_blank_path(cls, v: str) -> str:
        return v.strip() or "codex"

    @field_validator("max_line_bytes")
    @classmethod
    def clamp_max_line_bytes(cls, v: int) -> int:
        return max(_MIN_LINE_BYTES, v)

    @field_validator("api_key_env_var")
    @classmethod
    def _validate_env_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("env var name cannot be empty")
        return v.strip()


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class SecretsConfig(_StrictModel):
    codex_api_key: SecretStr | None = None


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="codexpipe.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    codex: CodexConfig = CodexConfig()
    logging: LoggingConfig = LoggingConfig()
    secrets: SecretsConfig = SecretsConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > codexpipe.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @property
    def api_key(self) -> str | None:
        key = self.secrets.codex_api_key
        if key is None:
            return None
        return key.get_secret_value().strip() or None


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
