from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from coursesphere.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the CourseSphere auth core."""

    supabase_url: str | None = env_field(None, "SUPABASE_URL")
    supabase_anon_key: str | None = env_field(None, "SUPABASE_ANON_KEY")
    supabase_service_role_key: str | None = env_field(
        None,
        "SUPABASE_SERVICE_ROLE_KEY",
        description="Record store key; falls back to the anon key when unset",
    )
    app_base_url: str = env_field("http://localhost:3000", "APP_BASE_URL")
    profile_table: str = env_field("users", "PROFILE_TABLE")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    session_cookie_secure: bool = env_field(True, "SESSION_COOKIE_SECURE")
    session_cookie_samesite: str = env_field("lax", "SESSION_COOKIE_SAMESITE")
    session_cookie_max_age_days: int = env_field(
        30,
        "SESSION_COOKIE_MAX_AGE_DAYS",
        description="Lifetime of the session cookies; the access token expiry is tracked separately",
    )
    min_password_length: int = env_field(6, "MIN_PASSWORD_LENGTH")
    http_timeout_seconds: float = env_field(10.0, "HTTP_TIMEOUT_SECONDS")
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    enable_hsts: bool = env_field(False, "ENABLE_HSTS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("session_cookie_samesite")
    @classmethod
    def _validate_samesite(cls, value: str) -> str:
        normalized = (value or "lax").lower()
        if normalized not in {"lax", "strict", "none"}:
            raise ValueError("session_cookie_samesite must be one of lax, strict, none")
        return normalized

    @field_validator("supabase_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @field_validator("min_password_length")
    @classmethod
    def _validate_min_password_length(cls, value: int) -> int:
        if value < 1:
            raise ValueError("min_password_length must be positive")
        return value

    @model_validator(mode="after")
    def _require_supabase(self) -> "Settings":
        if self.session_cookie_samesite == "none" and not self.session_cookie_secure:
            logger.warning(
                "insecure_cookie_config",
                message="SameSite=None cookies are rejected by browsers without Secure",
            )
        if self.use_memory_store:
            return self
        missing = [
            name
            for name in ("supabase_url", "supabase_anon_key")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} required unless USE_MEMORY_STORE is enabled"
            )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
