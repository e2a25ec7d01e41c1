from __future__ import annotations

import os
import re
from datetime import timedelta
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bearerguard.logging import get_logger
from bearerguard.service.errors import ConfigurationError

logger = get_logger(__name__)

# Go-style duration strings as used by the deployment configs: "24h", "1h30m", "-1h"
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

MIN_RECOMMENDED_KEY_BYTES = 32


def parse_duration(value: Any) -> timedelta:
    """Parse a duration given as seconds, a timedelta, or a Go-style string."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"unsupported duration value: {value!r}")
    text = value.strip()
    if not text:
        raise ValueError("duration must not be empty")
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=sign * total)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token service and its collaborators."""

    database_url: str = env_field(
        "postgresql://localhost:5432/bearerguard", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_key_prefix: str = env_field("bearerguard", "REDIS_KEY_PREFIX")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (memory fallbacks, runtime resets).",
    )
    jwt_signing_key: str = env_field(
        None,
        "JWT_SIGNING_KEY",
        validate_default=True,
        description="HMAC-SHA-256 signing secret; the service refuses to start without it",
    )
    jwt_issuer: str = env_field("bearerguard", "JWT_ISSUER")
    token_duration: timedelta = env_field(
        timedelta(hours=24),
        "JWT_TOKEN_DURATION",
        description="Lifetime of issued tokens (seconds or Go-style duration, e.g. 24h)",
    )
    revocation_window: timedelta = env_field(
        timedelta(hours=24),
        "TOKEN_REVOKE_DURATION",
        description="How long a revoked_before record stays authoritative; keep >= token_duration",
    )
    revocation_fail_closed: bool = env_field(
        False,
        "REVOCATION_FAIL_CLOSED",
        description="Reject tokens when the revocation store cannot be read during validation",
    )
    allow_registration: bool = env_field(True, "ENABLE_REGISTRATION")
    allow_token_revoke: bool = env_field(True, "ENABLE_TOKEN_REVOKE")
    min_password_length: int = env_field(6, "MIN_PASSWORD_LENGTH")

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

    @field_validator("jwt_signing_key", mode="before")
    @classmethod
    def _require_signing_key(cls, value: str | None) -> str:
        if not value:
            raise ConfigurationError(
                "JWT_SIGNING_KEY is required. Set it via environment variable or .env file."
            )
        if len(str(value).encode()) < MIN_RECOMMENDED_KEY_BYTES:
            logger.warning(
                "jwt_signing_key_short",
                key_bytes=len(str(value).encode()),
                recommended_bytes=MIN_RECOMMENDED_KEY_BYTES,
            )
        return value

    @field_validator("token_duration", "revocation_window", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator("min_password_length")
    @classmethod
    def _validate_password_length(cls, value: int) -> int:
        if value < 1:
            raise ValueError("min_password_length must be positive")
        return value

    @model_validator(mode="after")
    def _check_window_covers_tokens(self) -> "Settings":
        if self.revocation_window <= timedelta(0):
            raise ConfigurationError(
                "TOKEN_REVOKE_DURATION must be positive; a non-positive window makes every revocation inert."
            )
        if self.revocation_window < self.token_duration:
            # Stale revocation records would stop rejecting tokens that are still alive.
            logger.warning(
                "revocation_window_shorter_than_token_duration",
                revocation_window_seconds=self.revocation_window.total_seconds(),
                token_duration_seconds=self.token_duration.total_seconds(),
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
