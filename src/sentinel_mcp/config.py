"""Configuration management for Sentinel."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SentinelSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    inactivity_timeout_ms: int = Field(
        default=120_000, validation_alias="SENTINEL_INACTIVITY_TIMEOUT_MS"
    )
    history_limit: int = Field(default=50, validation_alias="SENTINEL_HISTORY_LIMIT")
    host: str = Field(default="127.0.0.1", validation_alias="SENTINEL_HOST")
    port: int = Field(default=8765, validation_alias="SENTINEL_PORT")
    log_level: str = Field(default="INFO", validation_alias="SENTINEL_LOG_LEVEL")
    server_url: str = Field(
        default="http://localhost:8765", validation_alias="SENTINEL_SERVER_URL"
    )
    poll_interval_seconds: float = Field(default=1.0, validation_alias="SENTINEL_POLL_INTERVAL")
    bypass_minutes: float = Field(default=5.0, validation_alias="SENTINEL_BYPASS_MINUTES")
    request_timeout_seconds: float = Field(
        default=2.0, validation_alias="SENTINEL_REQUEST_TIMEOUT"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SENTINEL_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("inactivity_timeout_ms", "history_limit")
    @classmethod
    def _validate_positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SENTINEL_INACTIVITY_TIMEOUT_MS and SENTINEL_HISTORY_LIMIT must be >= 1")
        return value

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError("SENTINEL_PORT must be between 1 and 65535")
        return value

    @field_validator("poll_interval_seconds", "bypass_minutes", "request_timeout_seconds")
    @classmethod
    def _validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Intervals, timeouts and bypass durations must be > 0")
        return value

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> SentinelSettings:
    """Return cached settings instance."""

    return SentinelSettings()


__all__ = ["SentinelSettings", "get_settings"]
