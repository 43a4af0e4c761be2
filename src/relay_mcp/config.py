"""Configuration management for Relay MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    tmux_path: str | None = Field(default=None, validation_alias="TMUX_PATH")
    agent_command: str = Field(default="claude", validation_alias="RELAY_AGENT_COMMAND")
    state_file: Path = Field(
        default=Path("./storage/state.json"), validation_alias="RELAY_STATE_FILE"
    )
    channel_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("channels"),), validation_alias="RELAY_CHANNEL_PATHS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="RELAY_LOG_LEVEL")

    poll_interval_seconds: float = Field(default=5.0, validation_alias="RELAY_POLL_INTERVAL")
    max_polls: int = Field(default=120, validation_alias="RELAY_MAX_POLLS")
    response_timeout_minutes: int = Field(
        default=30, validation_alias="RELAY_RESPONSE_TIMEOUT_MINUTES"
    )
    job_retention_hours: float = Field(default=24.0, validation_alias="RELAY_JOB_RETENTION_HOURS")
    sweep_interval_minutes: float = Field(
        default=5.0, validation_alias="RELAY_SWEEP_INTERVAL_MINUTES"
    )
    progress_interval_seconds: float = Field(
        default=5.0, validation_alias="RELAY_PROGRESS_INTERVAL"
    )
    progress_timeout_seconds: float = Field(
        default=3600.0, validation_alias="RELAY_PROGRESS_TIMEOUT"
    )
    key_delay_seconds: float = Field(default=0.5, validation_alias="RELAY_KEY_DELAY")
    settle_delay_seconds: float = Field(default=0.5, validation_alias="RELAY_SETTLE_DELAY")
    chunk_size: int = Field(default=2500, validation_alias="RELAY_CHUNK_SIZE")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "RELAY_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("channel_paths", mode="before")
    @classmethod
    def _parse_channel_paths(cls, value):
        if value is None or value == "":
            return (Path("channels"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("channels"),)
        raise TypeError("RELAY_CHANNEL_PATHS must be a list of paths or a path-separated string")

    @field_validator("max_polls", "response_timeout_minutes", "chunk_size")
    @classmethod
    def _validate_positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator(
        "poll_interval_seconds",
        "job_retention_hours",
        "sweep_interval_minutes",
        "progress_interval_seconds",
        "progress_timeout_seconds",
    )
    @classmethod
    def _validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("value must be > 0")
        return value

    @field_validator("key_delay_seconds", "settle_delay_seconds")
    @classmethod
    def _validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Return cached settings instance."""

    settings = RelaySettings()
    settings.state_file = settings.state_file.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.channel_paths = tuple(path.expanduser().resolve() for path in settings.channel_paths)
    return settings


__all__ = ["RelaySettings", "get_settings"]
