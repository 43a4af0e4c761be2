"""Channel registration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ChannelConfig(BaseModel):
    """Binds a chat context to a project directory and its tmux session."""

    context_id: str = Field(..., description="Stable identifier of the chat context.")
    project_name: str = Field(..., description="Display name of the project.")
    project_path: str = Field(..., description="Working directory the agent runs in.")
    tmux_session: str = Field(..., description="Name of the tmux session driving the agent.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata carried into journal events.",
    )

    @field_validator("context_id", "tmux_session", "project_path")
    @classmethod
    def _require_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("value must not be empty")
        return normalized

    @field_validator("tmux_session")
    @classmethod
    def _validate_session_name(cls, value: str) -> str:
        # tmux treats ":" and "." as target separators.
        if any(char in value for char in ":. "):
            raise ValueError("tmux session names must not contain ':', '.', or spaces")
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _ensure_mapping(cls, value: Any):  # type: ignore[override]
        if value is None:
            return {}
        return value


__all__ = ["ChannelConfig"]
