from __future__ import annotations

from pathlib import Path
import os

import pytest
from pydantic import ValidationError

from relay_mcp.config import RelaySettings


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv("RELAY_CHANNEL_PATHS", raising=False)
    monkeypatch.delenv("RELAY_LOG_LEVEL", raising=False)

    settings = RelaySettings()

    assert settings.channel_paths == (Path("channels"),)
    assert settings.log_level == "INFO"
    assert settings.agent_command == "claude"
    assert settings.response_timeout_minutes == 30
    assert settings.chunk_size == 2500


def test_channel_paths_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("RELAY_CHANNEL_PATHS", os.pathsep.join(["/etc/relay", " ./channels "]))

    settings = RelaySettings()

    assert settings.channel_paths == (Path("/etc/relay"), Path("channels"))


def test_log_level_is_normalized(monkeypatch) -> None:
    monkeypatch.setenv("RELAY_LOG_LEVEL", " debug ")

    assert RelaySettings().log_level == "DEBUG"


def test_invalid_log_level_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("RELAY_LOG_LEVEL", "chatty")

    with pytest.raises(ValidationError):
        RelaySettings()


@pytest.mark.parametrize(
    ("variable", "value"),
    [
        ("RELAY_MAX_POLLS", "0"),
        ("RELAY_POLL_INTERVAL", "0"),
        ("RELAY_KEY_DELAY", "-1"),
    ],
)
def test_bounds_are_validated(monkeypatch, variable: str, value: str) -> None:
    monkeypatch.setenv(variable, value)

    with pytest.raises(ValidationError):
        RelaySettings()
