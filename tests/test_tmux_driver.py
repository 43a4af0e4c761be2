from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from relay_mcp.tmux.driver import (
    FakeTmuxDriver,
    TmuxDriver,
    TmuxDriverError,
    TmuxKey,
    TmuxNotFoundError,
    TmuxResult,
    _literal_args,
    tmux_environment,
)


def _script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "tmux"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_driver_passes_capture_range(tmp_path: Path) -> None:
    driver = TmuxDriver(_script(tmp_path, 'echo "$@"'))

    result = asyncio.run(driver.capture_pane("work", -50))

    assert result.ok
    assert result.output.strip() == "capture-pane -t work -p -S -50"


def test_driver_reports_failure_without_raising(tmp_path: Path) -> None:
    driver = TmuxDriver(_script(tmp_path, "echo \"can't find session: work\" >&2\nexit 1"))

    result = asyncio.run(driver.send_key("work", TmuxKey.ENTER))

    assert not result.ok
    assert "can't find session" in (result.error or "")
    with pytest.raises(TmuxDriverError):
        result.raise_for_error()


def test_driver_times_out(tmp_path: Path) -> None:
    driver = TmuxDriver(_script(tmp_path, "sleep 5"), timeout=0.2)

    result = asyncio.run(driver.capture_pane("work"))

    assert not result.ok
    assert "timed out" in (result.error or "")


def test_tmux_not_found(tmp_path: Path) -> None:
    with pytest.raises(TmuxNotFoundError):
        TmuxDriver(tmp_path / "missing")


def test_literal_args_guard_leading_dash() -> None:
    assert _literal_args("--help") == ["-l", "--", "--help"]
    assert _literal_args("hello") == ["-l", "hello"]


def test_send_text_splits_lines_with_enter_between() -> None:
    driver = FakeTmuxDriver(sessions={"work"})

    asyncio.run(driver.send_text("work", "first\n\nthird"))

    assert driver.sent_keys("work") == ["first", "Enter", "Enter", "third"]


def test_ensure_session_creates_once() -> None:
    driver = FakeTmuxDriver()

    async def scenario() -> tuple[TmuxResult, TmuxResult]:
        created = await driver.ensure_session("work", "/srv/app")
        existing = await driver.ensure_session("work", "/srv/app")
        return created, existing

    created, existing = asyncio.run(scenario())

    assert created.ok and existing.output == "exists"
    assert driver.calls("new-session") == [("new-session", "-d", "-s", "work", "-c", "/srv/app")]


def test_kill_missing_session_fails() -> None:
    driver = FakeTmuxDriver()

    result = asyncio.run(driver.kill_session("ghost"))

    assert not result.ok
    assert driver.calls("kill-session") == []


def test_list_sessions_and_kill() -> None:
    driver = FakeTmuxDriver(sessions={"alpha", "beta"})

    async def scenario() -> list[str]:
        await driver.kill_session("alpha")
        return await driver.list_sessions()

    assert asyncio.run(scenario()) == ["beta"]


def test_fake_driver_replays_screens_and_failures() -> None:
    driver = FakeTmuxDriver({"work": ["one", "two"]}, sessions={"work"})
    driver.fail_next("capture-pane")

    async def scenario() -> list[TmuxResult]:
        return [await driver.capture_pane("work") for _ in range(4)]

    results = asyncio.run(scenario())

    assert [result.ok for result in results] == [False, True, True, True]
    assert [result.output for result in results[1:]] == ["one", "two", "two"]


def test_tmux_environment_strips_tmux_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
    monkeypatch.setenv("VIRTUAL_ENV", "/venv")
    env = tmux_environment({"LANG": "C.UTF-8"})

    assert "TMUX" not in env
    assert "VIRTUAL_ENV" not in env
    assert env["LANG"] == "C.UTF-8"
