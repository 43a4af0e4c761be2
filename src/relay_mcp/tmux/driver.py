"""Async driver for tmux sessions."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping
import os


logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0

# tmux refuses to nest when TMUX is set; the agent shell must not inherit a virtualenv.
_STRIPPED_ENV_VARS = frozenset({"TMUX", "TMUX_PANE", "PYTHONHOME", "PYTHONPATH", "VIRTUAL_ENV"})


class TmuxDriverError(RuntimeError):
    """Base class for tmux driver errors."""


class TmuxNotFoundError(TmuxDriverError):
    """Raised when the tmux executable cannot be located."""


class TmuxKey(str, Enum):
    """Named keys accepted by ``send-keys``."""

    UP = "Up"
    DOWN = "Down"
    LEFT = "Left"
    RIGHT = "Right"
    ENTER = "Enter"
    SPACE = "Space"
    ESCAPE = "Escape"


@dataclass(slots=True)
class TmuxResult:
    """Holds the outcome of a tmux invocation."""

    args: tuple[str, ...]
    ok: bool
    output: str = ""
    error: str | None = None

    def raise_for_error(self) -> "TmuxResult":
        if not self.ok:
            raise TmuxDriverError(self.error or f"tmux command failed: {' '.join(self.args)}")
        return self


def tmux_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    env = {key: value for key, value in os.environ.items() if key not in _STRIPPED_ENV_VARS}
    env.update(additional or {})
    return env


def _literal_args(text: str) -> list[str]:
    # A payload starting with "-" would otherwise be parsed as a flag.
    if text.startswith("-"):
        return ["-l", "--", text]
    return ["-l", text]


class TmuxDriver:
    """Execute tmux primitives against named sessions.

    Every primitive returns a :class:`TmuxResult`; a failed invocation is never
    retried here and never raises. Callers decide whether a failure is fatal.
    """

    def __init__(
        self,
        executable: Path | None = None,
        *,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise TmuxNotFoundError(f"tmux executable not found at {candidate}")

        binary = shutil.which("tmux")
        if binary is None:
            raise TmuxNotFoundError("tmux executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def session_exists(self, session: str) -> bool:
        result = await self._invoke("has-session", "-t", session)
        return result.ok

    async def list_sessions(self) -> list[str]:
        result = await self._invoke("list-sessions", "-F", "#{session_name}")
        if not result.ok or not result.output:
            return []
        return [name for name in result.output.strip().splitlines() if name]

    async def create_session(self, session: str, cwd: str | Path) -> TmuxResult:
        logger.info("Creating tmux session", extra={"session": session, "cwd": str(cwd)})
        return await self._invoke("new-session", "-d", "-s", session, "-c", str(cwd))

    async def ensure_session(self, session: str, cwd: str | Path) -> TmuxResult:
        if await self.session_exists(session):
            return TmuxResult(args=("has-session", "-t", session), ok=True, output="exists")
        return await self.create_session(session, cwd)

    async def kill_session(self, session: str) -> TmuxResult:
        if not await self.session_exists(session):
            logger.warning("tmux session does not exist", extra={"session": session})
            return TmuxResult(
                args=("kill-session", "-t", session),
                ok=False,
                error=f"Session {session} does not exist",
            )
        return await self._invoke("kill-session", "-t", session)

    async def send_text(self, session: str, text: str, *, literal: bool = True) -> TmuxResult:
        """Send text, one ``send-keys`` call per line with Enter between lines."""

        if "\n" not in text:
            return await self._send_line(session, text, literal=literal)

        lines = text.split("\n")
        last: TmuxResult | None = None
        for index, line in enumerate(lines):
            if line:
                last = await self._send_line(session, line, literal=literal)
                if not last.ok:
                    return last
            if index < len(lines) - 1:
                last = await self.send_enter(session)
                if not last.ok:
                    return last
        return last or TmuxResult(args=("send-keys", "-t", session), ok=True)

    async def _send_line(self, session: str, line: str, *, literal: bool) -> TmuxResult:
        if literal:
            return await self._invoke("send-keys", "-t", session, *_literal_args(line))
        return await self._invoke("send-keys", "-t", session, line)

    async def send_key(self, session: str, key: TmuxKey | str) -> TmuxResult:
        name = TmuxKey(getattr(key, "value", key))
        return await self._invoke("send-keys", "-t", session, name.value)

    async def send_enter(self, session: str) -> TmuxResult:
        return await self.send_key(session, TmuxKey.ENTER)

    async def capture_pane(
        self,
        session: str,
        start_line: int | None = None,
        end_line: int | None = None,
    ) -> TmuxResult:
        args = ["capture-pane", "-t", session, "-p"]
        if start_line is not None:
            args.extend(["-S", str(start_line)])
        if end_line is not None:
            args.extend(["-E", str(end_line)])
        return await self._invoke(*args)

    async def clear_history(self, session: str) -> TmuxResult:
        return await self._invoke("clear-history", "-t", session)

    async def _invoke(self, *args: str) -> TmuxResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=tmux_environment(),
            )
        except OSError as exc:
            logger.error("tmux command could not start", extra={"tmux_args": args, "error": str(exc)})
            return TmuxResult(args=tuple(args), ok=False, error=str(exc))

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            message = f"tmux {args[0]} timed out after {self._timeout:g}s"
            logger.error(message, extra={"tmux_args": args})
            return TmuxResult(args=tuple(args), ok=False, error=message)

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            error = stderr or f"tmux {args[0]} exited with status {process.returncode}"
            logger.error("tmux command failed", extra={"tmux_args": args, "error": error})
            return TmuxResult(args=tuple(args), ok=False, output=stdout, error=error)
        if stderr:
            logger.warning("tmux command stderr", extra={"tmux_args": args, "stderr": stderr})
        return TmuxResult(args=tuple(args), ok=True, output=stdout, error=stderr or None)


class FakeTmuxDriver(TmuxDriver):
    """Test double that simulates tmux sessions in memory.

    ``screens`` maps a session name to the captures it returns, in order; the
    last capture repeats once the list is exhausted. ``fail`` maps a tmux
    subcommand to the number of upcoming calls that should fail.
    """

    def __init__(  # type: ignore[override]
        self,
        screens: Mapping[str, Iterable[str]] | None = None,
        *,
        sessions: Iterable[str] | None = None,
        fail: Mapping[str, int] | None = None,
    ) -> None:
        self._executable_path = Path("/tmp/fake-tmux")
        self._timeout = DEFAULT_COMMAND_TIMEOUT
        self._screens: dict[str, list[str]] = {
            name: list(values) for name, values in (screens or {}).items()
        }
        self._sessions: set[str] = set(sessions or ())
        self._fail: defaultdict[str, int] = defaultdict(int, fail or {})
        self._invocations: list[tuple[str, ...]] = []

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def sessions(self) -> set[str]:
        return self._sessions

    def set_screens(self, session: str, *captures: str) -> None:
        self._screens[session] = list(captures)

    def fail_next(self, command: str, times: int = 1) -> None:
        self._fail[command] += times

    def calls(self, command: str) -> list[tuple[str, ...]]:
        return [args for args in self._invocations if args and args[0] == command]

    def sent_keys(self, session: str | None = None) -> list[str]:
        """Return the payload of every ``send-keys`` call, in order."""

        payloads: list[str] = []
        for args in self.calls("send-keys"):
            if session is not None and args[2] != session:
                continue
            payloads.append(args[-1])
        return payloads

    async def _invoke(self, *args: str) -> TmuxResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        command = args[0]
        if self._fail[command] > 0:
            self._fail[command] -= 1
            return TmuxResult(args=tuple(args), ok=False, error=f"simulated {command} failure")

        session = args[args.index("-t") + 1] if "-t" in args else None
        if command == "has-session":
            return TmuxResult(args=tuple(args), ok=session in self._sessions)
        if command == "new-session":
            self._sessions.add(args[args.index("-s") + 1])
        elif command == "kill-session":
            self._sessions.discard(session or "")
        elif command == "list-sessions":
            return TmuxResult(args=tuple(args), ok=True, output="\n".join(sorted(self._sessions)))
        elif command == "capture-pane":
            captures = self._screens.get(session or "", [])
            if not captures:
                return TmuxResult(args=tuple(args), ok=True, output="")
            output = captures.pop(0) if len(captures) > 1 else captures[0]
            return TmuxResult(args=tuple(args), ok=True, output=output)
        return TmuxResult(args=tuple(args), ok=True)


__all__ = [
    "DEFAULT_COMMAND_TIMEOUT",
    "FakeTmuxDriver",
    "TmuxDriver",
    "TmuxDriverError",
    "TmuxKey",
    "TmuxNotFoundError",
    "TmuxResult",
    "tmux_environment",
]
