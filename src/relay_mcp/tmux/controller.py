"""Higher-level protocols for driving the coding agent inside tmux."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from ..dsl.parser import KeySegment, ParsedSegment
from .driver import TmuxDriver, TmuxDriverError, TmuxKey, TmuxResult
from .output import CaptureSummary, PromptKind, agent_is_ready, detect_blocking_prompt, summarize_capture


logger = logging.getLogger(__name__)

NO_CONVERSATION_MARKER = "No conversation found to continue"
AGENT_BANNER_MARKERS = ("Claude Code", "claude.com")
BRACKETED_PASTE_START = "\x1b[200~"
BRACKETED_PASTE_END = "\x1b[201~"
READY_PROBE_LINES = 20
REQUIRED_STABLE_POLLS = 2

Sleep = Callable[[float], Awaitable[None]]
ProgressCallback = Callable[[str, int], None]


class PollTimeoutError(TimeoutError):
    """Raised when output never stabilizes within the poll budget."""


class AgentStartError(RuntimeError):
    """Raised when the agent cannot be brought to its input prompt."""


class SessionController:
    """Sequence driver primitives into agent-level operations."""

    def __init__(
        self,
        driver: TmuxDriver,
        *,
        agent_command: str = "claude",
        resume_delay: float = 2.0,
        start_delay: float = 7.0,
        submit_delay: float = 0.5,
        key_delay: float = 0.5,
        settle_delay: float = 0.5,
        restart_delay: float = 1.0,
        sleep: Sleep | None = None,
    ) -> None:
        self._driver = driver
        self._agent_command = agent_command
        self._resume_delay = resume_delay
        self._start_delay = start_delay
        self._submit_delay = submit_delay
        self._key_delay = key_delay
        self._settle_delay = settle_delay
        self._restart_delay = restart_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def driver(self) -> TmuxDriver:
        return self._driver

    async def start_agent(self, session: str, cwd: str | Path, *, force: bool = False) -> TmuxResult:
        """Bring the agent to its input prompt, resuming the last conversation if possible."""

        ensured = await self._driver.ensure_session(session, cwd)
        if not ensured.ok:
            return ensured

        if not force:
            probe = await self._driver.capture_pane(session, -READY_PROBE_LINES)
            if probe.ok and agent_is_ready(probe.output):
                logger.info("Agent already running", extra={"session": session})
                return TmuxResult(args=probe.args, ok=True, output="already running")

        await self._driver.clear_history(session)
        await self._driver.send_text(session, f"{self._agent_command} --continue")
        await self._driver.send_enter(session)
        await self._sleep(self._resume_delay)

        resumed = await self._driver.capture_pane(session, -READY_PROBE_LINES)
        if resumed.ok and resumed.output and NO_CONVERSATION_MARKER not in resumed.output:
            logger.info("Agent resumed previous conversation", extra={"session": session})
            return TmuxResult(args=resumed.args, ok=True, output="resumed")

        logger.info("No conversation to resume; starting fresh", extra={"session": session})
        await self._driver.clear_history(session)
        await self._driver.send_text(session, self._agent_command)
        await self._driver.send_enter(session)
        await self._sleep(self._start_delay)

        started = await self._driver.capture_pane(session, -READY_PROBE_LINES)
        if started.ok and any(marker in started.output for marker in AGENT_BANNER_MARKERS):
            logger.info("Agent started", extra={"session": session})
            return TmuxResult(args=started.args, ok=True, output="started")

        logger.error("Agent failed to start", extra={"session": session})
        return TmuxResult(
            args=started.args,
            ok=False,
            error=(
                f"Failed to start '{self._agent_command}'. "
                "Check that the agent CLI is installed and on PATH."
            ),
        )

    async def restart_session(self, session: str, cwd: str | Path) -> TmuxResult:
        await self._driver.kill_session(session)
        await self._sleep(self._restart_delay)
        return await self._driver.create_session(session, cwd)

    async def send_prompt(self, session: str, text: str) -> TmuxResult:
        """Send a prompt and submit it with two Enter presses.

        Multi-line prompts go through a bracketed-paste envelope so embedded
        newlines stay part of the prompt instead of submitting it early.
        """

        logger.info("Sending prompt", extra={"session": session, "length": len(text)})
        payload = text
        if "\n" in text:
            payload = f"{BRACKETED_PASTE_START}{text}{BRACKETED_PASTE_END}"
        sent = await self._driver.send_text(session, payload)
        if not sent.ok:
            return sent

        for _ in range(2):
            entered = await self._driver.send_enter(session)
            if not entered.ok:
                return entered

        await self._sleep(self._submit_delay)
        return TmuxResult(args=sent.args, ok=True, output="prompt sent")

    async def capture_and_clean(
        self, session: str, first_lines: int = 100, last_lines: int = 80
    ) -> CaptureSummary:
        result = await self._driver.capture_pane(session)
        result.raise_for_error()
        return summarize_capture(result.output, first_lines, last_lines)

    async def capture_tail(self, session: str, window: int, keep: int | None = None) -> CaptureSummary:
        """Capture ``window`` lines of scrollback and keep the last ``keep`` of them."""

        result = await self._driver.capture_pane(session, -window)
        result.raise_for_error()
        return summarize_capture(result.output, 0, keep if keep is not None else window)

    async def poll_until_stable(
        self,
        session: str,
        interval: float = 5.0,
        max_polls: int = 120,
        on_progress: ProgressCallback | None = None,
    ) -> CaptureSummary | None:
        """Poll until the cleaned capture stops changing.

        The capture must match its predecessor on ``REQUIRED_STABLE_POLLS``
        consecutive polls; any change resets the count. Returns None when the
        budget runs out.
        """

        previous: str | None = None
        stable_count = 0
        for poll in range(max_polls):
            capture = await self.capture_and_clean(session)
            if on_progress is not None:
                on_progress(capture.full_output, poll + 1)

            if previous is not None and capture.full_output == previous:
                stable_count += 1
                if stable_count >= REQUIRED_STABLE_POLLS:
                    logger.info(
                        "Output stable", extra={"session": session, "polls": poll + 1}
                    )
                    return capture
            else:
                stable_count = 0
            previous = capture.full_output

            if poll < max_polls - 1:
                await self._sleep(interval)

        logger.warning("Polling budget exhausted", extra={"session": session, "polls": max_polls})
        return None

    @staticmethod
    def detect_blocking_prompt(output: str) -> PromptKind | None:
        return detect_blocking_prompt(output)

    async def respond(self, session: str, answer: str) -> TmuxResult:
        if answer not in {"y", "n"}:
            raise ValueError("answer must be 'y' or 'n'")
        sent = await self._driver.send_text(session, answer)
        if not sent.ok:
            return sent
        return await self._driver.send_enter(session)

    async def execute_sequence(
        self,
        session: str,
        segments: Sequence[ParsedSegment],
        *,
        key_delay: float | None = None,
        settle_delay: float | None = None,
    ) -> TmuxResult:
        """Send parsed segments in order, stopping at the first failure."""

        key_delay = self._key_delay if key_delay is None else key_delay
        settle_delay = self._settle_delay if settle_delay is None else settle_delay
        last = TmuxResult(args=("send-keys", "-t", session), ok=True)

        for index, segment in enumerate(segments):
            if isinstance(segment, KeySegment):
                last = await self._driver.send_key(session, TmuxKey(segment.key.value))
            else:
                last = await self._driver.send_text(session, segment.content)
            if not last.ok:
                logger.error(
                    "Command sequence aborted",
                    extra={"session": session, "index": index, "error": last.error},
                )
                return last
            if index < len(segments) - 1:
                await self._sleep(key_delay)

        await self._sleep(settle_delay)
        return last


__all__ = [
    "AGENT_BANNER_MARKERS",
    "AgentStartError",
    "NO_CONVERSATION_MARKER",
    "PollTimeoutError",
    "SessionController",
    "TmuxDriverError",
]
