"""Incremental progress reporting for running jobs.

The tracker runs beside the orchestrator's completion poll and only edits a
single chat message in place. Its failures are counted and may end tracking,
but never affect the job itself.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .notify.channel import NotificationChannel, NotificationError
from .notify.formatting import code_block, format_elapsed, format_progress
from .tmux.controller import SessionController
from .tmux.driver import TmuxDriverError


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0
DEFAULT_TIMEOUT = 60 * 60.0
DEFAULT_OUTPUT_LINES = 50
MAX_SESSION_FAILURES = 5
MAX_CHANNEL_FAILURES = 3


class ProgressStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    WAITING = "waiting"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ProgressState:
    job_id: str
    context_id: str
    session: str
    status: ProgressStatus
    start_time: float
    last_update: float
    output_hash: str | None = None
    message_ref: str | None = None
    session_failure_count: int = 0
    channel_failure_count: int = 0
    error: str | None = None


def _hash_output(output: str) -> str:
    return hashlib.sha256(output.encode("utf-8")).hexdigest()


class ProgressTracker:
    """Track running jobs independently, one state entry and timer pair per job."""

    def __init__(
        self,
        controller: SessionController,
        channel: NotificationChannel,
        *,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        output_lines: int = DEFAULT_OUTPUT_LINES,
        max_session_failures: int = MAX_SESSION_FAILURES,
        max_channel_failures: int = MAX_CHANNEL_FAILURES,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._controller = controller
        self._channel = channel
        self._interval = interval
        self._timeout = timeout
        self._output_lines = output_lines
        self._max_session_failures = max_session_failures
        self._max_channel_failures = max_channel_failures
        self._clock = clock or time.monotonic
        self._states: dict[str, ProgressState] = {}
        self._poll_tasks: dict[str, asyncio.Task[None]] = {}
        self._timeout_tasks: dict[str, asyncio.Task[None]] = {}

    def get_state(self, job_id: str) -> ProgressState | None:
        return self._states.get(job_id)

    def is_tracking(self, job_id: str) -> bool:
        return job_id in self._states

    def active_jobs(self) -> list[str]:
        return list(self._states)

    async def start_tracking(
        self,
        job_id: str,
        context_id: str,
        session: str,
        *,
        schedule: bool = True,
    ) -> ProgressState | None:
        """Post the initial message and start the poll and timeout timers.

        Returns None when the initial message cannot be posted.
        """

        if job_id in self._states:
            return self._states[job_id]

        now = self._clock()
        state = ProgressState(
            job_id=job_id,
            context_id=context_id,
            session=session,
            status=ProgressStatus.IN_PROGRESS,
            start_time=now,
            last_update=now,
        )
        try:
            state.message_ref = await self._channel.post(context_id, "⏳ Starting job...")
        except NotificationError as exc:
            logger.error(
                "Failed to start progress tracking",
                extra={"job_id": job_id, "context_id": context_id, "error": str(exc)},
            )
            return None

        self._states[job_id] = state
        if schedule:
            self._poll_tasks[job_id] = asyncio.create_task(self._poll_loop(job_id))
            self._timeout_tasks[job_id] = asyncio.create_task(self._timeout_timer(job_id))
        logger.info("Progress tracking started", extra={"job_id": job_id, "context_id": context_id})
        return state

    async def stop_tracking(
        self,
        job_id: str,
        status: ProgressStatus = ProgressStatus.COMPLETED,
        error: str | None = None,
    ) -> None:
        """Post the final update and drop the job's state; unknown jobs are ignored."""

        state = self._states.pop(job_id, None)
        self._cancel_timers(job_id)
        if state is None:
            logger.debug("Progress tracking not active", extra={"job_id": job_id})
            return

        if state.status is ProgressStatus.IN_PROGRESS or status is not ProgressStatus.COMPLETED:
            state.status = ProgressStatus(status)
        if error:
            state.error = error

        if state.message_ref is not None:
            output = await self._capture(state)
            text = self._status_message(state)
            if output:
                text = f"{text}\n\n{code_block(output)}"
            try:
                await self._channel.update(state.message_ref, text)
            except NotificationError as exc:
                logger.error("Failed to post final progress", extra={"job_id": job_id, "error": str(exc)})
        logger.info("Progress tracking stopped", extra={"job_id": job_id, "status": state.status.value})

    async def tick(self, job_id: str) -> None:
        """Capture once and update the progress message if the output changed."""

        state = self._states.get(job_id)
        if state is None or state.status is not ProgressStatus.IN_PROGRESS:
            return

        output = await self._capture(state)
        if not output:
            state.session_failure_count += 1
            logger.warning(
                "No output captured",
                extra={
                    "job_id": job_id,
                    "failures": state.session_failure_count,
                    "threshold": self._max_session_failures,
                },
            )
            if state.session_failure_count >= self._max_session_failures:
                message = f"tmux session not responding ({state.session_failure_count} consecutive failures)"
                await self._abort(state, message, notify=True)
            return

        if state.session_failure_count:
            logger.info("Session capture recovered", extra={"job_id": job_id})
            state.session_failure_count = 0

        output_hash = _hash_output(output)
        if output_hash == state.output_hash:
            return

        elapsed = self._clock() - state.start_time
        if state.message_ref is not None:
            try:
                await self._channel.update(state.message_ref, format_progress(elapsed, output))
            except NotificationError as exc:
                state.channel_failure_count += 1
                logger.error(
                    "Progress update failed",
                    extra={
                        "job_id": job_id,
                        "failures": state.channel_failure_count,
                        "threshold": self._max_channel_failures,
                        "error": str(exc),
                    },
                )
                if state.channel_failure_count >= self._max_channel_failures:
                    message = f"notification channel failing ({state.channel_failure_count} consecutive failures)"
                    await self._abort(state, message, notify=False)
                return
            if state.channel_failure_count:
                logger.info("Notification channel recovered", extra={"job_id": job_id})
                state.channel_failure_count = 0

        state.output_hash = output_hash
        state.last_update = self._clock()

    async def expire(self, job_id: str) -> None:
        """Handle the hard timeout: notify, stop polling, and keep the state for ``stop_tracking``."""

        self._timeout_tasks.pop(job_id, None)
        state = self._states.get(job_id)
        if state is None:
            return
        logger.warning("Progress tracking timed out", extra={"job_id": job_id, "timeout": self._timeout})
        state.status = ProgressStatus.FAILED
        state.error = f"job exceeded {format_elapsed(self._timeout)}"
        if state.message_ref is not None:
            try:
                await self._channel.update(state.message_ref, f"⏰ Job timed out ({state.error})")
            except NotificationError as exc:
                logger.error("Failed to post timeout notice", extra={"job_id": job_id, "error": str(exc)})
        self._cancel_task(self._poll_tasks.pop(job_id, None))

    async def _capture(self, state: ProgressState) -> str:
        try:
            capture = await self._controller.capture_tail(state.session, self._output_lines)
        except TmuxDriverError as exc:
            logger.warning("Progress capture failed", extra={"job_id": state.job_id, "error": str(exc)})
            return ""
        return capture.full_output

    async def _abort(self, state: ProgressState, message: str, *, notify: bool) -> None:
        logger.error("Aborting progress tracking", extra={"job_id": state.job_id, "reason": message})
        state.status = ProgressStatus.FAILED
        state.error = message
        self._states.pop(state.job_id, None)
        self._cancel_timers(state.job_id)
        if notify and state.message_ref is not None:
            try:
                await self._channel.update(state.message_ref, f"❌ {message}\n\nProgress updates stopped.")
            except NotificationError as exc:
                logger.error("Failed to post abort notice", extra={"job_id": state.job_id, "error": str(exc)})

    async def _poll_loop(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self._interval)
            state = self._states.get(job_id)
            if state is None or state.status is not ProgressStatus.IN_PROGRESS:
                return
            await self.tick(job_id)

    async def _timeout_timer(self, job_id: str) -> None:
        await asyncio.sleep(self._timeout)
        await self.expire(job_id)

    def _cancel_timers(self, job_id: str) -> None:
        self._cancel_task(self._poll_tasks.pop(job_id, None))
        self._cancel_task(self._timeout_tasks.pop(job_id, None))

    @staticmethod
    def _cancel_task(task: asyncio.Task[None] | None) -> None:
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _status_message(self, state: ProgressState) -> str:
        elapsed = format_elapsed(self._clock() - state.start_time)
        if state.status is ProgressStatus.COMPLETED:
            return f"✅ Job completed (total {elapsed})"
        if state.status is ProgressStatus.FAILED:
            return f"❌ Job failed: {state.error or 'unknown error'}"
        if state.status is ProgressStatus.WAITING:
            return "⏸️ Waiting for your response..."
        if state.status is ProgressStatus.CANCELLED:
            return f"🚫 Job cancelled after {elapsed}"
        return f"🔄 Working... (elapsed {elapsed})"


__all__ = ["ProgressState", "ProgressStatus", "ProgressTracker"]
