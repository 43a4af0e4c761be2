"""Job execution state machine.

Per context the orchestrator moves between idle, running, and waiting for a
response. At most one job per context is running; the next pending job is
dequeued when the current one completes or fails. Cancelling never starts the
next job on its own.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .channels.models import ChannelConfig
from .dsl.parser import parse_command
from .jobs.models import Job, JobKind, JobStatus
from .jobs.queue import JobQueue
from .notify.channel import NotificationChannel, post_safely, send_large_message
from .notify.formatting import (
    format_command_error,
    format_dsl_completed,
    format_dsl_guide,
    format_job_cancelled,
    format_job_completed,
    format_job_failed,
    format_job_started,
    format_mixed_char_error,
    format_prompt_help,
)
from .progress import ProgressStatus, ProgressTracker
from .state.store import SessionStateStore
from .storage import JobJournal, record_safely
from .storage import models as events
from .tmux.controller import AgentStartError, PollTimeoutError, SessionController
from .tmux.output import CaptureSummary, PromptKind, detect_blocking_prompt


logger = logging.getLogger(__name__)

DSL_CAPTURE_WINDOW = 300
DSL_CAPTURE_KEEP = 30

Sleep = Callable[[float], Awaitable[None]]
Step = Callable[[], Awaitable[bool]]


class Orchestrator:
    """Drive queued jobs through the agent session of their context."""

    def __init__(
        self,
        queue: JobQueue,
        controller: SessionController,
        store: SessionStateStore,
        channel: NotificationChannel,
        *,
        tracker: ProgressTracker | None = None,
        journal: JobJournal | None = None,
        poll_interval: float = 5.0,
        max_polls: int = 120,
        response_timeout_minutes: float = 30,
        settle_delay: float = 0.5,
        chunk_size: int = 2500,
        message_delay: float = 0.5,
        retry_backoff: float = 1.0,
        sleep: Sleep | None = None,
    ) -> None:
        self._queue = queue
        self._controller = controller
        self._store = store
        self._channel = channel
        self._tracker = tracker
        self._journal = journal
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._response_timeout_minutes = response_timeout_minutes
        self._settle_delay = settle_delay
        self._chunk_size = chunk_size
        self._message_delay = message_delay
        self._retry_backoff = retry_backoff
        self._sleep = sleep or asyncio.sleep
        self._running: dict[str, Job] = {}
        self._responding: set[str] = set()

    @property
    def queue(self) -> JobQueue:
        return self._queue

    def add_job(self, context_id: str, kind: JobKind, payload: str) -> Job:
        job = self._queue.add_job(context_id, kind, payload)
        self._journal_event(job, events.JOB_ADDED, {"payload": payload})
        return job

    def get_running_job(self, context_id: str) -> Job | None:
        return self._running.get(context_id)

    def get_queue_summary(self, context_id: str) -> dict[str, int]:
        return self._queue.summary(context_id)

    def running_contexts(self) -> list[str]:
        return list(self._running)

    async def start_job(self, context_id: str, config: ChannelConfig) -> Job | None:
        """Run pending jobs for a context until one pauses or the queue drains.

        Returns the first job started by this call, or None when nothing was
        started because a job is already running or none is pending.
        """

        first: Job | None = None
        while True:
            if context_id in self._running:
                if first is None:
                    logger.warning("Job already running", extra={"context_id": context_id})
                return first

            job = self._queue.get_next_job(context_id)
            if job is None:
                logger.debug("No pending jobs", extra={"context_id": context_id})
                return first

            self._queue.update_status(job.id, JobStatus.RUNNING)
            self._running[context_id] = job
            first = first or job
            logger.info(
                "Starting job",
                extra={"job_id": job.id, "context_id": context_id, "kind": job.kind.value},
            )

            advance = await self._run_job(
                context_id, config, job, lambda: self._execute(context_id, config, job)
            )
            if not advance:
                return first

    async def handle_interactive_response(
        self, context_id: str, config: ChannelConfig, answer: str
    ) -> bool:
        """Send a y/n answer to a paused job and resume polling it.

        Returns False when the context is not waiting for a response.
        """

        if answer not in {"y", "n"}:
            raise ValueError("answer must be 'y' or 'n'")
        if not self._store.is_waiting_for_response(context_id):
            logger.warning("Not waiting for a response", extra={"context_id": context_id})
            return False
        if context_id in self._responding:
            logger.warning("Response already being delivered", extra={"context_id": context_id})
            return False

        # Claimed before the first await.
        self._responding.add(context_id)
        try:
            job = self._running.get(context_id)
            if job is None:
                # The paused job did not survive a restart; deliver the answer anyway.
                logger.warning("No running job for waiting context", extra={"context_id": context_id})
                result = await self._controller.respond(config.tmux_session, answer)
                result.raise_for_error()
                self._store.clear_session(context_id)
                await post_safely(
                    self._channel,
                    context_id,
                    f"Sent `{answer}`. The paused job is no longer tracked; queue a new job to continue.",
                )
                return True

            advance = await self._run_job(
                context_id,
                config,
                job,
                lambda: self._resume(context_id, config, job, answer),
                clear_on_failure=True,
            )
        finally:
            self._responding.discard(context_id)

        if advance:
            await self.start_job(context_id, config)
        return True

    async def cancel_job(self, context_id: str) -> bool:
        job = self._running.pop(context_id, None)
        if job is None:
            logger.warning("No running job to cancel", extra={"context_id": context_id})
            return False

        self._queue.update_status(job.id, JobStatus.CANCELLED)
        self._store.clear_session(context_id)
        logger.info("Job cancelled", extra={"job_id": job.id, "context_id": context_id})
        self._journal_event(job, events.JOB_CANCELLED, {})
        if self._tracker is not None:
            await self._tracker.stop_tracking(job.id, ProgressStatus.CANCELLED)
        await post_safely(self._channel, context_id, format_job_cancelled(job))
        return True

    async def _run_job(
        self,
        context_id: str,
        config: ChannelConfig,
        job: Job,
        step: Step,
        *,
        clear_on_failure: bool = False,
    ) -> bool:
        """Run one step of a job; every failure of that job is handled here."""

        try:
            return await step()
        except Exception as exc:  # noqa: BLE001
            if not self._owns(context_id, job):
                logger.info(
                    "Discarding failure of cancelled job",
                    extra={"job_id": job.id, "error": str(exc)},
                )
                return False
            error = str(exc) or exc.__class__.__name__
            logger.error(
                "Job execution failed",
                extra={"job_id": job.id, "context_id": context_id, "error": error},
            )
            if clear_on_failure:
                self._store.clear_session(context_id)
            await self._finish(context_id, job, JobStatus.FAILED, error)
            await post_safely(self._channel, context_id, format_job_failed(job, error))
            return True

    async def _execute(self, context_id: str, config: ChannelConfig, job: Job) -> bool:
        self._journal_event(job, events.JOB_STARTED, {"session": config.tmux_session})
        await post_safely(self._channel, context_id, format_job_started(job, config.project_name))
        if job.kind is JobKind.DSL_COMMAND:
            return await self._execute_dsl(context_id, config, job)
        return await self._execute_prompt(context_id, config, job)

    async def _execute_dsl(self, context_id: str, config: ChannelConfig, job: Job) -> bool:
        parsed = parse_command(job.payload)
        error = parsed.error
        if error is not None:
            message = "\n\n".join(
                [format_mixed_char_error(error.key_chars, error.other_chars), format_dsl_guide()]
            )
            await post_safely(self._channel, context_id, message)
            await self._finish(context_id, job, JobStatus.FAILED, str(error))
            return True

        session = config.tmux_session
        executed = await self._controller.execute_sequence(session, parsed.segments)
        if not executed.ok:
            await post_safely(
                self._channel, context_id, format_command_error(executed.error or "unknown error")
            )
        executed.raise_for_error()

        await self._sleep(self._settle_delay)
        capture = await self._controller.capture_tail(session, DSL_CAPTURE_WINDOW, DSL_CAPTURE_KEEP)
        if not self._owns(context_id, job):
            return False

        message = format_dsl_completed(job, capture)
        prompt = detect_blocking_prompt(capture.full_output)
        await self._send_output(context_id, message)
        if prompt is not None:
            await post_safely(self._channel, context_id, format_prompt_help(prompt))
        await self._finish(context_id, job, JobStatus.COMPLETED)
        return True

    async def _execute_prompt(self, context_id: str, config: ChannelConfig, job: Job) -> bool:
        session = config.tmux_session
        started = await self._controller.start_agent(session, config.project_path)
        if not self._owns(context_id, job):
            return False
        if not started.ok:
            raise AgentStartError(f"Failed to start agent: {started.error}")

        sent = await self._controller.send_prompt(session, job.payload)
        if not self._owns(context_id, job):
            return False
        sent.raise_for_error()
        self._store.set_last_prompt(context_id, job.payload)

        if self._tracker is not None:
            await self._tracker.start_tracking(job.id, context_id, session)
        return await self._poll_and_report(context_id, config, job)

    async def _resume(self, context_id: str, config: ChannelConfig, job: Job, answer: str) -> bool:
        session = config.tmux_session
        result = await self._controller.respond(session, answer)
        if not self._owns(context_id, job):
            return False
        result.raise_for_error()
        self._store.set_waiting_for_response(context_id, False)
        self._journal_event(job, events.RESPONSE_SENT, {"answer": answer})
        if self._tracker is not None:
            await self._tracker.start_tracking(job.id, context_id, session)
        return await self._poll_and_report(context_id, config, job)

    async def _poll_and_report(self, context_id: str, config: ChannelConfig, job: Job) -> bool:
        capture = await self._controller.poll_until_stable(
            config.tmux_session, self._poll_interval, self._max_polls
        )
        if not self._owns(context_id, job):
            logger.info("Discarding output of cancelled job", extra={"job_id": job.id})
            return False
        if capture is None:
            raise PollTimeoutError(
                f"Output did not stabilize after {self._max_polls} polls"
            )

        prompt = detect_blocking_prompt(capture.full_output)
        if prompt is not None:
            await self._pause_for_prompt(context_id, job, capture, prompt)
            return False

        self._store.clear_session(context_id)
        await self._finish(context_id, job, JobStatus.COMPLETED)
        await self._send_output(context_id, format_job_completed(job, capture))
        return True

    async def _pause_for_prompt(
        self, context_id: str, job: Job, capture: CaptureSummary, prompt: PromptKind
    ) -> None:
        self._store.set_waiting_for_response(context_id, True, self._response_timeout_minutes)
        self._store.set_last_output(context_id, capture.full_output)
        logger.info(
            "Blocking prompt detected",
            extra={"job_id": job.id, "context_id": context_id, "prompt": prompt.value},
        )
        self._journal_event(job, events.PROMPT_DETECTED, {"prompt": prompt.value})
        if self._tracker is not None:
            await self._tracker.stop_tracking(job.id, ProgressStatus.WAITING)
        tail = "\n".join(capture.full_output.split("\n")[-DSL_CAPTURE_KEEP:])
        await post_safely(self._channel, context_id, format_prompt_help(prompt, tail))

    async def _finish(
        self, context_id: str, job: Job, status: JobStatus, error: str | None = None
    ) -> None:
        self._queue.update_status(job.id, status, error)
        if self._owns(context_id, job):
            del self._running[context_id]
        if status is JobStatus.COMPLETED:
            self._journal_event(job, events.JOB_COMPLETED, {})
        else:
            self._journal_event(job, events.JOB_FAILED, {"error": error})
        if self._tracker is not None:
            progress = ProgressStatus.COMPLETED if status is JobStatus.COMPLETED else ProgressStatus.FAILED
            await self._tracker.stop_tracking(job.id, progress, error)

    async def _send_output(self, context_id: str, text: str) -> None:
        await send_large_message(
            self._channel,
            context_id,
            text,
            max_length=self._chunk_size,
            delay=self._message_delay,
            backoff=self._retry_backoff,
            sleep=self._sleep,
        )

    def _owns(self, context_id: str, job: Job) -> bool:
        return self._running.get(context_id) is job

    def _journal_event(self, job: Job, event_type: str, body: dict[str, object]) -> None:
        record_safely(
            self._journal,
            context_id=job.context_id,
            event_type=event_type,
            body={"job_id": job.id, **body},
            metadata={"job_id": job.id, "kind": job.kind.value, "status": job.status.value},
        )


__all__ = ["Orchestrator"]
