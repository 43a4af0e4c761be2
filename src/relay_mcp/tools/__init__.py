"""Tool registration for Relay MCP."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable

from fastmcp import Context, FastMCP

from ..channels import ChannelConfig, ChannelRegistry
from ..config import RelaySettings
from ..dsl import looks_like_dsl
from ..jobs import JobKind, JobQueue
from ..notify import OutboxChannel
from ..orchestrator import Orchestrator
from ..state import SessionState, SessionStateStore
from ..storage import JobJournal


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    add_job: Any
    start_job: Any
    cancel_job: Any
    respond: Any
    running_job: Any
    queue_summary: Any
    session_state: Any
    read_messages: Any
    job_history: Any
    background: set[asyncio.Task[Any]] = field(default_factory=set)

    async def drain(self) -> None:
        """Wait until every scheduled background job run has finished."""

        while self.background:
            await asyncio.gather(*list(self.background), return_exceptions=True)


def infer_kind(text: str) -> JobKind:
    return JobKind.DSL_COMMAND if looks_like_dsl(text) else JobKind.ASK_PROMPT


def register_tools(
    server: FastMCP,
    *,
    orchestrator: Orchestrator | None,
    queue: JobQueue,
    state_store: SessionStateStore,
    channels: ChannelRegistry,
    outbox: OutboxChannel,
    settings: RelaySettings,
    journal: JobJournal | None,
) -> ToolHandles:
    """Register Relay's MCP tools on the server."""

    background: set[asyncio.Task[Any]] = set()

    def _channel(context_id: str) -> ChannelConfig:
        config = channels.get(context_id)
        if config is None:
            raise ValueError(f"Unknown context '{context_id}'")
        return config

    def _require_orchestrator() -> Orchestrator:
        if orchestrator is None:
            raise RuntimeError("tmux is unavailable; cannot run jobs")
        return orchestrator

    def _schedule(coro: Awaitable[Any], *, context_id: str) -> None:
        task = asyncio.create_task(coro)
        background.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            background.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    "Background job run failed",
                    extra={"context_id": context_id, "error": str(finished.exception())},
                )

        task.add_done_callback(_done)

    def _session_payload(state: SessionState | None, context_id: str) -> dict[str, Any]:
        payload = (state or SessionState(context_id=context_id)).to_dict()
        payload["hasTimedOut"] = state_store.has_timed_out(context_id)
        payload["responseTimeoutMinutes"] = settings.response_timeout_minutes
        return payload

    async def _add_job(
        context_id: str,
        text: str,
        kind: str | None = None,
        start: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Queue a prompt or key command for a context, optionally starting the queue."""

        config = _channel(context_id)
        if not text.strip():
            raise ValueError("Job text must not be empty")
        job_kind = JobKind(kind) if kind else infer_kind(text)
        runner = _require_orchestrator()

        job = runner.add_job(context_id, job_kind, text)
        _emit_log(
            context,
            "info",
            "Job queued",
            extra={"job_id": job.id, "context_id": context_id, "kind": job_kind.value},
        )

        scheduled = False
        if start and runner.get_running_job(context_id) is None:
            _schedule(runner.start_job(context_id, config), context_id=context_id)
            scheduled = True

        return {
            "job": job.to_dict(),
            "scheduled": scheduled,
            "queue": queue.summary(context_id),
        }

    async def _start_job(context_id: str, context: Context | None = None) -> dict[str, Any]:
        config = _channel(context_id)
        runner = _require_orchestrator()
        running = runner.get_running_job(context_id)
        if running is not None:
            return {"scheduled": False, "running_job": running.to_dict()}
        if queue.get_next_job(context_id) is None:
            return {"scheduled": False, "running_job": None}

        _schedule(runner.start_job(context_id, config), context_id=context_id)
        _emit_log(context, "info", "Queue started", extra={"context_id": context_id})
        return {"scheduled": True, "running_job": None}

    async def _cancel_job(context_id: str, context: Context | None = None) -> dict[str, Any]:
        _channel(context_id)
        runner = _require_orchestrator()
        job = runner.get_running_job(context_id)
        cancelled = await runner.cancel_job(context_id)
        _emit_log(
            context,
            "info",
            "Cancel requested",
            extra={"context_id": context_id, "cancelled": cancelled},
        )
        return {
            "cancelled": cancelled,
            "job_id": job.id if job is not None else None,
            "queue": queue.summary(context_id),
        }

    async def _respond(context_id: str, answer: str, context: Context | None = None) -> dict[str, Any]:
        """Answer a pending yes/no prompt and resume the paused job."""

        config = _channel(context_id)
        normalized = answer.strip().lower()
        if normalized not in {"y", "n"}:
            raise ValueError("answer must be 'y' or 'n'")
        if not state_store.is_waiting_for_response(context_id):
            return {"accepted": False, "reason": "Context is not waiting for a response"}

        _schedule(
            _require_orchestrator().handle_interactive_response(context_id, config, normalized),
            context_id=context_id,
        )
        _emit_log(
            context, "info", "Response scheduled", extra={"context_id": context_id, "answer": normalized}
        )
        return {"accepted": True, "answer": normalized}

    def _running_job(context_id: str, context: Context | None = None) -> dict[str, Any] | None:
        _channel(context_id)
        if orchestrator is None:
            return None
        job = orchestrator.get_running_job(context_id)
        return job.to_dict() if job is not None else None

    def _queue_summary(context_id: str, context: Context | None = None) -> dict[str, Any]:
        _channel(context_id)
        return {
            "context_id": context_id,
            "counts": queue.summary(context_id),
            "jobs": [job.to_dict() for job in queue.get_context_jobs(context_id)],
        }

    def _session_state(context_id: str, context: Context | None = None) -> dict[str, Any]:
        _channel(context_id)
        return _session_payload(state_store.get_session(context_id), context_id)

    def _read_messages(
        context_id: str, after: int = 0, context: Context | None = None
    ) -> list[dict[str, Any]]:
        """Return chat messages posted for a context after the given sequence number."""

        _channel(context_id)
        return [message.to_dict() for message in outbox.read(context_id, after)]

    def _job_history(job_id: str, context: Context | None = None) -> dict[str, Any]:
        job = queue.get_job(job_id)
        events: list[dict[str, Any]] = []
        journal_error: str | None = None
        if journal is None:
            journal_error = "Journal unavailable"
        else:
            try:
                events = [event.to_dict() for event in journal.job_history(job_id)]
            except Exception as exc:  # pragma: no cover - depends on chromadb state
                journal_error = str(exc)
        if job is None and not events:
            raise ValueError(f"Job '{job_id}' not found")
        return {
            "job": job.to_dict() if job is not None else None,
            "events": events,
            "error": journal_error,
        }

    tool_add = server.tool(
        name="add_job",
        description="Queue a prompt or a backtick key command for a registered context.",
    )(_add_job)

    tool_start = server.tool(
        name="start_job",
        description="Start the next pending job for a context if none is running.",
    )(_start_job)

    tool_cancel = server.tool(
        name="cancel_job",
        description="Cancel the running job for a context without starting the next one.",
    )(_cancel_job)

    tool_respond = server.tool(
        name="respond",
        description="Answer a waiting yes/no prompt with 'y' or 'n' and resume the job.",
    )(_respond)

    tool_running = server.tool(
        name="running_job",
        description="Return the job currently running for a context, if any.",
    )(_running_job)

    tool_summary = server.tool(
        name="queue_summary",
        description="Summarize job counts per status for a context.",
    )(_queue_summary)

    tool_session = server.tool(
        name="session_state",
        description="Return the persisted waiting-for-response state of a context.",
    )(_session_state)

    tool_messages = server.tool(
        name="read_messages",
        description="Read notification messages posted for a context.",
    )(_read_messages)

    tool_history = server.tool(
        name="job_history",
        description="Return the journaled lifecycle events of a job.",
    )(_job_history)

    return ToolHandles(
        add_job=tool_add,
        start_job=tool_start,
        cancel_job=tool_cancel,
        respond=tool_respond,
        running_job=tool_running,
        queue_summary=tool_summary,
        session_state=tool_session,
        read_messages=tool_messages,
        job_history=tool_history,
        background=background,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Prefer the MCP context logger when one is available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "infer_kind", "register_tools"]
