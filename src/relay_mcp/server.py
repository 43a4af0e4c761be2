"""FastMCP server bootstrap for Relay."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .channels import ChannelLoadError, ChannelRegistry
from .config import RelaySettings, get_settings
from .jobs import JobQueue
from .notify import OutboxChannel
from .orchestrator import Orchestrator
from .progress import ProgressTracker
from .state import SessionStateStore, recover_state, run_periodic_sweep
from .storage import JOURNAL_COLLECTION, JobJournal, JournalUnavailableError
from .tmux import SessionController, TmuxDriver, TmuxNotFoundError
from .tools import register_tools


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Relay server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[RelaySettings] = None,
    *,
    driver: TmuxDriver | None = None,
    channel: OutboxChannel | None = None,
    journal: JobJournal | None = None,
) -> FastMCP:
    """Build every component, recover persisted state, and register tools."""

    settings = settings or get_settings()

    registry = ChannelRegistry(settings.channel_paths)
    channel_metadata: dict[str, Any] = {
        "paths": [str(path) for path in registry.search_paths],
        "count": 0,
        "error": None,
    }
    try:
        channel_metadata["count"] = len(registry.load())
    except ChannelLoadError as exc:
        channel_metadata["error"] = str(exc)
        logger.error("Failed to load channel registrations", extra={"error": str(exc)})

    tmux_metadata: dict[str, Any] = {"available": False, "path": None, "error": None}
    if driver is None:
        try:
            driver = TmuxDriver(Path(settings.tmux_path) if settings.tmux_path else None)
        except TmuxNotFoundError as exc:
            tmux_metadata["error"] = str(exc)
            logger.error("tmux unavailable; job tools are disabled", extra={"error": str(exc)})
    if driver is not None:
        tmux_metadata.update({"available": True, "path": str(driver.executable)})

    journal_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": JOURNAL_COLLECTION,
        "error": None,
    }
    if journal is None:
        try:
            journal = JobJournal(settings.chroma_persist_path)
            journal.ping()
        except JournalUnavailableError as exc:
            journal_metadata["error"] = str(exc)
            journal = None
    journal_metadata["available"] = journal is not None

    outbox = channel or OutboxChannel()
    queue = JobQueue()
    state_store = SessionStateStore(settings.state_file)
    recovery = recover_state(
        state_store,
        registry,
        queue,
        retention_hours=settings.job_retention_hours,
        journal=journal,
    )

    orchestrator: Orchestrator | None = None
    tracker: ProgressTracker | None = None
    if driver is not None:
        controller = SessionController(
            driver,
            agent_command=settings.agent_command,
            key_delay=settings.key_delay_seconds,
            settle_delay=settings.settle_delay_seconds,
        )
        tracker = ProgressTracker(
            controller,
            outbox,
            interval=settings.progress_interval_seconds,
            timeout=settings.progress_timeout_seconds,
        )
        orchestrator = Orchestrator(
            queue,
            controller,
            state_store,
            outbox,
            tracker=tracker,
            journal=journal,
            poll_interval=settings.poll_interval_seconds,
            max_polls=settings.max_polls,
            response_timeout_minutes=settings.response_timeout_minutes,
            settle_delay=settings.settle_delay_seconds,
            chunk_size=settings.chunk_size,
        )

    @asynccontextmanager
    async def lifespan(_: FastMCP) -> AsyncIterator[dict[str, Any]]:
        sweep = asyncio.create_task(
            run_periodic_sweep(
                state_store,
                interval_minutes=settings.sweep_interval_minutes,
                journal=journal,
            )
        )
        try:
            yield {}
        finally:
            sweep.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep
            for task in list(handles.background):
                task.cancel()

    server = FastMCP(
        name="Relay MCP",
        version=__version__,
        instructions=(
            "Relay queues prompts and key commands for interactive coding agents "
            "running in tmux sessions, one job at a time per context. Use the tools "
            "to queue work, answer blocking prompts, and read posted notifications."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(
        server,
        orchestrator=orchestrator,
        queue=queue,
        state_store=state_store,
        channels=registry,
        outbox=outbox,
        settings=settings,
        journal=journal,
    )

    @server.resource(
        "resource://relay/status",
        name="relay_status",
        title="Relay MCP Status",
        description="Provides the current runtime status for the Relay MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing queues, sessions, and recovery."""

        contexts = sorted(set(queue.contexts()) | {config.context_id for config in registry.all()})
        queues = {context_id: queue.summary(context_id) for context_id in contexts}
        running: dict[str, str] = {}
        if orchestrator is not None:
            for context_id in orchestrator.running_contexts():
                job = orchestrator.get_running_job(context_id)
                if job is not None:
                    running[context_id] = job.id

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "channels": {
                **channel_metadata,
                "context_ids": [config.context_id for config in registry.all()],
            },
            "tmux": tmux_metadata,
            "storage": {
                "state_file": str(state_store.path),
                "journal": journal_metadata,
            },
            "sessions": state_store.summary(),
            "queues": queues,
            "running": running,
            "progress": {"active_jobs": tracker.active_jobs() if tracker is not None else []},
            "recovery": recovery.to_dict(),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "channel_registry", registry)
    setattr(server, "channel_metadata", channel_metadata)
    setattr(server, "tmux_metadata", tmux_metadata)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "outbox", outbox)
    setattr(server, "job_queue", queue)
    setattr(server, "state_store", state_store)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "progress_tracker", tracker)
    setattr(server, "recovery_report", recovery)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Relay MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Relay MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "tmux_available": getattr(server, "tmux_metadata", {}).get("available"),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
