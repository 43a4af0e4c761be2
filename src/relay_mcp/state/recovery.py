"""Startup recovery and periodic timeout sweeps for persisted session state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Protocol

from ..jobs.queue import JobQueue
from ..storage import JobJournal, record_safely
from ..storage.models import SESSION_DROPPED, SESSION_RECOVERED, SESSION_TIMED_OUT
from .store import SessionStateStore


logger = logging.getLogger(__name__)


class ChannelLookup(Protocol):
    def get(self, context_id: str) -> object | None:
        ...


@dataclass(slots=True)
class RecoveryReport:
    recovered_sessions: int = 0
    timed_out_sessions: int = 0
    dropped_sessions: int = 0
    cleaned_jobs: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def recover_state(
    store: SessionStateStore,
    channels: ChannelLookup,
    queue: JobQueue,
    *,
    retention_hours: float = 24.0,
    journal: JobJournal | None = None,
) -> RecoveryReport:
    """Reconcile persisted sessions with the current channel registrations.

    Sessions whose context is no longer registered are deleted, timed-out
    sessions are cleared, and sessions still waiting for a response are kept
    so a later reply can resume the paused job.
    """

    report = RecoveryReport()
    sessions = store.get_all_sessions()
    logger.info("Starting state recovery", extra={"sessions": len(sessions)})

    for session in sessions:
        context_id = session.context_id
        if channels.get(context_id) is None:
            logger.warning("Dropping session for unregistered context", extra={"context_id": context_id})
            store.delete_session(context_id)
            report.dropped_sessions += 1
            record_safely(
                journal,
                context_id=context_id,
                event_type=SESSION_DROPPED,
                body=session.to_dict(),
            )
            continue

        if store.has_timed_out(context_id):
            logger.info("Clearing timed-out session", extra={"context_id": context_id})
            store.clear_session(context_id)
            report.timed_out_sessions += 1
            record_safely(
                journal,
                context_id=context_id,
                event_type=SESSION_TIMED_OUT,
                body=session.to_dict(),
            )
            continue

        if session.is_waiting_for_response:
            logger.info("Recovered session waiting for response", extra={"context_id": context_id})
            report.recovered_sessions += 1
            record_safely(
                journal,
                context_id=context_id,
                event_type=SESSION_RECOVERED,
                body=session.to_dict(),
            )

    report.cleaned_jobs = queue.cleanup(retention_hours)
    logger.info("State recovery complete", extra=report.to_dict())
    return report


def sweep_timed_out_sessions(store: SessionStateStore, *, journal: JobJournal | None = None) -> int:
    timed_out = store.find_timed_out_sessions()
    for session in timed_out:
        logger.info("Clearing timed-out session", extra={"context_id": session.context_id})
        store.clear_session(session.context_id)
        record_safely(
            journal,
            context_id=session.context_id,
            event_type=SESSION_TIMED_OUT,
            body=session.to_dict(),
        )
    return len(timed_out)


async def run_periodic_sweep(
    store: SessionStateStore,
    *,
    interval_minutes: float = 5.0,
    journal: JobJournal | None = None,
) -> None:
    """Sweep timed-out sessions forever; cancel the task to stop it."""

    logger.info("Starting periodic sweep", extra={"interval_minutes": interval_minutes})
    try:
        while True:
            await asyncio.sleep(interval_minutes * 60)
            try:
                cleared = sweep_timed_out_sessions(store, journal=journal)
            except Exception as exc:  # pragma: no cover - keep sweeping
                logger.error("Periodic sweep failed", extra={"error": str(exc)})
                continue
            if cleared:
                logger.info("Periodic sweep cleared sessions", extra={"cleared": cleared})
    except asyncio.CancelledError:
        logger.info("Periodic sweep stopped")
        raise


__all__ = ["RecoveryReport", "recover_state", "run_periodic_sweep", "sweep_timed_out_sessions"]
