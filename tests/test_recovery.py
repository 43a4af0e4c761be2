from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

from relay_mcp.channels import ChannelConfig, ChannelRegistry
from relay_mcp.jobs import JobKind, JobQueue, JobStatus
from relay_mcp.state import (
    SessionStateStore,
    recover_state,
    run_periodic_sweep,
    sweep_timed_out_sessions,
)


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class RecordingJournal:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def record_event(self, *, context_id, event_type, body, metadata=None):
        self.events.append((context_id, event_type))


def _registry(*context_ids: str) -> ChannelRegistry:
    registry = ChannelRegistry()
    for context_id in context_ids:
        registry.register(
            ChannelConfig(
                context_id=context_id,
                project_name=context_id,
                project_path="/srv/app",
                tmux_session=f"relay-{context_id}",
            )
        )
    return registry


def test_recovery_reconciles_sessions(tmp_path: Path) -> None:
    clock = Clock()
    store = SessionStateStore(tmp_path / "state.json", clock=clock)
    store.set_waiting_for_response("orphan", True, 30)
    store.set_waiting_for_response("stale", True, 30)
    clock.now += timedelta(minutes=45)
    store.set_waiting_for_response("live", True, 30)
    store.set_last_prompt("idle", "done earlier")

    queue_clock = Clock()
    queue = JobQueue(clock=queue_clock)
    finished = queue.add_job("live", JobKind.ASK_PROMPT, "old")
    queue.update_status(finished.id, JobStatus.COMPLETED)
    queue_clock.now += timedelta(hours=25)

    journal = RecordingJournal()
    report = recover_state(
        store,
        _registry("stale", "live", "idle"),
        queue,
        retention_hours=24,
        journal=journal,
    )

    assert report.dropped_sessions == 1
    assert store.get_session("orphan") is None
    assert "orphan" not in [state.context_id for state in store.get_all_sessions()]
    assert report.timed_out_sessions == 1
    stale = store.get_session("stale")
    assert stale is not None and not stale.is_waiting_for_response
    assert report.recovered_sessions == 1
    assert store.is_waiting_for_response("live")
    assert store.get_session("idle") is not None
    assert report.cleaned_jobs == 1
    assert ("orphan", "session_dropped") in journal.events
    assert ("stale", "session_timed_out") in journal.events


def test_recovery_keeps_waiting_sessions(tmp_path: Path) -> None:
    clock = Clock()
    store = SessionStateStore(tmp_path / "state.json", clock=clock)
    store.set_waiting_for_response("live", True, 30)
    clock.now += timedelta(minutes=10)

    report = recover_state(store, _registry("live"), JobQueue(clock=clock))

    assert report.recovered_sessions == 1
    assert store.is_waiting_for_response("live")


def test_sweep_clears_timed_out_sessions(tmp_path: Path) -> None:
    clock = Clock()
    store = SessionStateStore(tmp_path / "state.json", clock=clock)
    store.set_waiting_for_response("a", True, 5)
    store.set_waiting_for_response("b", True, 60)
    clock.now += timedelta(minutes=10)

    assert sweep_timed_out_sessions(store) == 1
    assert not store.is_waiting_for_response("a")
    assert store.is_waiting_for_response("b")


def test_periodic_sweep_runs_until_cancelled(tmp_path: Path) -> None:
    clock = Clock()
    store = SessionStateStore(tmp_path / "state.json", clock=clock)
    store.set_waiting_for_response("a", True, 5)
    clock.now += timedelta(minutes=10)

    async def scenario() -> bool:
        task = asyncio.create_task(run_periodic_sweep(store, interval_minutes=0.0001))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if not store.is_waiting_for_response("a"):
                break
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            return True
        return False

    assert asyncio.run(scenario())
    assert not store.is_waiting_for_response("a")
