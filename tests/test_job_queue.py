from __future__ import annotations

from datetime import datetime, timedelta, timezone

from relay_mcp.jobs import JobKind, JobQueue, JobStatus


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _queue(clock: Clock | None = None) -> JobQueue:
    counter = iter(range(1, 1000))
    return JobQueue(clock=clock, id_factory=lambda _: f"job-{next(counter)}")


def test_jobs_are_fifo_per_context() -> None:
    queue = _queue()
    first = queue.add_job("ctx-a", JobKind.ASK_PROMPT, "one")
    queue.add_job("ctx-b", JobKind.ASK_PROMPT, "other")
    queue.add_job("ctx-a", JobKind.DSL_COMMAND, "`e`")

    assert first.status is JobStatus.PENDING
    assert queue.get_next_job("ctx-a") is first
    queue.update_status(first.id, JobStatus.RUNNING)
    assert queue.get_next_job("ctx-a").payload == "`e`"
    assert queue.get_next_job("ctx-c") is None


def test_update_status_stamps_times() -> None:
    clock = Clock()
    queue = _queue(clock)
    job = queue.add_job("ctx", JobKind.ASK_PROMPT, "go")

    queue.update_status(job.id, JobStatus.RUNNING)
    clock.advance(minutes=2)
    queue.update_status(job.id, JobStatus.FAILED, "boom")

    assert job.started_at == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert job.completed_at == job.started_at + timedelta(minutes=2)
    assert job.error == "boom"


def test_terminal_status_is_final(caplog) -> None:
    queue = _queue()
    job = queue.add_job("ctx", JobKind.ASK_PROMPT, "go")
    queue.update_status(job.id, JobStatus.COMPLETED)

    with caplog.at_level("WARNING"):
        assert not queue.update_status(job.id, JobStatus.RUNNING)
    assert job.status is JobStatus.COMPLETED
    assert "Ignoring update of terminal job" in caplog.text


def test_running_cannot_regress_to_pending() -> None:
    queue = _queue()
    job = queue.add_job("ctx", JobKind.ASK_PROMPT, "go")
    queue.update_status(job.id, JobStatus.RUNNING)

    assert not queue.update_status(job.id, JobStatus.PENDING)
    assert job.status is JobStatus.RUNNING


def test_cancel_rejects_terminal_jobs() -> None:
    queue = _queue()
    pending = queue.add_job("ctx", JobKind.ASK_PROMPT, "a")
    done = queue.add_job("ctx", JobKind.ASK_PROMPT, "b")
    queue.update_status(done.id, JobStatus.COMPLETED)

    assert queue.cancel(pending.id)
    assert pending.status is JobStatus.CANCELLED
    assert not queue.cancel(done.id)
    assert not queue.cancel("job-missing")


def test_cleanup_removes_only_old_terminal_jobs() -> None:
    clock = Clock()
    queue = _queue(clock)
    old_done = queue.add_job("ctx", JobKind.ASK_PROMPT, "old")
    old_pending = queue.add_job("ctx", JobKind.ASK_PROMPT, "waiting")
    old_running = queue.add_job("other", JobKind.ASK_PROMPT, "busy")
    queue.update_status(old_done.id, JobStatus.COMPLETED)
    queue.update_status(old_running.id, JobStatus.RUNNING)

    clock.advance(hours=30)
    recent_done = queue.add_job("ctx", JobKind.ASK_PROMPT, "new")
    queue.update_status(recent_done.id, JobStatus.FAILED, "x")

    removed = queue.cleanup(24)

    assert removed == 1
    assert queue.get_job(old_done.id) is None
    for job in (old_pending, old_running, recent_done):
        assert queue.get_job(job.id) is job


def test_summary_counts_every_status() -> None:
    queue = _queue()
    running = queue.add_job("ctx", JobKind.ASK_PROMPT, "a")
    queue.add_job("ctx", JobKind.ASK_PROMPT, "b")
    queue.update_status(running.id, JobStatus.RUNNING)

    assert queue.summary("ctx") == {
        "total": 2,
        "pending": 1,
        "running": 1,
        "completed": 0,
        "failed": 0,
        "cancelled": 0,
    }
    assert queue.get_running_job("ctx") is running
    assert queue.pending_count("ctx") == 1


def test_default_job_ids_are_unique() -> None:
    queue = JobQueue()
    ids = {queue.add_job("ctx", JobKind.ASK_PROMPT, str(index)).id for index in range(20)}

    assert len(ids) == 20
    assert all(job_id.startswith("job-") for job_id in ids)
