from __future__ import annotations

import asyncio

from relay_mcp.notify import OutboxChannel
from relay_mcp.progress import ProgressStatus, ProgressTracker
from relay_mcp.tmux import FakeTmuxDriver, SessionController


async def _no_sleep(_: float) -> None:
    return None


def _tracker(driver: FakeTmuxDriver, outbox: OutboxChannel, **kwargs) -> ProgressTracker:
    controller = SessionController(driver, sleep=_no_sleep)
    return ProgressTracker(controller, outbox, clock=lambda: 100.0, **kwargs)


def test_identical_output_is_sent_once() -> None:
    driver = FakeTmuxDriver({"work": ["compiling..."]}, sessions={"work"})
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox)

    async def scenario() -> None:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        await tracker.tick("job-1")
        await tracker.tick("job-1")

    asyncio.run(scenario())

    message = outbox.get("ctx:1")
    assert message is not None
    assert message.revisions == 1
    assert "compiling..." in message.text
    assert len(outbox.read("ctx")) == 1


def test_changed_output_updates_in_place() -> None:
    driver = FakeTmuxDriver({"work": ["step 1", "step 2"]}, sessions={"work"})
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox)

    async def scenario() -> None:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        await tracker.tick("job-1")
        await tracker.tick("job-1")

    asyncio.run(scenario())

    message = outbox.get("ctx:1")
    assert message.revisions == 2
    assert "step 2" in message.text


def test_aborts_after_five_capture_failures() -> None:
    driver = FakeTmuxDriver({"work": ["busy"]}, sessions={"work"})
    driver.fail_next("capture-pane", 5)
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox)

    async def scenario() -> list[bool]:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        tracking = []
        for _ in range(5):
            await tracker.tick("job-1")
            tracking.append(tracker.is_tracking("job-1"))
        return tracking

    assert asyncio.run(scenario()) == [True, True, True, True, False]
    assert "tmux session not responding (5 consecutive failures)" in outbox.get("ctx:1").text


def test_capture_success_resets_session_failures() -> None:
    driver = FakeTmuxDriver({"work": ["busy"]}, sessions={"work"})
    driver.fail_next("capture-pane", 4)
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox)

    async def scenario() -> int:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        for _ in range(5):
            await tracker.tick("job-1")
        return tracker.get_state("job-1").session_failure_count

    assert asyncio.run(scenario()) == 0


def test_aborts_after_three_channel_failures() -> None:
    driver = FakeTmuxDriver({"work": ["busy"]}, sessions={"work"})
    outbox = OutboxChannel(fail_updates=3)
    tracker = _tracker(driver, outbox)

    async def scenario() -> list[bool]:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        tracking = []
        for _ in range(3):
            await tracker.tick("job-1")
            tracking.append(tracker.is_tracking("job-1"))
        return tracking

    assert asyncio.run(scenario()) == [True, True, False]
    assert outbox.get("ctx:1").text == "⏳ Starting job..."


def test_channel_success_resets_failures() -> None:
    driver = FakeTmuxDriver({"work": ["busy"]}, sessions={"work"})
    outbox = OutboxChannel(fail_updates=2)
    tracker = _tracker(driver, outbox)

    async def scenario() -> int:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        for _ in range(3):
            await tracker.tick("job-1")
        return tracker.get_state("job-1").channel_failure_count

    assert asyncio.run(scenario()) == 0
    assert outbox.get("ctx:1").revisions == 1


def test_jobs_are_tracked_independently() -> None:
    driver = FakeTmuxDriver({"alpha": [], "beta": ["working"]}, sessions={"alpha", "beta"})
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox)

    async def scenario() -> None:
        await tracker.start_tracking("job-a", "ctx-a", "alpha", schedule=False)
        await tracker.start_tracking("job-b", "ctx-b", "beta", schedule=False)
        for _ in range(5):
            await tracker.tick("job-a")
            await tracker.tick("job-b")

    asyncio.run(scenario())

    assert not tracker.is_tracking("job-a")
    assert tracker.is_tracking("job-b")
    state = tracker.get_state("job-b")
    assert state.session_failure_count == 0
    assert state.status is ProgressStatus.IN_PROGRESS


def test_stop_tracking_posts_final_status() -> None:
    driver = FakeTmuxDriver({"work": ["all done"]}, sessions={"work"})
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox)

    async def scenario() -> None:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        await tracker.stop_tracking("job-1", ProgressStatus.COMPLETED)

    asyncio.run(scenario())

    text = outbox.get("ctx:1").text
    assert text.startswith("✅ Job completed")
    assert "all done" in text
    assert tracker.active_jobs() == []


def test_stop_tracking_unknown_job_is_noop() -> None:
    tracker = _tracker(FakeTmuxDriver(), OutboxChannel())

    asyncio.run(tracker.stop_tracking("job-missing"))

    assert tracker.active_jobs() == []


def test_start_tracking_returns_none_when_post_fails() -> None:
    outbox = OutboxChannel(fail_posts=1)
    tracker = _tracker(FakeTmuxDriver(sessions={"work"}), outbox)

    state = asyncio.run(tracker.start_tracking("job-1", "ctx", "work", schedule=False))

    assert state is None
    assert not tracker.is_tracking("job-1")


def test_timeout_marks_failed_until_stopped() -> None:
    driver = FakeTmuxDriver({"work": ["still going"]}, sessions={"work"})
    outbox = OutboxChannel()
    tracker = _tracker(driver, outbox, timeout=3600)

    async def scenario() -> tuple[str, str]:
        await tracker.start_tracking("job-1", "ctx", "work", schedule=False)
        await tracker.expire("job-1")
        after_timeout = outbox.get("ctx:1").text
        await tracker.stop_tracking("job-1", ProgressStatus.COMPLETED)
        return after_timeout, outbox.get("ctx:1").text

    after_timeout, final = asyncio.run(scenario())

    assert after_timeout.startswith("⏰ Job timed out")
    assert final.startswith("❌ Job failed: job exceeded 60m 0s")


def test_scheduled_polling_updates_until_stopped() -> None:
    driver = FakeTmuxDriver({"work": ["tick"]}, sessions={"work"})
    outbox = OutboxChannel()
    controller = SessionController(driver, sleep=_no_sleep)
    tracker = ProgressTracker(controller, outbox, interval=0.01, timeout=60)

    async def scenario() -> int:
        await tracker.start_tracking("job-1", "ctx", "work")
        for _ in range(100):
            await asyncio.sleep(0.01)
            if outbox.get("ctx:1").revisions:
                break
        revisions = outbox.get("ctx:1").revisions
        await tracker.stop_tracking("job-1", ProgressStatus.CANCELLED)
        return revisions

    assert asyncio.run(scenario()) == 1
    assert outbox.get("ctx:1").text.startswith("🚫 Job cancelled")
    assert tracker.active_jobs() == []
