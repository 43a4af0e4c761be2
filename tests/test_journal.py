from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from relay_mcp.storage import JobJournal, JournalUnavailableError, record_safely


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            for value in metadata.values():
                assert isinstance(value, (str, int, float, bool))
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _journal(tmp_path: Path) -> JobJournal:
    client = StubClient()
    return JobJournal(tmp_path, client_factory=lambda: client, clock=TickingClock())


def test_record_and_fetch_context_events(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    event = journal.record_event(
        context_id="ctx",
        event_type="job_added",
        body={"job_id": "job-1", "payload": "go"},
        metadata={"job_id": "job-1", "error": None, "tags": ["a", "b"]},
    )
    journal.record_event(context_id="other", event_type="job_added", body="x")

    assert event.metadata["sequence"] == 1
    assert "error" not in event.metadata
    assert event.metadata["tags"] == '["a", "b"]'
    events = journal.fetch_context_events("ctx")
    assert [item.id for item in events] == [event.id]
    assert events[0].job_id == "job-1"


def test_job_history_filters_by_job(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    for event_type in ("job_added", "job_started", "job_completed"):
        journal.record_event(
            context_id="ctx", event_type=event_type, body={}, metadata={"job_id": "job-1"}
        )
    journal.record_event(context_id="ctx", event_type="job_added", body={}, metadata={"job_id": "job-2"})

    history = journal.job_history("job-1")

    assert [event.event_type for event in history] == ["job_added", "job_started", "job_completed"]
    assert [event.metadata["sequence"] for event in history] == [1, 2, 3]


def test_search_events_combines_filters_and_query(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    journal.record_event(context_id="ctx", event_type="job_failed", body={"error": "tmux timed out"})
    journal.record_event(context_id="ctx", event_type="job_failed", body={"error": "agent missing"})
    journal.record_event(context_id="web", event_type="job_failed", body={"error": "tmux timed out"})

    results = journal.search_events(
        "timed out", filters={"context_id": "ctx", "event_type": "job_failed"}
    )

    assert len(results) == 1
    assert results[0].context_id == "ctx"
    assert len(journal.search_events(limit=2)) == 2


def test_unknown_event_type_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        _journal(tmp_path).record_event(context_id="ctx", event_type="bogus", body={})


def test_record_safely_tolerates_missing_or_broken_journal(tmp_path: Path) -> None:
    def broken_factory():
        raise JournalUnavailableError("chromadb missing")

    broken = JobJournal(tmp_path, client_factory=broken_factory)

    assert record_safely(None, context_id="ctx", event_type="job_added", body={}) is None
    assert record_safely(broken, context_id="ctx", event_type="job_added", body={}) is None
    with pytest.raises(JournalUnavailableError):
        broken.ping()
