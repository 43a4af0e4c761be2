"""Chroma-backed journal of job lifecycle events."""

from __future__ import annotations

import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from .models import EVENT_TYPES, JournalEvent


logger = logging.getLogger(__name__)

JOURNAL_COLLECTION = "relay_jobs"


class JournalUnavailableError(RuntimeError):
    """Raised when chromadb cannot be imported or opened."""


class EventCollection(Protocol):
    """The slice of the Chroma collection API the journal relies on."""

    def add(
        self,
        *,
        documents: Sequence[str],
        metadatas: Sequence[dict[str, Any]],
        ids: Sequence[str],
    ) -> None:
        ...

    def get(self, *, where: dict[str, Any] | None = None, limit: int | None = None) -> dict[str, list[Any]]:
        ...


class EventClient(Protocol):
    def get_or_create_collection(self, name: str) -> EventCollection:
        ...


def _where_clause(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    # Chroma needs an explicit $and once more than one field is filtered.
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value, default=str)
    return cleaned


def _open_persistent_client(path: Path) -> EventClient:
    try:
        import chromadb
    except ImportError as exc:  # pragma: no cover - depends on environment
        raise JournalUnavailableError(
            "chromadb package is not installed; install relay-mcp with persistence extras"
        ) from exc
    return chromadb.PersistentClient(path=str(path))


class JobJournal:
    """Append-only record of what happened to each job and session."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = JOURNAL_COLLECTION,
        client_factory: Callable[[], EventClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or (lambda: _open_persistent_client(self._path))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: EventCollection | None = None
        self._sequences: Counter[str] = Counter()

    @property
    def collection(self) -> EventCollection:
        if self._collection is None:
            client = self._client_factory()
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        """Open the collection, raising JournalUnavailableError when chromadb is unusable."""

        return self.collection is not None

    def record_event(
        self,
        *,
        context_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown journal event type: {event_type}")

        collection = self.collection
        self._sequences[context_id] += 1
        timestamp = self._clock()
        event = JournalEvent(
            id=f"{context_id}:{uuid.uuid4().hex}",
            context_id=context_id,
            event_type=event_type,
            document=body if isinstance(body, str) else json.dumps(body, default=str),
            metadata=_scalar_metadata(
                {
                    **(metadata or {}),
                    "context_id": context_id,
                    "event_type": event_type,
                    "timestamp": timestamp.isoformat(),
                    "sequence": self._sequences[context_id],
                }
            ),
            timestamp=timestamp,
        )
        collection.add(documents=[event.document], metadatas=[event.metadata], ids=[event.id])
        return event

    def fetch_context_events(self, context_id: str, *, limit: int | None = None) -> list[JournalEvent]:
        return self._query({"context_id": context_id}, limit=limit)

    def job_history(self, job_id: str) -> list[JournalEvent]:
        return self._query({"job_id": job_id})

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        """Filter on metadata, then keep events whose body or metadata mention ``query``."""

        events = self._query(filters)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    def _query(self, filters: dict[str, Any] | None, *, limit: int | None = None) -> list[JournalEvent]:
        result = self.collection.get(where=_where_clause(filters), limit=limit)
        rows = zip(result.get("ids") or [], result.get("documents") or [], result.get("metadatas") or [])
        events = [self._to_event(event_id, document, dict(metadata or {})) for event_id, document, metadata in rows]
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def _to_event(self, event_id: str, document: str, metadata: dict[str, Any]) -> JournalEvent:
        raw = metadata.get("timestamp")
        return JournalEvent(
            id=event_id,
            context_id=metadata.get("context_id", ""),
            event_type=metadata.get("event_type", ""),
            document=document,
            metadata=metadata,
            timestamp=datetime.fromisoformat(raw) if isinstance(raw, str) else self._clock(),
        )


def record_safely(
    journal: JobJournal | None,
    *,
    context_id: str,
    event_type: str,
    body: Any,
    metadata: dict[str, Any] | None = None,
) -> JournalEvent | None:
    """Record an event when a journal is configured, logging instead of raising on failure."""

    if journal is None:
        return None
    try:
        return journal.record_event(
            context_id=context_id, event_type=event_type, body=body, metadata=metadata
        )
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "Failed to record journal event",
            extra={"context_id": context_id, "event_type": event_type, "error": str(exc)},
        )
        return None


__all__ = ["JOURNAL_COLLECTION", "JobJournal", "JournalUnavailableError", "record_safely"]
