"""File-backed per-context session state."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable


logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when the state file cannot be written."""


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class SessionState:
    """Recovery record for one context.

    ``timeout_at`` is set exactly when ``is_waiting_for_response`` is True.
    """

    context_id: str
    is_waiting_for_response: bool = False
    timeout_at: datetime | None = None
    last_prompt: str | None = None
    last_output: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contextId": self.context_id,
            "isWaitingForResponse": self.is_waiting_for_response,
        }
        if self.timeout_at is not None:
            payload["timeoutAt"] = self.timeout_at.isoformat()
        if self.last_prompt is not None:
            payload["lastPrompt"] = self.last_prompt
        if self.last_output is not None:
            payload["lastOutput"] = self.last_output
        return payload

    @classmethod
    def from_dict(cls, context_id: str, payload: dict[str, Any]) -> "SessionState":
        waiting = bool(payload.get("isWaitingForResponse", False))
        return cls(
            context_id=str(payload.get("contextId") or context_id),
            is_waiting_for_response=waiting,
            timeout_at=_parse_timestamp(payload.get("timeoutAt")) if waiting else None,
            last_prompt=payload.get("lastPrompt"),
            last_output=payload.get("lastOutput"),
        )


class SessionStateStore:
    """Map context ids to :class:`SessionState`, rewriting the whole file on each change."""

    def __init__(
        self,
        path: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: dict[str, SessionState] = {}
        self._last_updated: datetime | None = None
        self.refresh()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    def refresh(self) -> None:
        """Reload from disk; a missing or unreadable file yields an empty store."""

        self._sessions = self._load()

    def _load(self) -> dict[str, SessionState]:
        if not self._path.exists():
            logger.warning("State file not found; starting empty", extra={"path": str(self._path)})
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(
                "Failed to load state file; starting empty",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return {}

        sessions_raw = raw.get("sessions") if isinstance(raw, dict) else None
        if not isinstance(sessions_raw, dict):
            logger.error("State file has no sessions map; starting empty", extra={"path": str(self._path)})
            return {}

        self._last_updated = _parse_timestamp(raw.get("lastUpdated"))
        sessions: dict[str, SessionState] = {}
        for context_id, payload in sessions_raw.items():
            if isinstance(payload, dict):
                sessions[str(context_id)] = SessionState.from_dict(str(context_id), payload)
        return sessions

    def _save(self, sessions: dict[str, SessionState]) -> None:
        """Write ``sessions`` to disk and only then make them the in-memory state."""

        updated = self._clock()
        document = {
            "sessions": {key: state.to_dict() for key, state in sessions.items()},
            "lastUpdated": updated.isoformat(),
        }
        temp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            os.replace(temp_path, self._path)
        except OSError as exc:
            logger.error("Failed to write state file", extra={"path": str(self._path), "error": str(exc)})
            raise PersistenceError(f"Unable to write state file {self._path}: {exc}") from exc
        self._sessions = sessions
        self._last_updated = updated

    def _ensure(self, context_id: str) -> SessionState:
        current = self._sessions.get(context_id)
        return replace(current) if current is not None else SessionState(context_id=context_id)

    def get_session(self, context_id: str) -> SessionState | None:
        return self._sessions.get(context_id)

    def set_session(self, state: SessionState) -> None:
        self._save({**self._sessions, state.context_id: state})
        logger.debug("Session state updated", extra={"context_id": state.context_id})

    def delete_session(self, context_id: str) -> bool:
        if context_id not in self._sessions:
            logger.warning("Session not found for deletion", extra={"context_id": context_id})
            return False
        self._save({key: state for key, state in self._sessions.items() if key != context_id})
        logger.info("Session state deleted", extra={"context_id": context_id})
        return True

    def set_waiting_for_response(
        self,
        context_id: str,
        waiting: bool,
        timeout_minutes: float | None = None,
    ) -> SessionState:
        state = self._ensure(context_id)
        state.is_waiting_for_response = waiting
        if waiting:
            minutes = 30 if timeout_minutes is None else timeout_minutes
            state.timeout_at = self._clock() + timedelta(minutes=minutes)
        else:
            state.timeout_at = None
        self.set_session(state)
        return state

    def is_waiting_for_response(self, context_id: str) -> bool:
        state = self._sessions.get(context_id)
        return bool(state and state.is_waiting_for_response)

    def has_timed_out(self, context_id: str) -> bool:
        state = self._sessions.get(context_id)
        if state is None or state.timeout_at is None:
            return False
        return self._clock() > state.timeout_at

    def set_last_prompt(self, context_id: str, prompt: str) -> None:
        state = self._ensure(context_id)
        state.last_prompt = prompt
        self.set_session(state)

    def set_last_output(self, context_id: str, output: str) -> None:
        state = self._ensure(context_id)
        state.last_output = output
        self.set_session(state)

    def clear_session(self, context_id: str) -> None:
        """Reset a context to the idle state without deleting its record."""

        self.set_session(SessionState(context_id=context_id))
        logger.info("Session cleared", extra={"context_id": context_id})

    def get_all_sessions(self) -> list[SessionState]:
        return list(self._sessions.values())

    def find_timed_out_sessions(self) -> list[SessionState]:
        now = self._clock()
        return [
            state
            for state in self._sessions.values()
            if state.timeout_at is not None and now > state.timeout_at
        ]

    def clear_all(self) -> None:
        self._save({})
        logger.warning("All sessions cleared")

    def summary(self) -> dict[str, int]:
        sessions = self.get_all_sessions()
        return {
            "total_sessions": len(sessions),
            "waiting_for_response": sum(1 for state in sessions if state.is_waiting_for_response),
            "timed_out": len(self.find_timed_out_sessions()),
        }


__all__ = ["PersistenceError", "SessionState", "SessionStateStore"]
