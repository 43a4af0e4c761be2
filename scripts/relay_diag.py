"""Relay MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from relay_mcp.config import RelaySettings
from relay_mcp.state import SessionStateStore
from relay_mcp.storage import JobJournal, JournalUnavailableError
from relay_mcp.storage.models import JOB_FAILED


def load_journal(settings: RelaySettings) -> JobJournal:
    try:
        journal = JobJournal(settings.chroma_persist_path)
        journal.ping()
        return journal
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = SessionStateStore(settings.state_file)
    sessions = [state.to_dict() for state in store.get_all_sessions()]
    if getattr(args, "waiting", False):
        sessions = [session for session in sessions if session["isWaitingForResponse"]]
    print(
        json.dumps(
            {
                "state_file": str(store.path),
                "summary": store.summary(),
                "sessions": sessions,
            },
            indent=2,
        )
    )


def cmd_events(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    journal = load_journal(settings)
    try:
        if args.context_id:
            events = journal.fetch_context_events(args.context_id)
        else:
            events = journal.search_events()
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)

    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": event.id,
            "context_id": event.context_id,
            "event_type": event.event_type,
            "job_id": event.metadata.get("job_id"),
            "timestamp": event.timestamp.isoformat(),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    journal = load_journal(settings)
    try:
        events = journal.search_events()
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)

    type_counts: dict[str, int] = {}
    failures: dict[str, int] = {}
    contexts: set[str] = set()
    for event in events:
        type_counts[event.event_type] = type_counts.get(event.event_type, 0) + 1
        contexts.add(event.context_id)
        if event.event_type == JOB_FAILED:
            failures[event.context_id] = failures.get(event.context_id, 0) + 1

    metrics = {
        "events_total": len(events),
        "contexts_total": len(contexts),
        "event_type_counts": type_counts,
        "failed_jobs_by_context": failures,
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="Show persisted session state")
    p_sessions.add_argument("--waiting", action="store_true", help="Only sessions awaiting a response")
    p_sessions.set_defaults(func=cmd_sessions)

    p_events = sub.add_parser("events", help="List journaled job events")
    p_events.add_argument("--context-id")
    p_events.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_events.set_defaults(func=cmd_events)

    p_metrics = sub.add_parser("metrics", help="Show event counts and failed jobs per context")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
