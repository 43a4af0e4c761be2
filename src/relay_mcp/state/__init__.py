"""Persisted session state and recovery."""

from .recovery import RecoveryReport, recover_state, run_periodic_sweep, sweep_timed_out_sessions
from .store import PersistenceError, SessionState, SessionStateStore

__all__ = [
    "PersistenceError",
    "RecoveryReport",
    "SessionState",
    "SessionStateStore",
    "recover_state",
    "run_periodic_sweep",
    "sweep_timed_out_sessions",
]
