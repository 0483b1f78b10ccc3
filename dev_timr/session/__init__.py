"""
Session timing.

Key classes:
- SessionEngine: start/pause/resume/end state machine
- SessionRecorder: ledger-first persistence of finalized sessions
- Session: immutable finalized session record
"""

from .engine import SessionEngine
from .recorder import RecordOutcome, SessionRecorder
from .types import Session, SessionState, legacy_client_id

__all__ = [
    "Session",
    "SessionState",
    "legacy_client_id",
    "SessionEngine",
    "SessionRecorder",
    "RecordOutcome",
]
