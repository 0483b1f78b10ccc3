"""
Session engine: the start/pause/resume/end state machine.

    IDLE -> RUNNING <-> PAUSED -> ENDED -> (reset) IDLE

Invalid transitions are absorbed as no-ops returning False. Shutdown paths
(signal handler and child exit) may both call ``end()``; only the first
produces a Session.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..sanitization import sanitize_task_name
from .types import Session, SessionState

if TYPE_CHECKING:
    from .recorder import RecordOutcome, SessionRecorder

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_client_id() -> str:
    return str(uuid.uuid4())


class SessionEngine:
    """One timer's state, owned explicitly (no module globals).

    Example:
        >>> engine = SessionEngine(recorder=recorder)
        >>> engine.start("fix login bug")
        True
        >>> engine.pause()
        True
        >>> engine.resume()
        True
        >>> session = await engine.end()
    """

    def __init__(
        self,
        recorder: SessionRecorder | None = None,
        clock: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = _new_client_id,
    ):
        """Initialize an idle engine.

        Args:
            recorder: Receives each finalized session (ledger, then queue)
            clock: Returns epoch milliseconds (injectable for tests)
            id_factory: Generates the per-session client id
        """
        self.recorder = recorder
        self._clock = clock
        self._id_factory = id_factory

        self.last_session: Session | None = None
        self.last_outcome: RecordOutcome | None = None
        self._reset()

    def _reset(self) -> None:
        self._state = SessionState.IDLE
        self._start_ms: int | None = None
        self._task_name: str | None = None
        self._client_id: str | None = None
        self._paused_ms = 0
        self._pause_start_ms: int | None = None
        self._high_water_ms = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.RUNNING, SessionState.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self._state == SessionState.PAUSED

    @property
    def task_name(self) -> str | None:
        return self._task_name

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def start_ms(self) -> int | None:
        return self._start_ms

    def start(self, task_name: str | None = None) -> bool:
        """Begin a session. Only valid from IDLE."""
        if self._state != SessionState.IDLE:
            logger.debug(f"start() ignored in state {self._state.value}")
            return False

        self._start_ms = self._clock()
        self._client_id = self._id_factory()
        self._task_name = sanitize_task_name(task_name)
        self._paused_ms = 0
        self._pause_start_ms = None
        self._high_water_ms = 0
        self._state = SessionState.RUNNING
        logger.info(f"Session {self._client_id} started")
        return True

    def set_task_name(self, name: str | None) -> bool:
        """Rename the current session; empty after sanitizing means no task."""
        if not self.is_active:
            return False
        self._task_name = sanitize_task_name(name)
        return True

    def pause(self) -> bool:
        if self._state != SessionState.RUNNING:
            return False
        self._pause_start_ms = self._clock()
        self._state = SessionState.PAUSED
        return True

    def resume(self) -> bool:
        if self._state != SessionState.PAUSED or self._pause_start_ms is None:
            return False
        self._paused_ms += max(0, self._clock() - self._pause_start_ms)
        self._pause_start_ms = None
        self._state = SessionState.RUNNING
        return True

    def _paused_total(self, now_ms: int) -> int:
        current = 0
        if self._pause_start_ms is not None:
            current = max(0, now_ms - self._pause_start_ms)
        return self._paused_ms + current

    def elapsed(self) -> int:
        """Active milliseconds so far; 0 when idle. Never touches I/O.

        Never decreases while running, even if the wall clock steps back.
        """
        if not self.is_active or self._start_ms is None:
            return 0
        now = self._clock()
        value = max(0, now - self._start_ms - self._paused_total(now))
        self._high_water_ms = max(self._high_water_ms, value)
        return self._high_water_ms

    def finalize(self) -> Session | None:
        """Close the current session and reset to IDLE without any I/O.

        Returns:
            The finalized Session, or None when no session was active
        """
        if not self.is_active or self._start_ms is None or self._client_id is None:
            return None

        end_ms = max(self._clock(), self._start_ms)
        span = end_ms - self._start_ms
        duration = min(span, max(0, span - self._paused_total(end_ms)))

        self._state = SessionState.ENDED
        session = Session(
            start_ms=self._start_ms,
            end_ms=end_ms,
            duration_ms=duration,
            task_name=self._task_name,
            client_id=self._client_id,
        )
        self.last_session = session
        self._reset()
        logger.info(f"Session {session.client_id} ended after {session.duration_ms}ms active")
        return session

    async def end(self) -> Session | None:
        """Finalize and hand the session to the recorder.

        The engine is back in IDLE before the recorder is awaited, so a
        concurrent second call is a no-op.
        """
        session = self.finalize()
        if session is None:
            return None
        if self.recorder is not None:
            self.last_outcome = await self.recorder.record(session)
        return session
