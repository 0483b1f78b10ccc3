"""
Tests for the session engine state machine.
"""

from unittest.mock import AsyncMock

import pytest

from dev_timr.session.engine import SessionEngine
from dev_timr.session.recorder import RecordOutcome
from dev_timr.session.types import Session, SessionState


@pytest.fixture
def engine(clock) -> SessionEngine:
    return SessionEngine(clock=clock, id_factory=lambda: "client-1")


class TestTransitions:
    """Tests for state transitions and their no-op cases."""

    def test_starts_idle(self, engine):
        assert engine.state == SessionState.IDLE
        assert engine.elapsed() == 0

    def test_start(self, engine):
        assert engine.start("fix bug") is True
        assert engine.state == SessionState.RUNNING
        assert engine.client_id == "client-1"
        assert engine.task_name == "fix bug"

    def test_start_twice_is_noop(self, engine):
        engine.start()
        assert engine.start("other") is False
        assert engine.task_name is None

    def test_pause_twice_returns_false(self, engine):
        engine.start()
        assert engine.pause() is True
        assert engine.pause() is False
        assert engine.is_paused

    def test_resume_while_running_is_noop(self, engine):
        engine.start()
        assert engine.resume() is False
        assert engine.state == SessionState.RUNNING

    def test_pause_when_idle_is_noop(self, engine):
        assert engine.pause() is False
        assert engine.state == SessionState.IDLE

    def test_task_name_is_sanitized(self, engine):
        engine.start("rm -rf; echo `whoami`")
        assert engine.task_name == "rm -rf echo whoami"

    def test_set_task_name(self, engine):
        assert engine.set_task_name("x") is False
        engine.start()
        assert engine.set_task_name("  review   PR ") is True
        assert engine.task_name == "review PR"


class TestElapsed:
    """Tests for in-flight elapsed time."""

    def test_constant_while_paused(self, engine, clock):
        engine.start()
        clock.advance(5_000)
        engine.pause()
        before = engine.elapsed()
        clock.advance(60_000)

        assert engine.elapsed() == before == 5_000

    def test_excludes_completed_pauses(self, engine, clock):
        engine.start()
        clock.advance(1_000)
        engine.pause()
        clock.advance(10_000)
        engine.resume()
        clock.advance(2_000)

        assert engine.elapsed() == 3_000

    def test_never_decreases_when_clock_steps_back(self, engine, clock):
        engine.start()
        clock.advance(10_000)
        assert engine.elapsed() == 10_000

        clock.advance(-4_000)
        assert engine.elapsed() == 10_000


class TestEnd:
    """Tests for finalizing a session."""

    @pytest.mark.asyncio
    async def test_duration_excludes_pause(self, engine, clock):
        """Start, pause at +120s, resume at +180s, end at +300s."""
        start = clock()
        engine.start("task")
        clock.advance(120_000)
        engine.pause()
        clock.advance(60_000)
        engine.resume()
        clock.advance(120_000)

        session = await engine.end()

        assert session == Session(
            start_ms=start,
            end_ms=start + 300_000,
            duration_ms=240_000,
            task_name="task",
            client_id="client-1",
        )
        assert engine.state == SessionState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "steps",
        [
            [],
            [("pause", 1_000), ("resume", 2_000)],
            [("pause", 5_000), ("resume", 1), ("pause", 7_000), ("resume", 3_000), ("pause", 250)],
            [("pause", 1_000), ("pause", 4_000), ("resume", 500), ("resume", 9_000)],
            [("resume", 3_000), ("pause", 0), ("resume", 0), ("pause", 60_000)],
            [("pause", 10), ("resume", 20)] * 25,
        ],
        ids=["no-pauses", "one-pause", "ends-paused", "repeated-calls", "zero-length", "many-intervals"],
    )
    async def test_duration_is_span_minus_paused_intervals(self, engine, clock, steps):
        """Every pause/resume sequence yields wall span minus time spent paused."""
        start = clock()
        engine.start()
        clock.advance(1_000)

        paused_total = 0
        paused_since = None
        for action, gap_ms in steps:
            if action == "pause" and engine.pause():
                paused_since = clock()
            elif action == "resume" and engine.resume():
                paused_total += clock() - paused_since
                paused_since = None
            clock.advance(gap_ms)
        if paused_since is not None:
            paused_total += clock() - paused_since

        session = await engine.end()

        assert session.end_ms - session.start_ms == clock() - start
        assert session.duration_ms == (clock() - start) - paused_total

    @pytest.mark.asyncio
    async def test_end_while_paused_folds_final_pause(self, engine, clock):
        engine.start()
        clock.advance(30_000)
        engine.pause()
        clock.advance(30_000)

        session = await engine.end()

        assert session.duration_ms == 30_000
        assert session.paused_ms == 30_000

    @pytest.mark.asyncio
    async def test_end_twice_records_once(self, clock):
        recorder = AsyncMock()
        recorder.record.return_value = RecordOutcome(local=True)
        engine = SessionEngine(recorder=recorder, clock=clock)
        engine.start()
        clock.advance(1_000)

        first = await engine.end()
        second = await engine.end()

        assert first is not None
        assert second is None
        recorder.record.assert_awaited_once_with(first)
        assert engine.last_outcome.local is True

    @pytest.mark.asyncio
    async def test_end_when_idle(self, engine):
        assert await engine.end() is None

    @pytest.mark.asyncio
    async def test_new_session_after_end(self, clock):
        ids = iter(["a", "b"])
        engine = SessionEngine(clock=clock, id_factory=lambda: next(ids))
        engine.start()
        first = await engine.end()
        engine.start()
        second = await engine.end()

        assert (first.client_id, second.client_id) == ("a", "b")

    def test_finalize_clamps_backwards_clock(self, engine, clock):
        engine.start()
        clock.advance(-5_000)

        session = engine.finalize()

        assert session.end_ms == session.start_ms
        assert session.duration_ms == 0
