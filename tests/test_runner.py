"""
Tests for running a command under the timer.
"""

import signal

import pytest

from dev_timr.exceptions import InputValidationError
from dev_timr.runner import COMMAND_NOT_FOUND, ShutdownHooks, exit_code, run_tracked
from dev_timr.session.engine import SessionEngine
from dev_timr.session.types import SessionState


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, returncode: int, on_wait=None):
        self._final = returncode
        self.returncode = None
        self.on_wait = on_wait
        self.signals: list[int] = []

    async def wait(self) -> int:
        if self.on_wait is not None:
            self.on_wait()
        self.returncode = self._final
        return self._final

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)


class RecordingRecorder:
    def __init__(self):
        self.sessions = []

    async def record(self, session):
        self.sessions.append(session)


@pytest.fixture
def recorder() -> RecordingRecorder:
    return RecordingRecorder()


@pytest.fixture
def engine(recorder, clock) -> SessionEngine:
    return SessionEngine(recorder=recorder, clock=clock)


@pytest.fixture
def hooks() -> ShutdownHooks:
    # No real handlers in tests; signals are delivered via trigger()
    return ShutdownHooks(signals=())


class TestExitCode:
    """Tests for shell-style exit codes."""

    @pytest.mark.parametrize(
        "returncode,expected",
        [(0, 0), (3, 3), (-signal.SIGINT, 130), (-signal.SIGTERM, 143), (None, 1)],
    )
    def test_exit_code(self, returncode, expected):
        assert exit_code(returncode) == expected


class TestRunTracked:
    """Tests for the run lifecycle with a fake process."""

    @pytest.mark.asyncio
    async def test_child_exit_ends_session(self, engine, recorder, hooks, clock):
        spawned = []

        async def spawn(*argv):
            spawned.append(argv)
            clock.advance(42_000)
            return FakeProcess(0)

        code = await run_tracked("npm run dev", engine, task_name="frontend", hooks=hooks, spawn=spawn)

        assert code == 0
        assert spawned == [("npm", "run", "dev")]
        (session,) = recorder.sessions
        assert session.task_name == "frontend"
        assert session.duration_ms == 42_000
        assert engine.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_exit_code_propagates(self, engine, hooks):
        async def spawn(*argv):
            return FakeProcess(2)

        assert await run_tracked("make test", engine, hooks=hooks, spawn=spawn) == 2

    @pytest.mark.asyncio
    async def test_signal_forwarded_and_session_recorded_once(self, engine, recorder, hooks):
        process = FakeProcess(-signal.SIGTERM, on_wait=lambda: hooks.trigger(signal.SIGTERM))

        async def spawn(*argv):
            return process

        code = await run_tracked("python -m http.server", engine, hooks=hooks, spawn=spawn)

        assert code == 143
        assert process.signals == [signal.SIGTERM]
        assert hooks.received == signal.SIGTERM
        assert len(recorder.sessions) == 1

    @pytest.mark.asyncio
    async def test_spawn_failure_records_nothing(self, engine, recorder, hooks):
        """A command that never ran leaves no session behind."""

        async def spawn(*argv):
            raise FileNotFoundError(argv[0])

        code = await run_tracked("no-such-tool", engine, hooks=hooks, spawn=spawn)

        assert code == COMMAND_NOT_FOUND
        assert engine.state == SessionState.IDLE
        assert recorder.sessions == []
        assert hooks.registered is False

    @pytest.mark.asyncio
    async def test_rejected_command_starts_nothing(self, engine, recorder, hooks):
        async def spawn(*argv):
            raise AssertionError("should not spawn")

        with pytest.raises(InputValidationError):
            await run_tracked("npm run dev && rm -rf /", engine, hooks=hooks, spawn=spawn)

        assert engine.state == SessionState.IDLE
        assert recorder.sessions == []


class TestRealProcess:
    """Tests that spawn real processes."""

    @pytest.mark.asyncio
    async def test_exit_status(self, engine, recorder, hooks):
        assert await run_tracked("sh -c 'exit 3'", engine, hooks=hooks) == 3
        assert len(recorder.sessions) == 1

    @pytest.mark.asyncio
    async def test_missing_executable(self, engine, hooks):
        assert await run_tracked("dev-timr-no-such-binary-xyz", engine, hooks=hooks) == COMMAND_NOT_FOUND


class TestShutdownHooks:
    """Tests for signal handler registration."""

    @pytest.mark.asyncio
    async def test_register_once(self):
        hooks = ShutdownHooks()
        calls = []

        async def first():
            calls.append("first")

        async def second():
            calls.append("second")

        hooks.register(first)
        hooks.register(second)
        hooks.trigger(signal.SIGINT)
        await hooks.wait()
        hooks.unregister()

        assert calls == ["first"]
        assert hooks.registered is False

    @pytest.mark.asyncio
    async def test_trigger_skips_exited_child(self):
        hooks = ShutdownHooks(signals=())
        child = FakeProcess(0)
        child.returncode = 0
        hooks.child = child

        hooks.trigger(signal.SIGINT)

        assert child.signals == []
