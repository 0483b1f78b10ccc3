"""
Run a user command under the timer.

The command is validated and executed as an argument vector (never through
a shell) with inherited standard streams. Interrupt and terminate signals
are forwarded to the child and end the session; the child's exit ends it
again, which is a no-op the second time.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import Any

from .sanitization import validate_command
from .session.engine import SessionEngine
from .session.types import Session

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)
COMMAND_NOT_FOUND = 127

Spawn = Callable[..., Awaitable[asyncio.subprocess.Process]]


def exit_code(returncode: int | None) -> int:
    """Shell-style exit code: a child killed by signal N exits 128 + N."""
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 - returncode
    return returncode


class ShutdownHooks:
    """Signal handlers registered once, each running an async callback.

    Example:
        >>> hooks = ShutdownHooks()
        >>> hooks.register(engine.end)
        >>> ...
        >>> await hooks.wait()
        >>> hooks.unregister()
    """

    def __init__(self, signals: tuple[signal.Signals, ...] = SHUTDOWN_SIGNALS):
        self.signals = signals
        self.received: signal.Signals | None = None
        self.child: asyncio.subprocess.Process | None = None
        self._callback: Callable[[], Awaitable[Any]] | None = None
        self._installed: list[signal.Signals] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def registered(self) -> bool:
        return self._callback is not None

    def register(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """Install handlers for every shutdown signal. Later calls are ignored."""
        if self._callback is not None:
            return
        self._callback = callback

        loop = asyncio.get_running_loop()
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self.trigger, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Not available on this platform/thread; child exit still ends the session
                logger.debug(f"Cannot install handler for {sig.name}: {e}")

    def trigger(self, sig: signal.Signals) -> None:
        """Forward the signal to the child and schedule the callback."""
        self.received = sig
        logger.info(f"Received {sig.name}; stopping session")

        if self.child is not None and self.child.returncode is None:
            try:
                self.child.send_signal(sig)
            except ProcessLookupError:
                pass

        if self._callback is not None:
            task = asyncio.ensure_future(self._callback())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def wait(self) -> None:
        """Wait for callbacks started by signals to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def unregister(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()
        self._callback = None


async def run_tracked(
    command: str | list[str],
    engine: SessionEngine,
    task_name: str | None = None,
    hooks: ShutdownHooks | None = None,
    spawn: Spawn = asyncio.create_subprocess_exec,
) -> int:
    """Time ``command`` from start until it exits.

    Args:
        command: Command string or argv
        engine: Idle session engine (its recorder persists the session)
        task_name: Optional task name for the session
        hooks: Shutdown hooks (created when omitted)
        spawn: Process factory (injectable for tests)

    Returns:
        The child's exit code (128 + N when killed by signal N), or 127
        without starting a session when the command cannot be spawned

    Raises:
        InputValidationError: If the command is rejected; no session is started
    """
    argv = validate_command(command)
    hooks = hooks or ShutdownHooks()

    try:
        proc = await spawn(*argv)
    except OSError as e:
        logger.error(f"Could not start {argv[0]}: {e}")
        return COMMAND_NOT_FOUND

    if not engine.start(task_name):
        logger.warning("A session is already active; not starting another")

    async def end_session() -> Session | None:
        return await engine.end()

    hooks.register(end_session)
    hooks.child = proc
    try:
        return exit_code(await proc.wait())
    finally:
        await hooks.wait()
        await engine.end()
        hooks.unregister()
