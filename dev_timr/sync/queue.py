"""
Durable offline queue of sessions awaiting remote delivery.

The journal is a single encrypted document (``~/.dev-timr/queue.json``):

    {"sessions": [QueueEntry, ...], "lastSyncAttempt": epoch_ms | null}

Every mutation is persisted through the SecureStore before the call
returns, so a crash right after enqueue loses nothing. Entries leave the
queue when delivery is confirmed or when they reach the attempt
limit; the latter is reported in the drain summary, never silent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..local.secure_store import SecureStore
from ..repo import RepoInfo
from ..session.types import Session
from .types import DeliveryResult, DeliveryStatus, DrainSummary, QueueEntry, QueueStats

logger = logging.getLogger(__name__)

MAX_SYNC_ATTEMPTS = 10

Deliver = Callable[[QueueEntry], Awaitable[DeliveryResult]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _Journal:
    entries: list[QueueEntry] = field(default_factory=list)
    last_sync_attempt_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": [entry.to_dict() for entry in self.entries],
            "lastSyncAttempt": self.last_sync_attempt_ms,
        }


class DurableQueue:
    """Journal of pending deliveries with bounded retry.

    Enqueue and drain are serialized by an asyncio lock, so concurrent
    drains within one process never deliver or rewrite the same entry
    twice. Cross-process access is last-writer-wins.

    Example:
        >>> queue = DurableQueue(config.queue_file, SecureStore())
        >>> await queue.enqueue(session, repo)
        >>> summary = await queue.drain(lambda e: remote.deliver(e, credential))
        >>> summary.synced
        1
    """

    def __init__(
        self,
        path: Path,
        store: SecureStore,
        max_attempts: int = MAX_SYNC_ATTEMPTS,
        clock: Callable[[], int] = _now_ms,
    ):
        """Initialize the queue.

        Args:
            path: Journal file path
            store: SecureStore for encryption at rest
            max_attempts: Failed attempts after which an entry is dropped
            clock: Returns epoch milliseconds (injectable for tests)
        """
        self.path = path
        self.store = store
        self.max_attempts = max_attempts
        self._clock = clock
        self._lock = asyncio.Lock()

    async def _read(self) -> _Journal:
        data = await self.store.read_or_migrate(self.path)
        if not isinstance(data, dict) or not isinstance(data.get("sessions"), list):
            if data is not None:
                logger.warning(f"Queue journal {self.path} is malformed; treating as empty")
            return _Journal()

        journal = _Journal(last_sync_attempt_ms=data.get("lastSyncAttempt"))
        for item in data["sessions"]:
            try:
                journal.entries.append(QueueEntry.from_dict(item))
            except ValueError as e:
                logger.warning(f"Discarding malformed queue entry: {e}")
        return journal

    async def _write(self, journal: _Journal) -> None:
        await self.store.write(self.path, journal.to_dict())

    async def enqueue(self, session: Session, repo: RepoInfo) -> QueueEntry:
        """Append a session with zero attempts and persist immediately.

        A session already queued (same clientId) is not added twice.

        Raises:
            StorageIOError: If the journal cannot be written
        """
        async with self._lock:
            journal = await self._read()
            for entry in journal.entries:
                if entry.client_id == session.client_id:
                    logger.debug(f"Session {session.client_id} already queued")
                    return entry

            entry = QueueEntry(session=session, repo=repo, queued_at_ms=self._clock())
            journal.entries.append(entry)
            await self._write(journal)
            return entry

    async def drain(self, deliver: Deliver) -> DrainSummary:
        """Attempt delivery of every queued entry once, in queue order.

        Success removes the entry. A retryable failure increments its
        attempt counter and records the error; at ``max_attempts`` the entry
        is dropped and listed in the summary. An authentication failure
        stops the drain and retains the current and all later entries
        without charging them an attempt.

        Args:
            deliver: Delivers one entry and returns a typed result

        Returns:
            DrainSummary of this pass
        """
        async with self._lock:
            journal = await self._read()
            summary = DrainSummary()
            if not journal.entries:
                return summary

            journal.last_sync_attempt_ms = self._clock()
            remaining: list[QueueEntry] = []
            pending = list(journal.entries)

            try:
                while pending:
                    entry = pending[0]
                    result = await deliver(entry)
                    pending.pop(0)

                    if result.succeeded:
                        summary.synced += 1
                        continue

                    if result.status == DeliveryStatus.AUTH_REQUIRED:
                        summary.requires_reauth = True
                        remaining.append(entry)
                        remaining.extend(pending)
                        summary.skipped = 1 + len(pending)
                        pending = []
                        break

                    entry.sync_attempts += 1
                    entry.last_error = result.error
                    summary.errors[entry.client_id] = result.error or "delivery failed"
                    if entry.sync_attempts >= self.max_attempts:
                        summary.dropped += 1
                        summary.dropped_entries.append(entry)
                        logger.warning(
                            f"Dropping session {entry.client_id} after {entry.sync_attempts} "
                            f"failed sync attempts: {entry.last_error}"
                        )
                    else:
                        summary.retained += 1
                        remaining.append(entry)
                        logger.debug(
                            f"Session {entry.client_id} sync attempt {entry.sync_attempts} failed: "
                            f"{entry.last_error}"
                        )
            finally:
                # Persist progress even if delivery raised mid-pass
                journal.entries = remaining + pending
                await self._write(journal)

            logger.info(
                f"Queue drain: {summary.synced} synced, {summary.retained} retained, "
                f"{summary.dropped} dropped, {summary.skipped} skipped",
                extra={"drain": summary.to_dict()},
            )
            return summary

    async def entries(self) -> list[QueueEntry]:
        return (await self._read()).entries

    async def count(self) -> int:
        return len(await self.entries())

    async def stats(self) -> QueueStats:
        """Count, oldest queued time and total attempts of retained entries."""
        journal = await self._read()
        entries = journal.entries
        return QueueStats(
            count=len(entries),
            oldest_queued_at_ms=min((e.queued_at_ms for e in entries), default=None),
            total_attempts=sum(e.sync_attempts for e in entries),
            last_sync_attempt_ms=journal.last_sync_attempt_ms,
        )

    async def clear(self) -> None:
        """Discard every queued entry."""
        async with self._lock:
            await self._write(_Journal())
