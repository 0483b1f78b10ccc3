"""
Per-repository session ledger.

One document per working directory (``.dev-clock.json``) holding every
finalized session plus optional dashboard settings:

    {"sessions": [Session, ...], "uiSettings": {...}}

The ledger is read wholesale on every query; it is small and local. It is
written through the SecureStore, so a legacy plaintext ledger is upgraded
to the encrypted envelope the first time it is read. A document that fails
shape validation is treated as an empty ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import aiofiles

from ..exceptions import IntegrityError, StorageIOError
from ..session.types import Session
from .file_ops import file_exists, read_text
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

UNNAMED_TASKS = "Unnamed Tasks"


@dataclass
class LedgerDocument:
    """In-memory form of the ledger file."""

    sessions: list[Session] = field(default_factory=list)
    ui_settings: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"sessions": [s.to_dict() for s in self.sessions]}
        if self.ui_settings is not None:
            data["uiSettings"] = self.ui_settings
        return data

    @classmethod
    def from_dict(cls, data: Any) -> LedgerDocument:
        """Validate and build a ledger document.

        Raises:
            ValueError: If the document shape is wrong
        """
        if not isinstance(data, dict):
            raise ValueError("ledger must be an object")
        sessions = data.get("sessions")
        if not isinstance(sessions, list):
            raise ValueError("ledger 'sessions' must be a list")
        ui_settings = data.get("uiSettings")
        if ui_settings is not None and not isinstance(ui_settings, dict):
            raise ValueError("ledger 'uiSettings' must be an object")

        return cls(
            sessions=[Session.from_dict(item) for item in sessions],
            ui_settings=ui_settings,
        )


@dataclass
class LedgerStats:
    """Aggregate durations in milliseconds."""

    total_ms: int = 0
    today_ms: int = 0
    week_ms: int = 0
    month_ms: int = 0

    def with_in_flight(self, in_flight_ms: int) -> LedgerStats:
        """Totals including the running session."""
        extra = max(0, in_flight_ms)
        return LedgerStats(
            total_ms=self.total_ms + extra,
            today_ms=self.today_ms + extra,
            week_ms=self.week_ms + extra,
            month_ms=self.month_ms + extra,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "totalMs": self.total_ms,
            "todayMs": self.today_ms,
            "weekMs": self.week_ms,
            "monthMs": self.month_ms,
        }


def period_starts(now: datetime) -> tuple[datetime, datetime, datetime]:
    """Local midnight today, the preceding Sunday, and the 1st of the month."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # weekday(): Monday=0 ... Sunday=6
    week = today - timedelta(days=(today.weekday() + 1) % 7)
    month = today.replace(day=1)
    return today, week, month


def _local_date(ms: int) -> date:
    return datetime.fromtimestamp(ms / 1000).date()


def aggregate_durations(
    spans: Iterable[tuple[int, int]],
    now: datetime | None = None,
) -> LedgerStats:
    """Bucket ``(start_ms, duration_ms)`` pairs into total/today/week/month.

    Shared by the local ledger and the remote statistics so both sources
    agree on period boundaries.
    """
    today, week_start, month_start = period_starts(now or datetime.now())
    week_ms = int(week_start.timestamp() * 1000)
    month_ms = int(month_start.timestamp() * 1000)

    stats = LedgerStats()
    for start_ms, duration in spans:
        if duration <= 0:
            continue
        stats.total_ms += duration
        if _local_date(start_ms) == today.date():
            stats.today_ms += duration
        if start_ms >= week_ms:
            stats.week_ms += duration
        if start_ms >= month_ms:
            stats.month_ms += duration
    return stats


async def ensure_gitignore(directory: Path, entry: str) -> None:
    """Add the ledger file to the directory's .gitignore.

    Failures are logged and ignored; the ledger is written regardless.
    """
    gitignore = directory / ".gitignore"
    try:
        content = await read_text(gitignore)
        if content is None:
            async with aiofiles.open(gitignore, "w", encoding="utf-8") as f:
                await f.write(f"# dev-timr session data\n{entry}\n")
            logger.info(f"Created .gitignore with {entry}")
            return

        if entry in (line.strip() for line in content.splitlines()):
            return

        prefix = "" if content.endswith("\n") or not content else "\n"
        async with aiofiles.open(gitignore, "a", encoding="utf-8") as f:
            await f.write(f"{prefix}{entry}\n")
        logger.info(f"Added {entry} to .gitignore")
    except (OSError, StorageIOError) as e:
        logger.warning(f"Could not update {gitignore}: {e}")


class LocalLedger:
    """Append-only store of finalized sessions for one working directory."""

    def __init__(self, path: Path, store: SecureStore, manage_gitignore: bool = True):
        """Initialize the ledger.

        Args:
            path: Ledger file path (usually ``<cwd>/.dev-clock.json``)
            store: SecureStore used for encryption at rest
            manage_gitignore: Add the ledger file to ``.gitignore`` on first write
        """
        self.path = path
        self.store = store
        self.manage_gitignore = manage_gitignore

    async def read(self) -> LedgerDocument:
        """Read the whole ledger. Missing or corrupt files read as empty."""
        data = await self.store.read_or_migrate(self.path)
        if data is None:
            return LedgerDocument()

        try:
            return LedgerDocument.from_dict(data)
        except ValueError as e:
            logger.warning(IntegrityError(str(self.path), str(e)).message)
            return LedgerDocument()

    async def _write(self, document: LedgerDocument) -> None:
        if self.manage_gitignore and not await file_exists(self.path):
            await ensure_gitignore(self.path.parent, self.path.name)
        await self.store.write(self.path, document.to_dict())

    async def append(self, session: Session) -> None:
        """Persist a finalized session.

        Raises:
            StorageIOError: If the ledger cannot be written
        """
        document = await self.read()
        if any(s.client_id == session.client_id for s in document.sessions):
            logger.debug(f"Session {session.client_id} already in ledger")
            return
        document.sessions.append(session)
        await self._write(document)

    async def sessions(self) -> list[Session]:
        return (await self.read()).sessions

    async def stats(self, now: datetime | None = None) -> LedgerStats:
        """Compute total/today/week/month durations from local sessions."""
        sessions = await self.sessions()
        return aggregate_durations(((s.start_ms, s.duration_ms) for s in sessions), now)

    async def task_breakdown(self) -> list[tuple[str, int]]:
        """Time per task, largest first; unnamed sessions collapsed last."""
        totals: dict[str, int] = {}
        unnamed = 0
        for session in await self.sessions():
            if session.duration_ms <= 0:
                continue
            if session.task_name:
                totals[session.task_name] = totals.get(session.task_name, 0) + session.duration_ms
            else:
                unnamed += session.duration_ms

        result = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        if unnamed > 0:
            result.append((UNNAMED_TASKS, unnamed))
        return result

    async def daily_breakdown(self, days: int = 30, now: datetime | None = None) -> list[tuple[str, int]]:
        """Zero-filled time per local calendar day for the last ``days`` days."""
        today = (now or datetime.now()).date()
        daily = {(today - timedelta(days=i)).isoformat(): 0 for i in range(days)}

        for session in await self.sessions():
            key = _local_date(session.start_ms).isoformat()
            if key in daily and session.duration_ms > 0:
                daily[key] += session.duration_ms

        return sorted(daily.items())

    async def last_task_name(self) -> str | None:
        """Most recent task name, for continuing where the user left off."""
        for session in reversed(await self.sessions()):
            if session.task_name:
                return session.task_name
        return None

    async def get_ui_settings(self) -> dict[str, Any] | None:
        return (await self.read()).ui_settings

    async def save_ui_settings(self, settings: dict[str, Any]) -> None:
        """Store dashboard settings alongside (not inside) session data."""
        document = await self.read()
        document.ui_settings = settings
        await self._write(document)
