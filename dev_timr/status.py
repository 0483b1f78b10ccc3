"""
Dashboard status payload.

``snapshot()`` runs on the ~1 Hz display tick and must never block, so it
only combines the engine's in-memory clock with totals cached by the last
``refresh()``. Refreshing (ledger or cloud totals, queue size, credential
validity) is the caller's job, on its own slower schedule.
"""

from __future__ import annotations

import logging
from typing import Any

from .identity.credentials import CredentialManager
from .local.ledger import LedgerStats
from .session.engine import SessionEngine
from .sync.stats import SOURCE_LOCAL, StatsService

logger = logging.getLogger(__name__)


class StatusReporter:
    """Builds the event-stream payload consumed by the dashboard."""

    def __init__(
        self,
        engine: SessionEngine,
        stats: StatsService,
        credentials: CredentialManager | None = None,
    ):
        self.engine = engine
        self.stats_service = stats
        self.credentials = credentials

        self._stats = LedgerStats()
        self._queued_count = 0
        self._offline = True
        self._source = SOURCE_LOCAL

    async def refresh(self, force_local: bool = False) -> None:
        """Reload totals, queue size and credential validity."""
        report = await self.stats_service.get_stats(force_local=force_local)
        self._stats = report.stats
        self._queued_count = report.queued_count
        self._source = report.source
        self._offline = self.credentials is None or not await self.credentials.is_valid()

    def snapshot(self) -> dict[str, Any]:
        """Current status without any I/O."""
        elapsed = self.engine.elapsed()
        current = self._stats.with_in_flight(elapsed)
        return {
            "elapsedMs": elapsed,
            "taskName": self.engine.task_name,
            "running": self.engine.is_active,
            "paused": self.engine.is_paused,
            "todayMs": self._stats.today_ms,
            "weekMs": self._stats.week_ms,
            "monthMs": self._stats.month_ms,
            "totalMs": self._stats.total_ms,
            "todayWithCurrentMs": current.today_ms,
            "weekWithCurrentMs": current.week_ms,
            "monthWithCurrentMs": current.month_ms,
            "totalWithCurrentMs": current.total_ms,
            "queuedCount": self._queued_count,
            "offline": self._offline,
            "source": self._source,
        }
