"""
Cloud-first repository statistics with local fallback.

When logged in, totals come from the remote (team-wide or personal); any
remote failure, or no credential at all, falls back to the local ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..exceptions import DeliveryError, TimrError
from ..identity.credentials import CredentialManager
from ..local.ledger import LedgerStats, LocalLedger
from ..repo import RepoInfo
from .queue import DurableQueue
from .remote import RemoteSessionStore

logger = logging.getLogger(__name__)

SOURCE_CLOUD = "cloud"
SOURCE_LOCAL = "local"


@dataclass
class StatsReport:
    """Totals plus where they came from."""

    stats: LedgerStats = field(default_factory=LedgerStats)
    source: str = SOURCE_LOCAL
    queued_count: int = 0
    personal_only: bool = False
    error: str | None = None

    @property
    def includes_paused_time(self) -> bool:
        """Remote rows store wall time; only the local ledger excludes pauses."""
        return self.source == SOURCE_CLOUD

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = self.stats.to_dict()
        data.update(
            {
                "source": self.source,
                "queuedCount": self.queued_count,
                "includesPausedTime": self.includes_paused_time,
            }
        )
        return data


class StatsService:
    """Resolves repository totals from the best available source."""

    def __init__(
        self,
        ledger: LocalLedger,
        queue: DurableQueue,
        remote: RemoteSessionStore | None = None,
        credentials: CredentialManager | None = None,
        repo: RepoInfo | None = None,
    ):
        self.ledger = ledger
        self.queue = queue
        self.remote = remote
        self.credentials = credentials
        self.repo = repo

    async def get_stats(
        self,
        force_local: bool = False,
        personal_only: bool = False,
        now: datetime | None = None,
    ) -> StatsReport:
        """Cloud totals when possible, local ledger totals otherwise.

        Args:
            force_local: Skip the remote entirely
            personal_only: Restrict cloud totals to the current user
            now: Reference time for the today/week/month buckets
        """
        queued = await self.queue.count()

        if not force_local and self.remote is not None and self.credentials is not None and self.repo:
            credential = await self.credentials.get_valid_credential()
            if credential is not None:
                try:
                    stats = await self.remote.fetch_repo_stats(
                        self.repo,
                        credential.session_token,
                        user_id=credential.user_id if personal_only else None,
                        now=now,
                    )
                    return StatsReport(stats, SOURCE_CLOUD, queued, personal_only)
                except TimrError as e:
                    reason = e.reason if isinstance(e, DeliveryError) else e.message
                    logger.warning(f"Falling back to local stats: {reason}")
                    local = await self.ledger.stats(now)
                    return StatsReport(local, SOURCE_LOCAL, queued, personal_only, error=reason)

        return StatsReport(await self.ledger.stats(now), SOURCE_LOCAL, queued, personal_only)
