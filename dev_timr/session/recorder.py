"""
Finalize-then-persist pipeline for completed sessions.

Ordering: the ledger write always happens before the queue enqueue, so a
crash between the two leaves the session recorded locally. Sync is only
attempted with a valid credential and a known repository, and sync
failures never raise out of ``record()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..exceptions import TimrError

if TYPE_CHECKING:
    from ..identity.credentials import CredentialManager
    from ..local.ledger import LocalLedger
    from ..repo import RepoInfo
    from ..sync.queue import DurableQueue
    from ..sync.remote import RemoteSessionStore
    from ..sync.types import DrainSummary
    from .types import Session

logger = logging.getLogger(__name__)


@dataclass
class RecordOutcome:
    """Where a finalized session ended up."""

    local: bool = True
    queued: bool = False
    cloud_synced: bool = False
    summary: DrainSummary | None = None
    error: str | None = None


class SessionRecorder:
    """Routes finalized sessions to the ledger and, when online, the queue."""

    def __init__(
        self,
        ledger: LocalLedger,
        queue: DurableQueue | None = None,
        credentials: CredentialManager | None = None,
        remote: RemoteSessionStore | None = None,
        repo: RepoInfo | None = None,
    ):
        self.ledger = ledger
        self.queue = queue
        self.credentials = credentials
        self.remote = remote
        self.repo = repo

    @property
    def can_sync(self) -> bool:
        return None not in (self.queue, self.credentials, self.remote, self.repo)

    async def record(self, session: Session) -> RecordOutcome:
        """Persist locally, then enqueue and drain when a credential is valid.

        Raises:
            StorageIOError: Only if the ledger itself cannot be written
        """
        await self.ledger.append(session)
        outcome = RecordOutcome(local=True)

        if not self.can_sync:
            return outcome
        if not await self.credentials.is_valid():
            logger.debug("No valid credential; session kept local only")
            return outcome

        try:
            await self.queue.enqueue(session, self.repo)
            outcome.queued = True
            outcome.summary = await self.sync_pending()
            still_queued = {entry.client_id for entry in await self.queue.entries()}
            outcome.cloud_synced = session.client_id not in still_queued
        except TimrError as e:
            outcome.error = e.message
            logger.warning(f"Session saved locally; sync deferred: {e.message}")
        return outcome

    async def sync_pending(self) -> DrainSummary | None:
        """Drain the queue with the current credential.

        Returns:
            The drain summary, or None when there is no usable credential
        """
        if not self.can_sync:
            return None
        credential = await self.credentials.get_valid_credential()
        if credential is None:
            return None

        async def deliver(entry):
            return await self.remote.deliver(entry, credential)

        summary = await self.queue.drain(deliver)
        if summary.requires_reauth:
            logger.warning("Sync paused: authentication required. Run `dev-timr login`.")
        return summary
