"""
One-shot upload of an existing local ledger to the remote.

Ledger sessions written before client ids existed carry the deterministic
``legacy-<start>-<end>`` id, so running the migration twice never creates
duplicate remote rows.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from ..identity.types import CredentialRecord
from ..local.ledger import LocalLedger
from ..repo import RepoInfo
from .remote import RemoteSessionStore
from .types import DeliveryStatus, QueueEntry

logger = logging.getLogger(__name__)


@dataclass
class MigrationSummary:
    """Outcome of a migration run.

    Attributes:
        synced: Sessions inserted remotely
        failed: Sessions that could not be delivered
        skipped: Sessions already present remotely
        requires_reauth: Migration stopped on an authentication failure
    """

    synced: int = 0
    failed: int = 0
    skipped: int = 0
    requires_reauth: bool = False
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.synced + self.failed + self.skipped


async def migrate_local_sessions(
    ledger: LocalLedger,
    remote: RemoteSessionStore,
    credential: CredentialRecord,
    repo: RepoInfo,
) -> MigrationSummary:
    """Upload every ledger session for ``repo``.

    The local ledger is left untouched as a backup.
    """
    summary = MigrationSummary()
    sessions = await ledger.sessions()
    now_ms = int(time.time() * 1000)

    for index, session in enumerate(sessions):
        entry = QueueEntry(session=session, repo=repo, queued_at_ms=now_ms)
        result = await remote.deliver(entry, credential)

        if result.status == DeliveryStatus.DELIVERED:
            summary.synced += 1
        elif result.status == DeliveryStatus.ALREADY_PRESENT:
            summary.skipped += 1
        elif result.status == DeliveryStatus.AUTH_REQUIRED:
            summary.requires_reauth = True
            summary.failed += len(sessions) - index
            summary.errors[session.client_id] = result.error or "authentication required"
            break
        else:
            summary.failed += 1
            summary.errors[session.client_id] = result.error or "delivery failed"

    logger.info(
        f"Migrated {repo.full_name}: {summary.synced} synced, "
        f"{summary.skipped} already present, {summary.failed} failed"
    )
    return summary
