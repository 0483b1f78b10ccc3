"""
Sync types and data classes.

Defines the queue journal entry, the typed result of one remote delivery
and the summary returned by a queue drain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..repo import RepoInfo
from ..session.types import Session


class DeliveryStatus(Enum):
    """Outcome of one delivery attempt."""

    DELIVERED = "delivered"
    ALREADY_PRESENT = "already_present"  # Same clientId found remotely
    RETRYABLE = "retryable"  # Counted against the attempt cap
    AUTH_REQUIRED = "auth_required"  # Credential problem; entry not charged

    @property
    def succeeded(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.ALREADY_PRESENT)


@dataclass
class DeliveryResult:
    """Typed result of RemoteSessionStore.deliver()."""

    status: DeliveryStatus
    error: str | None = None
    remote_id: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


@dataclass
class QueueEntry:
    """A session awaiting confirmed remote delivery.

    Attributes:
        session: The finalized session (immutable)
        repo: Repository the session belongs to
        queued_at_ms: When the entry was enqueued
        sync_attempts: Failed delivery attempts so far
        last_error: Message of the most recent failure
    """

    session: Session
    repo: RepoInfo
    queued_at_ms: int
    sync_attempts: int = 0
    last_error: str | None = None

    @property
    def client_id(self) -> str:
        return self.session.client_id

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the journal format."""
        data = self.session.to_dict()
        data.update(
            {
                "queuedAtMs": self.queued_at_ms,
                "syncAttempts": self.sync_attempts,
                "lastError": self.last_error,
                "repoOwner": self.repo.owner,
                "repoName": self.repo.name,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueEntry:
        """Deserialize a journal entry.

        Also accepts the older layout with a nested ``repo`` object and
        ``queuedAt``.

        Raises:
            ValueError: If the entry is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("queue entry must be an object")

        session = Session.from_dict(data)

        owner = data.get("repoOwner")
        name = data.get("repoName")
        legacy_repo = data.get("repo")
        if (not owner or not name) and isinstance(legacy_repo, dict):
            owner = legacy_repo.get("owner")
            name = legacy_repo.get("repo")
        if not isinstance(owner, str) or not isinstance(name, str) or not owner or not name:
            raise ValueError("queue entry requires repoOwner and repoName")

        queued_at = data.get("queuedAtMs", data.get("queuedAt", session.end_ms))
        attempts = data.get("syncAttempts", 0)
        if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 0:
            raise ValueError("syncAttempts must be a non-negative integer")
        if isinstance(queued_at, bool) or not isinstance(queued_at, int):
            raise ValueError("queuedAtMs must be an integer")

        last_error = data.get("lastError")
        return cls(
            session=session,
            repo=RepoInfo(owner=owner, name=name),
            queued_at_ms=queued_at,
            sync_attempts=attempts,
            last_error=last_error if isinstance(last_error, str) else None,
        )


@dataclass
class DrainSummary:
    """Result of one pass over the queue.

    Attributes:
        synced: Entries confirmed delivered (or already present) and removed
        retained: Entries that failed and remain queued
        dropped: Entries removed after reaching the attempt cap
        skipped: Entries not attempted because the drain stopped early
        requires_reauth: The drain stopped on an authentication failure
        errors: Failure messages keyed by clientId
        dropped_entries: The permanently failed entries, for reporting
    """

    synced: int = 0
    retained: int = 0
    dropped: int = 0
    skipped: int = 0
    requires_reauth: bool = False
    errors: dict[str, str] = field(default_factory=dict)
    dropped_entries: list[QueueEntry] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.synced + self.retained + self.dropped

    @property
    def remaining(self) -> int:
        return self.retained + self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "retained": self.retained,
            "dropped": self.dropped,
            "skipped": self.skipped,
            "requiresReauth": self.requires_reauth,
            "errors": dict(self.errors),
        }


@dataclass
class QueueStats:
    """Observability snapshot of the queue."""

    count: int = 0
    oldest_queued_at_ms: int | None = None
    total_attempts: int = 0
    last_sync_attempt_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "oldestQueuedAtMs": self.oldest_queued_at_ms,
            "totalAttempts": self.total_attempts,
            "lastSyncAttemptMs": self.last_sync_attempt_ms,
        }
