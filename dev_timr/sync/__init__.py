"""
Synchronization of finalized sessions to the remote.

Key classes:
- DurableQueue: encrypted journal of pending deliveries with bounded retry
- RemoteSessionStore: idempotent delivery over the remote data API
- StatsService: cloud-first statistics with local fallback
"""

from .migrate import MigrationSummary, migrate_local_sessions
from .queue import MAX_SYNC_ATTEMPTS, DurableQueue
from .remote import RemoteSessionStore, classify_failure
from .stats import StatsReport, StatsService
from .types import (
    DeliveryResult,
    DeliveryStatus,
    DrainSummary,
    QueueEntry,
    QueueStats,
)

__all__ = [
    # Types
    "DeliveryStatus",
    "DeliveryResult",
    "QueueEntry",
    "QueueStats",
    "DrainSummary",
    # Queue
    "DurableQueue",
    "MAX_SYNC_ATTEMPTS",
    # Remote
    "RemoteSessionStore",
    "classify_failure",
    # Statistics and migration
    "StatsService",
    "StatsReport",
    "MigrationSummary",
    "migrate_local_sessions",
]
