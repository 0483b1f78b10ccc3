"""
Tests for the durable offline queue.
"""

import json
import logging

import pytest

from dev_timr.local.secure_store import EncryptedBlob
from dev_timr.repo import RepoInfo
from dev_timr.sync.queue import MAX_SYNC_ATTEMPTS, DurableQueue
from dev_timr.sync.types import DeliveryResult, DeliveryStatus, QueueEntry

from .conftest import make_session


@pytest.fixture
def queue(tmp_path, store, clock) -> DurableQueue:
    return DurableQueue(tmp_path / "queue.json", store, clock=clock)


def always(status: DeliveryStatus, error: str | None = None):
    calls: list[str] = []

    async def deliver(entry: QueueEntry) -> DeliveryResult:
        calls.append(entry.client_id)
        return DeliveryResult(status=status, error=error)

    deliver.calls = calls
    return deliver


class TestEnqueue:
    """Tests for adding sessions."""

    @pytest.mark.asyncio
    async def test_enqueue_persists_immediately(self, queue, repo, store):
        await queue.enqueue(make_session(), repo)

        # A fresh instance over the same file sees the entry
        reopened = DurableQueue(queue.path, store)
        entries = await reopened.entries()
        assert [e.client_id for e in entries] == [make_session().client_id]
        assert entries[0].sync_attempts == 0
        assert EncryptedBlob.looks_like_envelope(json.loads(queue.path.read_text()))

    @pytest.mark.asyncio
    async def test_enqueue_same_client_id_once(self, queue, repo):
        await queue.enqueue(make_session(), repo)
        await queue.enqueue(make_session(), repo)

        assert await queue.count() == 1

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, queue, store):
        await store.write(
            queue.path,
            {
                "sessions": [
                    {"startMs": 1, "endMs": 2, "clientId": "ok", "repoOwner": "o", "repoName": "r"},
                    {"startMs": 1, "endMs": 2, "clientId": "no-repo"},
                ],
                "lastSyncAttempt": None,
            },
        )

        assert [e.client_id for e in await queue.entries()] == ["ok"]

    @pytest.mark.asyncio
    async def test_legacy_entry_layout(self, queue, store):
        await store.write(
            queue.path,
            {
                "sessions": [
                    {
                        "startMs": 1,
                        "endMs": 2,
                        "durationMs": 1,
                        "clientId": "c",
                        "repo": {"owner": "o", "repo": "r"},
                        "queuedAt": 5,
                        "syncAttempts": 3,
                    }
                ]
            },
        )

        (entry,) = await queue.entries()
        assert entry.repo == RepoInfo("o", "r")
        assert entry.queued_at_ms == 5
        assert entry.sync_attempts == 3


class TestDrain:
    """Tests for delivery passes."""

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        deliver = always(DeliveryStatus.DELIVERED)
        summary = await queue.drain(deliver)

        assert summary.attempted == 0
        assert deliver.calls == []

    @pytest.mark.asyncio
    async def test_success_removes(self, queue, repo):
        await queue.enqueue(make_session(client_id="a"), repo)
        await queue.enqueue(make_session(client_id="b"), repo)

        summary = await queue.drain(always(DeliveryStatus.DELIVERED))

        assert summary.synced == 2
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_summary_logged_as_structured_fields(self, queue, repo, caplog):
        await queue.enqueue(make_session(client_id="a"), repo)
        caplog.set_level(logging.INFO, logger="dev_timr.sync.queue")

        await queue.drain(always(DeliveryStatus.RETRYABLE, "HTTP 503"))

        record = next(r for r in caplog.records if r.getMessage().startswith("Queue drain"))
        assert record.drain == {
            "synced": 0,
            "retained": 1,
            "dropped": 0,
            "skipped": 0,
            "requiresReauth": False,
            "errors": {"a": "HTTP 503"},
        }

    @pytest.mark.asyncio
    async def test_already_present_counts_as_synced(self, queue, repo):
        await queue.enqueue(make_session(), repo)

        summary = await queue.drain(always(DeliveryStatus.ALREADY_PRESENT))

        assert summary.synced == 1
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_failure_charges_attempt(self, queue, repo):
        await queue.enqueue(make_session(), repo)

        summary = await queue.drain(always(DeliveryStatus.RETRYABLE, "HTTP 503"))

        (entry,) = await queue.entries()
        assert entry.sync_attempts == 1
        assert entry.last_error == "HTTP 503"
        assert summary.retained == 1
        assert summary.errors == {entry.client_id: "HTTP 503"}

    @pytest.mark.asyncio
    async def test_nine_failures_retained(self, queue, repo):
        await queue.enqueue(make_session(), repo)
        failing = always(DeliveryStatus.RETRYABLE, "boom")

        for _ in range(MAX_SYNC_ATTEMPTS - 1):
            await queue.drain(failing)

        (entry,) = await queue.entries()
        assert entry.sync_attempts == 9

    @pytest.mark.asyncio
    async def test_tenth_failure_drops_and_reports(self, queue, repo):
        await queue.enqueue(make_session(), repo)
        failing = always(DeliveryStatus.RETRYABLE, "boom")

        for _ in range(MAX_SYNC_ATTEMPTS - 1):
            await queue.drain(failing)
        summary = await queue.drain(failing)

        assert summary.dropped == 1
        assert summary.dropped_entries[0].client_id == make_session().client_id
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_auth_failure_stops_without_charging(self, queue, repo):
        for cid in ("a", "b", "c"):
            await queue.enqueue(make_session(client_id=cid), repo)
        deliver = always(DeliveryStatus.AUTH_REQUIRED, "HTTP 401")

        summary = await queue.drain(deliver)

        assert deliver.calls == ["a"]
        assert summary.requires_reauth is True
        assert summary.skipped == 3
        entries = await queue.entries()
        assert [e.client_id for e in entries] == ["a", "b", "c"]
        assert all(e.sync_attempts == 0 for e in entries)

    @pytest.mark.asyncio
    async def test_mixed_results_keep_order(self, queue, repo):
        for cid in ("a", "b", "c"):
            await queue.enqueue(make_session(client_id=cid), repo)
        results = {
            "a": DeliveryResult(DeliveryStatus.RETRYABLE, "x"),
            "b": DeliveryResult(DeliveryStatus.DELIVERED),
            "c": DeliveryResult(DeliveryStatus.RETRYABLE, "y"),
        }

        async def deliver(entry):
            return results[entry.client_id]

        summary = await queue.drain(deliver)

        assert (summary.synced, summary.retained) == (1, 2)
        assert [e.client_id for e in await queue.entries()] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_progress_persisted_when_deliver_raises(self, queue, repo):
        for cid in ("a", "b"):
            await queue.enqueue(make_session(client_id=cid), repo)

        async def deliver(entry):
            if entry.client_id == "b":
                raise RuntimeError("unexpected")
            return DeliveryResult(DeliveryStatus.DELIVERED)

        with pytest.raises(RuntimeError):
            await queue.drain(deliver)

        assert [e.client_id for e in await queue.entries()] == ["b"]

    @pytest.mark.asyncio
    async def test_drain_is_idempotent_after_success(self, queue, repo):
        await queue.enqueue(make_session(), repo)
        deliver = always(DeliveryStatus.DELIVERED)

        await queue.drain(deliver)
        await queue.drain(deliver)

        assert len(deliver.calls) == 1


class TestStats:
    """Tests for queue observability."""

    @pytest.mark.asyncio
    async def test_stats(self, queue, repo, clock):
        await queue.enqueue(make_session(client_id="a"), repo)
        first_queued = clock()
        clock.advance(1_000)
        await queue.enqueue(make_session(client_id="b"), repo)
        clock.advance(1_000)
        await queue.drain(always(DeliveryStatus.RETRYABLE, "down"))

        stats = await queue.stats()

        assert stats.count == 2
        assert stats.oldest_queued_at_ms == first_queued
        assert stats.total_attempts == 2
        assert stats.last_sync_attempt_ms == clock()

    @pytest.mark.asyncio
    async def test_clear(self, queue, repo):
        await queue.enqueue(make_session(), repo)
        await queue.clear()

        assert await queue.count() == 0
