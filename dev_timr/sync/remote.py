"""
Remote session store over the Supabase REST (PostgREST) data API.

Tables used: ``users``, ``repos``, ``tasks``, ``sessions``. Row-level
security on the remote side scopes writes to the user identified by the
session token; this module only shapes requests and classifies failures.

Delivery is idempotent by ``client_id``: an existing remote row with the
same client id is treated as success and never re-inserted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..config import TimrConfig
from ..exceptions import DeliveryError
from ..http import TRANSPORT_ERRORS, HttpResponse, JsonHttpClient
from ..identity.types import CredentialRecord
from ..local.ledger import LedgerStats, aggregate_durations
from ..repo import RepoInfo
from .types import DeliveryResult, DeliveryStatus, QueueEntry

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def classify_failure(error: DeliveryError) -> DeliveryStatus:
    """Map a failed remote call onto a delivery status.

    401/403 belong to the credential; everything else (network, timeouts,
    408/429/5xx and other 4xx) is retried and counted against the entry.
    """
    if error.auth_required:
        return DeliveryStatus.AUTH_REQUIRED
    return DeliveryStatus.RETRYABLE


class RemoteSessionStore:
    """Repos, tasks and sessions on the remote data API.

    Example:
        >>> remote = RemoteSessionStore(config)
        >>> result = await remote.deliver(entry, credential)
        >>> result.status
        <DeliveryStatus.DELIVERED: 'delivered'>
    """

    def __init__(self, config: TimrConfig, http: JsonHttpClient | None = None) -> None:
        """Initialize the store.

        Args:
            config: Resolved configuration (Supabase URL and anon key)
            http: Shared HTTP client (created from config when omitted)
        """
        self.config = config
        self.http = http or JsonHttpClient(timeout_seconds=config.request_timeout_seconds)

    def _table_url(self, table: str) -> str:
        self.config.require_configured()
        return f"{self.config.supabase_url}/rest/v1/{table}"

    def _headers(self, token: str | None, prefer: str | None = None) -> dict[str, str]:
        key = self.config.supabase_anon_key or ""
        headers = {"apikey": key, "Authorization": f"Bearer {token or key}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        token: str | None,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
        client_id: str | None = None,
    ) -> HttpResponse:
        try:
            return await self.http.request(
                method,
                self._table_url(table),
                headers=self._headers(token, prefer),
                params=params,
                json_body=json_body,
            )
        except TRANSPORT_ERRORS as e:
            raise DeliveryError(client_id, f"network error: {type(e).__name__}") from e

    @staticmethod
    def _check(response: HttpResponse, client_id: str | None = None) -> None:
        if not response.ok:
            raise DeliveryError(client_id, response.error_message(), response.status)

    @staticmethod
    def _is_unique_violation(response: HttpResponse) -> bool:
        return response.status == 409 or response.get("code") == UNIQUE_VIOLATION

    @staticmethod
    def _first_row(response: HttpResponse) -> dict[str, Any] | None:
        if isinstance(response.data, list):
            return response.data[0] if response.data else None
        return response.data if isinstance(response.data, dict) else None

    async def _select_one(
        self,
        table: str,
        filters: dict[str, str],
        token: str | None,
        columns: str = "id",
        client_id: str | None = None,
    ) -> dict[str, Any] | None:
        params = {"select": columns, "limit": "1"}
        params.update({key: f"eq.{value}" for key, value in filters.items()})
        response = await self._request("GET", table, token, params=params, client_id=client_id)
        self._check(response, client_id)
        return self._first_row(response)

    async def _insert(
        self,
        table: str,
        row: dict[str, Any],
        token: str | None,
        client_id: str | None = None,
    ) -> HttpResponse:
        return await self._request(
            "POST",
            table,
            token,
            params={"select": "id"},
            json_body=row,
            prefer="return=representation",
            client_id=client_id,
        )

    # -- repos and tasks -----------------------------------------------

    async def find_repo_id(self, repo: RepoInfo, token: str | None) -> str | None:
        row = await self._select_one("repos", {"owner_name": repo.owner, "repo_name": repo.name}, token)
        return row["id"] if row else None

    async def get_or_create_repo(self, repo: RepoInfo, token: str | None, client_id: str | None = None) -> str:
        """Id of the repository row, creating it when missing.

        A concurrent creator (unique violation) is resolved by re-fetching.
        """
        filters = {"owner_name": repo.owner, "repo_name": repo.name}
        existing = await self._select_one("repos", filters, token, client_id=client_id)
        if existing:
            return existing["id"]

        response = await self._insert("repos", filters, token, client_id)
        if self._is_unique_violation(response):
            existing = await self._select_one("repos", filters, token, client_id=client_id)
            if existing:
                return existing["id"]
        self._check(response, client_id)
        row = self._first_row(response)
        if not row:
            raise DeliveryError(client_id, "repo insert returned no row", response.status)
        return row["id"]

    async def get_or_create_task(
        self,
        repo_id: str,
        name: str | None,
        user_id: str | None,
        token: str | None,
        client_id: str | None = None,
    ) -> str | None:
        """Id of the named task in a repository; None for unnamed sessions."""
        if not name:
            return None

        filters = {"repo_id": repo_id, "name": name}
        existing = await self._select_one("tasks", filters, token, client_id=client_id)
        if existing:
            return existing["id"]

        row: dict[str, Any] = dict(filters)
        if user_id:
            row["created_by"] = user_id
        response = await self._insert("tasks", row, token, client_id)
        if self._is_unique_violation(response):
            existing = await self._select_one("tasks", filters, token, client_id=client_id)
            if existing:
                return existing["id"]
        self._check(response, client_id)
        created = self._first_row(response)
        return created["id"] if created else None

    # -- sessions ------------------------------------------------------

    async def find_session(self, client_id: str, token: str | None) -> dict[str, Any] | None:
        """Remote session row with this client id, if any."""
        return await self._select_one("sessions", {"client_id": client_id}, token, client_id=client_id)

    async def insert_session(
        self,
        entry: QueueEntry,
        repo_id: str,
        task_id: str | None,
        user_id: str,
        token: str | None,
    ) -> dict[str, Any]:
        """Insert one session row.

        ``duration_ms`` is computed by the remote as ``end - start`` and is not
        sent, so remote durations include paused time while the local
        ``durationMs`` excludes it.
        """
        session = entry.session
        response = await self._insert(
            "sessions",
            {
                "user_id": user_id,
                "repo_id": repo_id,
                "task_id": task_id,
                "start_time": session.start_ms,
                "end_time": session.end_ms,
                "client_id": session.client_id,
            },
            token,
            session.client_id,
        )
        if self._is_unique_violation(response):
            existing = await self.find_session(session.client_id, token)
            if existing:
                return existing
        self._check(response, session.client_id)
        return self._first_row(response) or {}

    async def deliver(self, entry: QueueEntry, credential: CredentialRecord) -> DeliveryResult:
        """Deliver one queued session, idempotently by client id.

        Never raises for remote failures; the outcome is a typed result.
        """
        client_id = entry.client_id
        user_id = credential.user_id
        if not user_id:
            return DeliveryResult(DeliveryStatus.AUTH_REQUIRED, error="credential has no user id")

        token = credential.session_token
        try:
            existing = await self.find_session(client_id, token)
            if existing:
                logger.debug(f"Session {client_id} already present remotely")
                return DeliveryResult(DeliveryStatus.ALREADY_PRESENT, remote_id=existing.get("id"))

            repo_id = await self.get_or_create_repo(entry.repo, token, client_id)
            task_id = await self.get_or_create_task(repo_id, entry.session.task_name, user_id, token, client_id)
            row = await self.insert_session(entry, repo_id, task_id, user_id, token)
        except DeliveryError as e:
            status = classify_failure(e)
            logger.debug(f"Delivery of {client_id} failed ({status.value}): {e.reason}")
            return DeliveryResult(status, error=e.reason)

        return DeliveryResult(DeliveryStatus.DELIVERED, remote_id=row.get("id"))

    # -- profile and statistics ----------------------------------------

    async def upsert_user_profile(self, credential: CredentialRecord) -> None:
        """Create or update the user's profile row after login.

        Raises:
            DeliveryError: If the remote rejects the upsert
        """
        if not credential.user_id:
            raise DeliveryError(None, "credential has no user id")
        user = credential.identity_user
        response = await self._request(
            "POST",
            "users",
            credential.session_token,
            params={"on_conflict": "id"},
            json_body={
                "id": credential.user_id,
                "github_username": user.handle,
                "github_id": user.id,
                "avatar_url": user.avatar_url,
                "email": user.email,
                "updated_at": datetime.now().astimezone().isoformat(),
            },
            prefer="resolution=merge-duplicates,return=minimal",
        )
        self._check(response)

    async def fetch_repo_stats(
        self,
        repo: RepoInfo,
        token: str | None,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> LedgerStats:
        """Team (or, with ``user_id``, personal) totals for a repository.

        A repository unknown to the remote has zero totals. Totals are wall
        time from start to end, pauses included.

        Raises:
            DeliveryError: If any remote call fails
        """
        repo_id = await self.find_repo_id(repo, token)
        if repo_id is None:
            return LedgerStats()

        params = {"select": "start_time,end_time,duration_ms", "repo_id": f"eq.{repo_id}"}
        if user_id:
            params["user_id"] = f"eq.{user_id}"
        response = await self._request("GET", "sessions", token, params=params)
        self._check(response)

        rows = response.data if isinstance(response.data, list) else []
        spans = (
            (int(row["start_time"]), int(row.get("duration_ms") or row["end_time"] - row["start_time"]))
            for row in rows
            if isinstance(row, dict) and "start_time" in row and "end_time" in row
        )
        return aggregate_durations(spans, now)

    async def close(self) -> None:
        await self.http.close()
