"""
Shared test configuration and fixtures.

Provides a fixed-key SecureStore, controllable clocks, and an in-memory
identity service so credential and sync tests never touch the network
unless they start their own aiohttp test server.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from dev_timr.config import TimrConfig
from dev_timr.http import JsonHttpClient
from dev_timr.identity.service import IdentityService
from dev_timr.identity.types import (
    CredentialRecord,
    DeviceCode,
    DeviceTokenPoll,
    IdentityUser,
    SessionGrant,
)
from dev_timr.local.secure_store import SecureStore
from dev_timr.repo import RepoInfo
from dev_timr.session.types import Session

from .fake_backend import FakeBackend

TEST_KEY = bytes(range(32))

# 2026-03-10 12:00:00 UTC, a Tuesday
BASE_TIME_S = 1_773_144_000


class FakeClock:
    """Manually advanced clock reporting epoch milliseconds."""

    def __init__(self, start_ms: int = BASE_TIME_S * 1000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def seconds(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeIdentityService(IdentityService):
    """In-memory identity service with scriptable responses."""

    def __init__(self):
        self.polls: list[DeviceTokenPoll] = []
        self.poll_count = 0
        self.grant = SessionGrant(session_token="session-2", expires_at=BASE_TIME_S + 7 * 86400, user={"id": "u-1"})
        self.refresh_error: Exception | None = None
        self.revoke_error: Exception | None = None
        self.refresh_calls = 0
        self.revoked: list[str] = []

    async def start_device_flow(self) -> DeviceCode:
        return DeviceCode(
            device_code="dev-code",
            user_code="ABCD-1234",
            verification_uri="https://github.com/login/device",
            interval=5,
        )

    async def poll_device_token(self, device_code: str) -> DeviceTokenPoll:
        self.poll_count += 1
        if self.polls:
            return self.polls.pop(0)
        return DeviceTokenPoll(error="authorization_pending")

    async def fetch_identity_user(self, identity_token: str) -> IdentityUser:
        return IdentityUser(id=42, handle="octocat", display_name="The Octocat")

    async def exchange_token(self, identity_token: str) -> SessionGrant:
        return self.grant

    async def refresh_token(self, identity_token: str, session_token: str | None) -> SessionGrant:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.grant

    async def revoke(self, session_token: str) -> bool:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(session_token)
        return True


def make_session(
    start_ms: int = BASE_TIME_S * 1000,
    duration_ms: int = 60_000,
    task_name: str | None = None,
    client_id: str = "11111111-1111-1111-1111-111111111111",
) -> Session:
    return Session(
        start_ms=start_ms,
        end_ms=start_ms + duration_ms,
        duration_ms=duration_ms,
        task_name=task_name,
        client_id=client_id,
    )


def make_credential(expires_at: int, user_id: str | None = "u-1") -> CredentialRecord:
    return CredentialRecord(
        identity_token="gho_identitytoken",
        identity_user=IdentityUser(id=42, handle="octocat"),
        session_token="session-1",
        session_expires_at=expires_at,
        session_user={"id": user_id} if user_id else {},
        created_at_ms=BASE_TIME_S * 1000,
    )


@pytest.fixture
def store() -> SecureStore:
    """SecureStore with a fixed key."""
    return SecureStore(key=TEST_KEY)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity_service() -> FakeIdentityService:
    return FakeIdentityService()


@pytest.fixture
def repo() -> RepoInfo:
    return RepoInfo(owner="octo-org", name="hello-world")


@pytest.fixture
def config(tmp_path: Path) -> TimrConfig:
    """Fully configured TimrConfig rooted in a temp directory."""
    return TimrConfig(
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        github_client_id="Iv1.testclient",
        config_dir=tmp_path / "config",
    )


@pytest.fixture
async def backend():
    """Running fake of GitHub, the edge functions and the data API."""
    fake = await FakeBackend().start()
    yield fake
    await fake.close()


@pytest.fixture
async def http():
    client = JsonHttpClient(timeout_seconds=5)
    yield client
    await client.close()


@pytest.fixture
def backend_config(backend, tmp_path: Path) -> TimrConfig:
    """Configuration pointing every remote at the fake backend."""
    return TimrConfig(
        supabase_url=backend.url,
        supabase_anon_key="anon-key",
        github_client_id="Iv1.testclient",
        config_dir=tmp_path / "config",
        request_timeout_seconds=5,
    )
