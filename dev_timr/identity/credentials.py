"""
Credential lifecycle: issue, refresh, revoke.

The credential record lives in ``~/.dev-timr/auth.json`` as an encrypted
envelope and is owned exclusively by CredentialManager. Validity states:

    ABSENT -> PENDING (device flow) -> VALID -> EXPIRING (<24h) -> VALID | EXPIRED

An expired record is reported as expired, never deleted; only logout
deletes it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from ..exceptions import (
    DeviceFlowError,
    DeviceFlowTimeoutError,
    IdentityServiceError,
    IntegrityError,
    ReauthenticationRequiredError,
    TimrError,
)
from ..local.secure_store import SecureStore
from .service import IdentityService
from .types import (
    CredentialRecord,
    CredentialState,
    DeviceCode,
    IdentityUser,
    LogoutResult,
    RefreshResult,
    SessionGrant,
)

logger = logging.getLogger(__name__)

SLOW_DOWN_INCREMENT = 5


class CredentialManager:
    """Owns the credential record and every transition of its lifecycle.

    Example:
        >>> manager = CredentialManager(config.auth_file, SecureStore(), service)
        >>> record = await manager.login(on_code=show_code)
        >>> await manager.is_valid()
        True
        >>> await manager.logout()
    """

    def __init__(
        self,
        path: Path,
        store: SecureStore,
        service: IdentityService,
        refresh_window_hours: int = 24,
        poll_max_attempts: int = 60,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the manager.

        Args:
            path: Credential file path
            store: SecureStore for encryption at rest
            service: Remote identity service
            refresh_window_hours: Proactively refresh when less than this remains
            poll_max_attempts: Maximum device-flow polls
            clock: Returns epoch seconds (injectable for tests)
            sleep: Async sleep used between polls (injectable for tests)
        """
        self.path = path
        self.store = store
        self.service = service
        self.refresh_window_seconds = refresh_window_hours * 3600
        self.poll_max_attempts = poll_max_attempts
        self._clock = clock
        self._sleep = sleep

        self._pending = False
        self._refresh_task: asyncio.Task[RefreshResult | None] | None = None
        # Bumped on login/logout so an in-flight refresh never resurrects
        # a record that was replaced or deleted meanwhile
        self._generation = 0

    # -- persistence ---------------------------------------------------

    async def load(self) -> CredentialRecord | None:
        """Read the credential record; missing or corrupt reads as None."""
        data = await self.store.read_or_migrate(self.path)
        if data is None:
            return None
        try:
            return CredentialRecord.from_dict(data)
        except ValueError as e:
            logger.warning(IntegrityError(str(self.path), str(e)).message)
            return None

    async def _save(self, record: CredentialRecord) -> None:
        await self.store.write(self.path, record.to_dict())

    # -- validity ------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def state_of(self, record: CredentialRecord | None) -> CredentialState:
        """Classify a record without touching disk or network."""
        if record is None:
            return CredentialState.PENDING if self._pending else CredentialState.ABSENT
        remaining = record.seconds_remaining(self._clock())
        if remaining <= 0:
            return CredentialState.EXPIRED
        if remaining < self.refresh_window_seconds:
            return CredentialState.EXPIRING
        return CredentialState.VALID

    async def state(self) -> CredentialState:
        return self.state_of(await self.load())

    async def is_valid(self) -> bool:
        """True iff a record exists and its session token has not expired."""
        return self.state_of(await self.load()) in (CredentialState.VALID, CredentialState.EXPIRING)

    def needs_refresh(self, record: CredentialRecord) -> bool:
        return self.state_of(record) == CredentialState.EXPIRING

    # -- issuance ------------------------------------------------------

    async def start_device_flow(self) -> DeviceCode:
        """Begin the GitHub device flow."""
        device = await self.service.start_device_flow()
        self._pending = True
        return device

    async def poll_for_identity_token(self, device_code: str, interval: int = 5) -> str:
        """Poll until the user authorizes the device.

        Sleeps ``interval`` seconds between attempts; ``slow_down`` adds 5
        seconds to the interval, ``authorization_pending`` keeps polling and
        any other error fails immediately.

        Raises:
            DeviceFlowError: The provider answered with a terminal error
            DeviceFlowTimeoutError: Polling hit its attempt limit
        """
        try:
            for attempt in range(self.poll_max_attempts):
                result = await self.service.poll_device_token(device_code)
                if result.token:
                    return result.token

                if result.error == "slow_down":
                    interval += SLOW_DOWN_INCREMENT
                    logger.debug(f"Device flow asked to slow down; interval now {interval}s")
                elif result.error and result.error != "authorization_pending":
                    raise DeviceFlowError(result.error, result.error_description)

                if attempt + 1 < self.poll_max_attempts:
                    await self._sleep(interval)

            raise DeviceFlowTimeoutError(self.poll_max_attempts)
        finally:
            self._pending = False

    async def exchange_for_session_token(self, identity_token: str) -> SessionGrant:
        """Trade an identity token for a session token (7-day validity)."""
        return await self.service.exchange_token(identity_token)

    async def complete_login(
        self,
        identity_token: str,
        identity_user: IdentityUser,
        grant: SessionGrant,
    ) -> CredentialRecord:
        """Persist a freshly issued credential, replacing any previous one."""
        now_ms = self._now_ms()
        record = CredentialRecord(
            identity_token=identity_token,
            identity_user=identity_user,
            session_token=grant.session_token,
            session_expires_at=grant.expires_at,
            session_user=grant.user,
            created_at_ms=now_ms,
            last_refresh_ms=None,
        )
        self._generation += 1
        await self._save(record)
        logger.info(f"Logged in as @{identity_user.handle}")
        return record

    async def login(
        self,
        on_code: Callable[[DeviceCode], Awaitable[None] | None] | None = None,
    ) -> CredentialRecord:
        """Run the complete device flow and store the credential.

        Args:
            on_code: Called with the device code so the caller can show the
                user code and verification URL

        Raises:
            DeviceFlowError, IdentityServiceError: If any step fails
        """
        device = await self.start_device_flow()
        if on_code is not None:
            shown = on_code(device)
            if inspect.isawaitable(shown):
                await shown

        identity_token = await self.poll_for_identity_token(device.device_code, device.interval)
        identity_user = await self.service.fetch_identity_user(identity_token)
        grant = await self.exchange_for_session_token(identity_token)
        return await self.complete_login(identity_token, identity_user, grant)

    # -- refresh -------------------------------------------------------

    async def refresh(self) -> RefreshResult:
        """Refresh the session token synchronously.

        Returns:
            RefreshResult; ``requires_reauth`` is set when the identity token
            itself is no longer accepted and a new device flow is needed
        """
        generation = self._generation
        record = await self.load()
        if record is None:
            return RefreshResult(success=False, requires_reauth=True, error="not logged in")
        if generation != self._generation:
            return RefreshResult(success=False, error="credential changed during refresh")

        try:
            grant = await self.service.refresh_token(record.identity_token, record.session_token)
        except ReauthenticationRequiredError as e:
            return RefreshResult(success=False, requires_reauth=True, error=e.message)
        except IdentityServiceError as e:
            return RefreshResult(success=False, requires_reauth=False, error=e.message)
        except TimrError as e:
            return RefreshResult(success=False, requires_reauth=False, error=e.message)

        if generation != self._generation:
            logger.info("Discarding refreshed token: credential changed during refresh")
            return RefreshResult(success=False, error="credential changed during refresh")

        record.session_token = grant.session_token
        record.session_expires_at = grant.expires_at
        if grant.user:
            record.session_user = grant.user
        record.last_refresh_ms = self._now_ms()
        await self._save(record)
        return RefreshResult(success=True, expires_at=grant.expires_at)

    async def _background_refresh(self) -> RefreshResult | None:
        try:
            result = await self.refresh()
        except TimrError as e:
            logger.warning(f"Background token refresh failed: {e.message}")
            return None
        if not result.success:
            logger.warning(f"Background token refresh failed: {result.error}")
        return result

    async def refresh_if_needed(self, record: CredentialRecord | None = None) -> bool:
        """Start a background refresh when less than 24h of validity remains.

        Never blocks on the network and never raises for refresh failures;
        the existing token stays in use either way.

        Returns:
            True if a refresh was scheduled (or is already running)
        """
        if record is None:
            record = await self.load()
        if record is None or not self.needs_refresh(record):
            return False

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._background_refresh())
        return True

    async def wait_for_refresh(self) -> RefreshResult | None:
        """Await a scheduled background refresh, if any."""
        if self._refresh_task is None:
            return None
        return await self._refresh_task

    async def get_valid_credential(self) -> CredentialRecord | None:
        """Credential ready for use, refreshing as needed.

        Expired tokens are refreshed synchronously; tokens inside the refresh
        window are refreshed in the background and returned as-is.

        Returns:
            A usable record, or None if not logged in or refresh failed
        """
        record = await self.load()
        if record is None:
            return None

        state = self.state_of(record)
        if state == CredentialState.EXPIRED:
            result = await self.refresh()
            if not result.success:
                if result.requires_reauth:
                    logger.warning("Session expired and the GitHub token was rejected; run `dev-timr login`")
                return None
            return await self.load()

        if state == CredentialState.EXPIRING:
            await self.refresh_if_needed(record)
        return record

    # -- revocation ----------------------------------------------------

    async def logout(self) -> LogoutResult:
        """Revoke remotely (best effort) and always delete the local record."""
        record = await self.load()
        self._generation += 1

        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

        server_revoked = False
        if record is not None:
            try:
                server_revoked = await self.service.revoke(record.session_token)
            except TimrError as e:
                logger.warning(f"Could not revoke token server-side: {e.message}")

        await self.store.clear(self.path)
        return LogoutResult(success=True, server_revoked=server_revoked)
