"""
Identity service interface and its HTTP implementation.

The identity service is remote and opaque: it validates GitHub tokens and
mints short-lived session tokens. The local side never inspects token
contents; it trusts the expiry the service reports.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..config import TimrConfig
from ..exceptions import (
    IdentityServiceError,
    RateLimitedError,
    ReauthenticationRequiredError,
)
from ..http import TRANSPORT_ERRORS, HttpResponse, JsonHttpClient
from .types import DeviceCode, DeviceTokenPoll, IdentityUser, SessionGrant

logger = logging.getLogger(__name__)

GITHUB_URL = "https://github.com"
GITHUB_API_URL = "https://api.github.com"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
DEVICE_SCOPES = "read:user user:email"
REAUTH_CODES = {"GITHUB_TOKEN_INVALID", "TOKEN_REVOKED"}


class IdentityService(ABC):
    """Abstract identity service.

    Implementations are responsible for:
    - The GitHub device flow (initiation and token polling)
    - Resolving the GitHub profile for an identity token
    - Exchanging/refreshing an identity token for a session token
    - Revoking a session token before its natural expiry
    """

    @abstractmethod
    async def start_device_flow(self) -> DeviceCode:
        """Request a device code, user code and verification URL."""
        ...

    @abstractmethod
    async def poll_device_token(self, device_code: str) -> DeviceTokenPoll:
        """Poll once for the identity token.

        Returns:
            The token, or the provider's error code (``authorization_pending``,
            ``slow_down``, ``expired_token``, ``access_denied``...)
        """
        ...

    @abstractmethod
    async def fetch_identity_user(self, identity_token: str) -> IdentityUser:
        """Resolve the GitHub profile behind an identity token."""
        ...

    @abstractmethod
    async def exchange_token(self, identity_token: str) -> SessionGrant:
        """Validate an identity token and mint a session token.

        Raises:
            ReauthenticationRequiredError: If the identity token is rejected
            IdentityServiceError: On any other failure
        """
        ...

    @abstractmethod
    async def refresh_token(self, identity_token: str, session_token: str | None) -> SessionGrant:
        """Mint a fresh session token from a still-held identity token.

        Raises:
            ReauthenticationRequiredError: If the identity token is no longer valid
            IdentityServiceError: On any other failure
        """
        ...

    @abstractmethod
    async def revoke(self, session_token: str) -> bool:
        """Blocklist a session token. Returns True if the service confirmed."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None


class HttpIdentityService(IdentityService):
    """GitHub device flow plus Supabase edge functions, over aiohttp."""

    def __init__(
        self,
        config: TimrConfig,
        http: JsonHttpClient | None = None,
        github_url: str = GITHUB_URL,
        github_api_url: str = GITHUB_API_URL,
    ) -> None:
        """Initialize the service.

        Args:
            config: Resolved configuration (Supabase URL, anon key, client id)
            http: Shared HTTP client (created from config when omitted)
            github_url: GitHub base URL (overridable for tests/GHES)
            github_api_url: GitHub API base URL
        """
        self.config = config
        self.http = http or JsonHttpClient(timeout_seconds=config.request_timeout_seconds)
        self.github_url = github_url.rstrip("/")
        self.github_api_url = github_api_url.rstrip("/")

    def _function_url(self, name: str) -> str:
        self.config.require_configured()
        return f"{self.config.supabase_url}/functions/v1/{name}"

    def _anon_headers(self) -> dict[str, str]:
        key = self.config.supabase_anon_key or ""
        return {"Authorization": f"Bearer {key}", "apikey": key}

    async def _call(self, endpoint: str, method: str, url: str, **kwargs) -> HttpResponse:
        try:
            return await self.http.request(method, url, **kwargs)
        except TRANSPORT_ERRORS as e:
            raise IdentityServiceError(endpoint, None, f"network error: {type(e).__name__}") from e

    async def start_device_flow(self) -> DeviceCode:
        client_id = self.config.github_client_id
        if not client_id:
            self.config.require_configured()

        response = await self._call(
            "device/code",
            "POST",
            f"{self.github_url}/login/device/code",
            form={"client_id": client_id, "scope": DEVICE_SCOPES},
        )
        if response.status != 200 or not response.get("device_code"):
            raise IdentityServiceError("device/code", response.status, response.error_message())

        return DeviceCode(
            device_code=response.get("device_code"),
            user_code=response.get("user_code"),
            verification_uri=response.get("verification_uri"),
            interval=int(response.get("interval") or 5),
            expires_in=response.get("expires_in"),
        )

    async def poll_device_token(self, device_code: str) -> DeviceTokenPoll:
        response = await self._call(
            "oauth/access_token",
            "POST",
            f"{self.github_url}/login/oauth/access_token",
            form={
                "client_id": self.config.github_client_id or "",
                "device_code": device_code,
                "grant_type": DEVICE_GRANT_TYPE,
            },
        )
        if response.get("error"):
            return DeviceTokenPoll(
                error=response.get("error"),
                error_description=response.get("error_description"),
            )
        if response.get("access_token"):
            return DeviceTokenPoll(token=response.get("access_token"))
        if not response.ok:
            raise IdentityServiceError("oauth/access_token", response.status, response.error_message())
        # Neither token nor error: treat as still pending
        return DeviceTokenPoll(error="authorization_pending")

    async def fetch_identity_user(self, identity_token: str) -> IdentityUser:
        response = await self._call(
            "user",
            "GET",
            f"{self.github_api_url}/user",
            headers={"Authorization": f"Bearer {identity_token}"},
        )
        if response.status == 401:
            raise ReauthenticationRequiredError("user", "GitHub rejected the token")
        if response.status != 200 or not isinstance(response.data, dict):
            raise IdentityServiceError("user", response.status, "failed to get GitHub user info")
        return IdentityUser.from_dict(response.data)

    def _grant_from(self, endpoint: str, response: HttpResponse) -> SessionGrant:
        token = response.get("access_token")
        expires_at = response.get("expires_at")
        if not token or not isinstance(expires_at, (int, float)):
            raise IdentityServiceError(endpoint, response.status, "malformed token response")
        return SessionGrant(session_token=token, expires_at=int(expires_at), user=response.get("user") or {})

    def _raise_for(self, endpoint: str, response: HttpResponse) -> None:
        if response.status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(endpoint, float(retry_after) if retry_after and retry_after.isdigit() else None)
        if response.get("requiresReauth") or response.get("code") in REAUTH_CODES:
            raise ReauthenticationRequiredError(endpoint, response.error_message())
        raise IdentityServiceError(endpoint, response.status, response.error_message())

    async def exchange_token(self, identity_token: str) -> SessionGrant:
        endpoint = "github-login"
        response = await self._call(
            endpoint,
            "POST",
            self._function_url(endpoint),
            headers=self._anon_headers(),
            json_body={"github_token": identity_token},
        )
        if response.status != 200:
            if response.status == 401:
                raise ReauthenticationRequiredError(endpoint, response.error_message())
            self._raise_for(endpoint, response)
        return self._grant_from(endpoint, response)

    async def refresh_token(self, identity_token: str, session_token: str | None) -> SessionGrant:
        endpoint = "token-refresh"
        response = await self._call(
            endpoint,
            "POST",
            self._function_url(endpoint),
            headers=self._anon_headers(),
            json_body={"github_token": identity_token, "current_jwt": session_token},
        )
        if response.status != 200:
            self._raise_for(endpoint, response)
        return self._grant_from(endpoint, response)

    async def revoke(self, session_token: str) -> bool:
        endpoint = "logout"
        response = await self._call(
            endpoint,
            "POST",
            self._function_url(endpoint),
            headers=self._anon_headers(),
            json_body={"access_token": session_token},
        )
        if response.status != 200:
            logger.info(f"Token revocation not confirmed: {response.error_message()}")
        return response.status == 200

    async def close(self) -> None:
        await self.http.close()
