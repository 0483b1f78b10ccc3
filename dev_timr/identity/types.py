"""
Identity types and data classes.

Defines the credential record persisted by the credential manager, the
payloads exchanged with the identity service, and the typed results
returned by refresh and logout.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CredentialState(Enum):
    """Validity of the stored credential."""

    ABSENT = "absent"
    PENDING = "pending"  # Device flow in progress
    VALID = "valid"
    EXPIRING = "expiring"  # Valid, but inside the refresh window
    EXPIRED = "expired"  # Session token expired; refresh or re-login needed


@dataclass
class IdentityUser:
    """The user as known to the identity provider (GitHub)."""

    id: int | str
    handle: str
    display_name: str | None = None
    email: str | None = None
    avatar_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "handle": self.handle,
            "displayName": self.display_name,
            "email": self.email,
            "avatarUrl": self.avatar_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IdentityUser":
        """Deserialize from dictionary (also accepts GitHub's API shape)."""
        handle = data.get("handle") or data.get("login")
        if data.get("id") is None or not handle:
            raise ValueError("identity user requires id and handle")
        return cls(
            id=data["id"],
            handle=handle,
            display_name=data.get("displayName", data.get("name")),
            email=data.get("email"),
            avatar_url=data.get("avatarUrl", data.get("avatar_url")),
        )


@dataclass
class CredentialRecord:
    """Everything needed to talk to the remote as the logged-in user.

    Attributes:
        identity_token: Opaque long-lived GitHub token (refreshes the session)
        identity_user: GitHub profile
        session_token: Opaque short-lived token presented to the data API
        session_expires_at: Session token expiry (epoch seconds), as reported
            by the remote; never derived by parsing the token locally
        session_user: Remote user object (must carry a stable ``id``)
        created_at_ms: When the login completed
        last_refresh_ms: When the session token was last refreshed
    """

    identity_token: str
    identity_user: IdentityUser
    session_token: str
    session_expires_at: int
    session_user: dict[str, Any] = field(default_factory=dict)
    created_at_ms: int = 0
    last_refresh_ms: int | None = None

    @property
    def user_id(self) -> str | None:
        """Stable remote user id."""
        value = self.session_user.get("id")
        return str(value) if value is not None else None

    def seconds_remaining(self, now_s: float) -> float:
        return self.session_expires_at - now_s

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "identityToken": self.identity_token,
            "identityUser": self.identity_user.to_dict(),
            "sessionToken": self.session_token,
            "sessionExpiresAtEpochSec": self.session_expires_at,
            "sessionUser": self.session_user,
            "createdAtMs": self.created_at_ms,
            "lastRefreshMs": self.last_refresh_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialRecord":
        """Deserialize from dictionary.

        Also accepts the older nested ``{"github": ..., "supabase": ...}``
        layout of auth.json.

        Raises:
            ValueError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise ValueError("credential record must be an object")

        if "github" in data or "supabase" in data:
            github = data.get("github") or {}
            supabase = data.get("supabase") or {}
            data = {
                "identityToken": github.get("token"),
                "identityUser": github.get("user") or {},
                "sessionToken": supabase.get("accessToken"),
                "sessionExpiresAtEpochSec": supabase.get("expiresAt"),
                "sessionUser": supabase.get("user") or {},
                "createdAtMs": data.get("createdAt", 0),
                "lastRefreshMs": data.get("lastRefresh"),
            }

        for key in ("identityToken", "sessionToken"):
            if not isinstance(data.get(key), str) or not data[key]:
                raise ValueError(f"credential field {key} missing")
        expires_at = data.get("sessionExpiresAtEpochSec")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise ValueError("credential field sessionExpiresAtEpochSec missing")
        session_user = data.get("sessionUser") or {}
        if not isinstance(session_user, dict):
            raise ValueError("credential field sessionUser must be an object")

        return cls(
            identity_token=data["identityToken"],
            identity_user=IdentityUser.from_dict(data.get("identityUser") or {}),
            session_token=data["sessionToken"],
            session_expires_at=int(expires_at),
            session_user=session_user,
            created_at_ms=int(data.get("createdAtMs") or 0),
            last_refresh_ms=data.get("lastRefreshMs"),
        )


@dataclass
class DeviceCode:
    """Device-flow initiation response."""

    device_code: str
    user_code: str
    verification_uri: str
    interval: int = 5
    expires_in: int | None = None


@dataclass
class DeviceTokenPoll:
    """One poll of the device-flow token endpoint.

    Exactly one of ``token`` or ``error`` is set when the provider answered.
    """

    token: str | None = None
    error: str | None = None
    error_description: str | None = None


@dataclass
class SessionGrant:
    """Session token minted by the identity service."""

    session_token: str
    expires_at: int
    user: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefreshResult:
    """Outcome of a session-token refresh."""

    success: bool
    requires_reauth: bool = False
    expires_at: int | None = None
    error: str | None = None


@dataclass
class LogoutResult:
    """Outcome of logout. Local deletion always happens."""

    success: bool = True
    server_revoked: bool = False
