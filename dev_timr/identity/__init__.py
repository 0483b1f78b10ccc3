"""
Identity and credential lifecycle.

Provides the remote identity service abstraction, the encrypted credential
record and its issue/refresh/revoke lifecycle.
"""

from .credentials import CredentialManager
from .service import HttpIdentityService, IdentityService
from .types import (
    CredentialRecord,
    CredentialState,
    DeviceCode,
    DeviceTokenPoll,
    IdentityUser,
    LogoutResult,
    RefreshResult,
    SessionGrant,
)

__all__ = [
    # Types
    "CredentialRecord",
    "CredentialState",
    "IdentityUser",
    "DeviceCode",
    "DeviceTokenPoll",
    "SessionGrant",
    "RefreshResult",
    "LogoutResult",
    # Service
    "IdentityService",
    "HttpIdentityService",
    # Lifecycle
    "CredentialManager",
]
