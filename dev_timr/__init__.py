"""
dev-timr

Local-first development time tracker with resilient cloud sync.

Provides:
- A session engine that times work with pause/resume accounting
- An encrypted-at-rest store for credentials and the offline queue
- GitHub device-flow login with proactive token refresh
- A durable queue that delivers sessions idempotently by client id

Usage:

    >>> from dev_timr import SessionEngine, SessionRecorder, LocalLedger, SecureStore
    >>> store = SecureStore()
    >>> recorder = SessionRecorder(LocalLedger(Path(".dev-clock.json"), store))
    >>> engine = SessionEngine(recorder=recorder)
    >>> engine.start("refactor parser")
    >>> session = await engine.end()
"""

__version__ = "1.0.0"

from .config import TimrConfig, load_config
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    DeviceFlowError,
    DeviceFlowTimeoutError,
    IdentityServiceError,
    InputValidationError,
    IntegrityError,
    RateLimitedError,
    ReauthenticationRequiredError,
    StorageIOError,
    TimrError,
)
from .identity import CredentialManager, CredentialRecord, CredentialState, HttpIdentityService, IdentityService
from .local import LocalLedger, SecureStore
from .repo import RepoInfo, get_repo_info, parse_git_url
from .session import RecordOutcome, Session, SessionEngine, SessionRecorder, SessionState
from .sync import DeliveryStatus, DrainSummary, DurableQueue, QueueEntry, RemoteSessionStore, StatsService

__all__ = [
    "__version__",
    # Configuration
    "TimrConfig",
    "load_config",
    # Exceptions
    "TimrError",
    "StorageIOError",
    "IntegrityError",
    "ConfigurationError",
    "InputValidationError",
    "IdentityServiceError",
    "RateLimitedError",
    "ReauthenticationRequiredError",
    "DeviceFlowError",
    "DeviceFlowTimeoutError",
    "DeliveryError",
    # Session
    "Session",
    "SessionState",
    "SessionEngine",
    "SessionRecorder",
    "RecordOutcome",
    # Local storage
    "SecureStore",
    "LocalLedger",
    # Identity
    "IdentityService",
    "HttpIdentityService",
    "CredentialManager",
    "CredentialRecord",
    "CredentialState",
    # Sync
    "DurableQueue",
    "QueueEntry",
    "DeliveryStatus",
    "DrainSummary",
    "RemoteSessionStore",
    "StatsService",
    # Repository
    "RepoInfo",
    "get_repo_info",
    "parse_git_url",
]
