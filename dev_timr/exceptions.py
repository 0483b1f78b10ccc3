"""
Custom exceptions for dev-timr.

Storage layers (secure store, ledger) never raise for "not found" or
"corrupt"; they return an absence sentinel. Network-facing layers raise
these exceptions and the caller one layer up decides whether to queue
and continue or surface and halt.
"""


class TimrError(Exception):
    """Base exception for all dev-timr errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageIOError(TimrError):
    """Raised when a local file operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class IntegrityError(TimrError):
    """A persisted document failed decryption or shape validation.

    Only used for logging; readers recover by treating the document
    as absent.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"Integrity check failed for {path}: {reason}", {"path": path, "reason": reason})
        self.path = path
        self.reason = reason


class ConfigurationError(TimrError):
    """Raised when required configuration is missing."""

    def __init__(self, missing: list[str]):
        super().__init__(
            f"dev-timr is not configured (missing: {', '.join(missing)}). "
            "Set the environment variables or add them to settings.yaml.",
            {"missing": missing},
        )
        self.missing = missing


class InputValidationError(TimrError):
    """Raised when user input is rejected at the boundary."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid {field}: {reason}", {"field": field, "reason": reason})
        self.field = field
        self.reason = reason


class IdentityServiceError(TimrError):
    """Raised when a call to the identity service fails."""

    def __init__(self, endpoint: str, status: int | None = None, reason: str | None = None):
        details: dict = {"endpoint": endpoint}
        if status is not None:
            details["status"] = status
        if reason:
            details["reason"] = reason
        message = f"Identity service request failed: {endpoint}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status = status
        self.reason = reason

    @property
    def retryable(self) -> bool:
        """Whether the failure is transient (network, 5xx, rate limit)."""
        return self.status is None or self.status in (408, 429) or self.status >= 500


class RateLimitedError(IdentityServiceError):
    """The identity service asked us to back off (HTTP 429)."""

    def __init__(self, endpoint: str, retry_after: float | None = None):
        super().__init__(endpoint, 429, "rate limited")
        self.retry_after = retry_after


class ReauthenticationRequiredError(IdentityServiceError):
    """The identity token is no longer accepted; a fresh login is needed."""

    def __init__(self, endpoint: str, reason: str | None = None):
        super().__init__(endpoint, 401, reason or "reauthentication required")

    @property
    def retryable(self) -> bool:
        return False


class DeviceFlowError(TimrError):
    """Raised when the device flow ends with an error from the provider."""

    def __init__(self, code: str, description: str | None = None):
        super().__init__(
            f"GitHub auth error: {description or code}",
            {"code": code, "description": description},
        )
        self.code = code
        self.description = description


class DeviceFlowTimeoutError(DeviceFlowError):
    """Raised when polling hits its attempt limit before authorization."""

    def __init__(self, attempts: int):
        super().__init__("timeout", "Authentication timed out. Please try again.")
        self.attempts = attempts


class DeliveryError(TimrError):
    """Raised by remote data calls; mapped to a DeliveryResult by the queue."""

    def __init__(self, client_id: str | None, reason: str, status: int | None = None):
        details: dict = {"reason": reason}
        if client_id:
            details["client_id"] = client_id
        if status is not None:
            details["status"] = status
        if client_id:
            message = f"Failed to deliver session {client_id}: {reason}"
        else:
            message = f"Remote request failed: {reason}"
        super().__init__(message, details)
        self.client_id = client_id
        self.reason = reason
        self.status = status

    @property
    def auth_required(self) -> bool:
        return self.status in (401, 403)
