"""
Input sanitization and secret redaction.

Task names and commands are user input that ends up in file names,
remote rows and process argv. Both are cleaned or rejected here, before
they reach the session engine or the process runner.
"""

from __future__ import annotations

import re
import shlex
from typing import Any

from .exceptions import InputValidationError

MAX_TASK_NAME_LENGTH = 100

# Control characters and punctuation with meaning to a shell
_TASK_NAME_STRIP = re.compile(r"[\x00-\x1f\x7f;&|`$<>\\\"'(){}\[\]!*?~]")
_WHITESPACE_RUN = re.compile(r"\s+")

# Anything a shell would interpret; commands are executed as argv, so these
# would only mislead the user about what runs.
COMMAND_METACHARACTERS = frozenset(";|&`$<>()\n\r")

SECRET_PATTERNS = [
    r"gh[pousr]_[A-Za-z0-9]{20,}",  # GitHub tokens
    r"eyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}",  # JWTs
    r"(?i)bearer\s+[A-Za-z0-9._~+/-]{16,}=*",
]

SECRET_FIELD_PATTERN = (
    r"(?i)([\"']?(?:access_token|github_token|identity_token|session_token|current_jwt|"
    r"device_code)[\"']?\s*[:=]\s*)[\"']?[^\"',\s}]+[\"']?"
)

SECRET_KEYS = frozenset(
    {
        "access_token",
        "github_token",
        "identity_token",
        "identityToken",
        "session_token",
        "sessionToken",
        "current_jwt",
        "device_code",
        "deviceCode",
    }
)


def sanitize_task_name(name: str | None) -> str | None:
    """Clean a task name for storage and display.

    Strips control characters and shell-significant punctuation,
    collapses whitespace and truncates to 100 characters.

    Args:
        name: Raw task name from the user

    Returns:
        The cleaned name, or None when nothing is left
    """
    if name is None or not isinstance(name, str):
        return None

    cleaned = _TASK_NAME_STRIP.sub("", name)
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()
    cleaned = cleaned[:MAX_TASK_NAME_LENGTH].strip()
    return cleaned or None


def validate_command(command: str | list[str]) -> list[str]:
    """Validate a command and split it into an argument vector.

    Args:
        command: Command string (``"npm run dev"``) or pre-split argv

    Returns:
        argv suitable for exec-style spawning

    Raises:
        InputValidationError: If the command is empty or contains shell
            metacharacters
    """
    if isinstance(command, list) and len(command) == 1:
        # dev-timr run "npm run dev"
        command = command[0]

    text = " ".join(command) if isinstance(command, list) else command
    if not text or not text.strip():
        raise InputValidationError("command", "no command provided")

    found = sorted({c for c in text if c in COMMAND_METACHARACTERS})
    if found:
        shown = " ".join(repr(c) for c in found)
        raise InputValidationError(
            "command",
            f"shell metacharacters are not allowed ({shown}); wrap pipelines in an npm script or shell file",
        )

    if isinstance(command, list):
        # Already split by the caller's shell; keep argument boundaries
        argv = [arg for arg in command if arg]
    else:
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise InputValidationError("command", str(e)) from e

    if not argv:
        raise InputValidationError("command", "no command provided")
    return argv


def redact_text(text: str, placeholder: str = "[REDACTED]") -> str:
    """Mask tokens and token-bearing fields in free text."""
    if not text or not isinstance(text, str):
        return text

    redacted = re.sub(SECRET_FIELD_PATTERN, rf"\1{placeholder}", text)
    for pattern in SECRET_PATTERNS:
        redacted = re.sub(pattern, placeholder, redacted)
    return redacted


def redact_dict(data: dict[str, Any], placeholder: str = "[REDACTED]") -> dict[str, Any]:
    """Recursively mask secret values in a dictionary (new instance)."""
    if not isinstance(data, dict):
        return data

    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if key in SECRET_KEYS and value is not None:
            redacted[key] = placeholder
        elif isinstance(value, dict):
            redacted[key] = redact_dict(value, placeholder)
        elif isinstance(value, str):
            redacted[key] = redact_text(value, placeholder)
        else:
            redacted[key] = value
    return redacted
