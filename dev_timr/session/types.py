"""
Session record types.

A Session is one finalized interval of work. It is immutable: once the
engine produces it, the ledger, queue and remote all see the same values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SessionState(Enum):
    """States of the session engine."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


def _require_int(data: dict[str, Any], *keys: str) -> int:
    for key in keys:
        value = data.get(key)
        if value is not None:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer, got {type(value).__name__}")
            return value
    raise ValueError(f"missing required field {keys[0]}")


def legacy_client_id(start_ms: int, end_ms: int) -> str:
    """Deterministic id for ledger entries written before client ids existed."""
    return f"legacy-{start_ms}-{end_ms}"


@dataclass(frozen=True)
class Session:
    """A finalized work session.

    Attributes:
        start_ms: Epoch milliseconds when the session started
        end_ms: Epoch milliseconds when the session ended
        duration_ms: Active time, i.e. ``end_ms - start_ms - paused time``
        task_name: Optional sanitized task name
        client_id: UUID generated at start; the deduplication key
    """

    start_ms: int
    end_ms: int
    duration_ms: int
    task_name: str | None
    client_id: str

    def __post_init__(self) -> None:
        if self.end_ms < self.start_ms:
            raise ValueError("session ends before it starts")
        if not 0 <= self.duration_ms <= self.end_ms - self.start_ms:
            raise ValueError("duration must be between 0 and the wall-clock span")
        if not isinstance(self.client_id, str) or not self.client_id:
            raise ValueError("client_id is required")

    @property
    def paused_ms(self) -> int:
        return self.end_ms - self.start_ms - self.duration_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ledger/queue wire format."""
        return {
            "startMs": self.start_ms,
            "endMs": self.end_ms,
            "durationMs": self.duration_ms,
            "taskName": self.task_name,
            "clientId": self.client_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Deserialize, accepting the legacy ``start``/``end`` ledger shape.

        Raises:
            ValueError: If required numeric fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise ValueError("session must be an object")

        start_ms = _require_int(data, "startMs", "start")
        end_ms = _require_int(data, "endMs", "end")
        duration_ms = data.get("durationMs")
        if duration_ms is None:
            duration_ms = end_ms - start_ms
        elif isinstance(duration_ms, bool) or not isinstance(duration_ms, int):
            raise ValueError("durationMs must be an integer")

        task_name = data.get("taskName")
        if task_name is not None and not isinstance(task_name, str):
            raise ValueError("taskName must be a string")

        client_id = data.get("clientId") or legacy_client_id(start_ms, end_ms)

        return cls(
            start_ms=start_ms,
            end_ms=end_ms,
            duration_ms=duration_ms,
            task_name=task_name or None,
            client_id=client_id,
        )
