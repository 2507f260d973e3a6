"""Data models for tracker state and its read views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from .events import EventKind


def format_timestamp(epoch_ms: int) -> str:
    """Render an epoch-millisecond timestamp as ISO-8601 UTC."""

    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds")


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


@dataclass(slots=True, frozen=True)
class ActivitySession:
    id: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id}


@dataclass(slots=True, frozen=True)
class TaskHandle:
    id: str
    started_at: int
    tool_name: str | None = None


@dataclass(slots=True, frozen=True)
class ActivityRecord:
    """One received event and the time it arrived.

    The payload is frozen on construction: mappings become read-only
    proxies and lists become tuples, so neither the submitter nor a history
    reader can change retained history.
    """

    kind: EventKind
    payload: Mapping[str, Any]
    received_at: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(self.payload))

    def to_dict(self) -> dict[str, Any]:
        # Submitted fields, including the raw "kind", are kept as received.
        return {
            **_thaw(self.payload),
            "normalizedKind": self.kind.value,
            "receivedAt": format_timestamp(self.received_at),
        }


@dataclass(slots=True, frozen=True)
class StatusView:
    """Point-in-time answer to "is the agent working?"."""

    is_active: bool
    last_activity_at: int | None
    session: ActivitySession | None
    active_task_count: int
    time_since_activity: int | None
    inactivity_timeout_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "isActive": self.is_active,
            "lastActivityAt": self.last_activity_at,
            "session": self.session.to_dict() if self.session is not None else None,
            "activeTaskCount": self.active_task_count,
            "timeSinceActivity": self.time_since_activity,
            "inactivityTimeoutMs": self.inactivity_timeout_ms,
        }


__all__ = ["ActivityRecord", "ActivitySession", "StatusView", "TaskHandle", "format_timestamp"]
