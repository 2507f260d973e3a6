"""Hook event decoding and kind normalization."""

from __future__ import annotations

import json
import math
from enum import Enum
from typing import Any, Mapping

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)


class MalformedEventError(ValueError):
    """Raised when a submitted body cannot be decoded into an event."""


class EventKind(str, Enum):
    """Internal vocabulary for the lifecycle events the tracker understands."""

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    TASK_START = "task_start"
    TASK_END = "task_end"
    STOP = "stop"
    HEARTBEAT = "heartbeat"
    UNKNOWN = "unknown"


# Keys are lowercased with "_" and "-" removed, so "session_start",
# "Session-Start" and the hook name "SessionStart" all collapse together.
_KIND_ALIASES: dict[str, EventKind] = {
    "sessionstart": EventKind.SESSION_START,
    "sessionend": EventKind.SESSION_END,
    "taskstart": EventKind.TASK_START,
    "pretooluse": EventKind.TASK_START,
    "taskend": EventKind.TASK_END,
    "posttooluse": EventKind.TASK_END,
    "stop": EventKind.STOP,
    "subagentstop": EventKind.STOP,
    "heartbeat": EventKind.HEARTBEAT,
}


def normalize_kind(raw: str | None) -> EventKind:
    """Map an informal or hook-style event name onto an :class:`EventKind`."""

    if not raw:
        return EventKind.UNKNOWN
    key = raw.strip().lower().replace("_", "").replace("-", "")
    return _KIND_ALIASES.get(key, EventKind.UNKNOWN)


class HookEvent(BaseModel):
    """A lifecycle notification as received from an agent hook or the simulator."""

    model_config = ConfigDict(extra="ignore")

    raw_kind: str | None = Field(
        default=None,
        validation_alias=AliasChoices("kind", "event", "hook_event_name", "hookEventName"),
        description="Event name exactly as submitted.",
    )
    session_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    task_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("task_id", "taskId", "tool_use_id", "toolUseId"),
        description="Correlation id pairing a task start with its end.",
    )
    tool_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tool_name", "toolName"),
    )

    _payload: dict[str, Any] = PrivateAttr(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_values(cls, data: Any) -> Any:
        # A blank "event" must not shadow a populated "hook_event_name".
        if not isinstance(data, Mapping):
            return data
        return {
            key: value
            for key, value in data.items()
            if value is not None and not (isinstance(value, str) and not value.strip())
        }

    @field_validator("raw_kind", "session_id", "task_id", "tool_name", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = value if isinstance(value, str) else str(value)
        text = text.strip()
        return text or None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "HookEvent":
        """Validate ``payload`` and keep a copy of it for the history log."""

        event = cls.model_validate(dict(payload))
        event._payload = dict(payload)
        return event

    @property
    def kind(self) -> EventKind:
        return normalize_kind(self.raw_kind)

    @property
    def payload(self) -> dict[str, Any]:
        return dict(self._payload)


def _reject_constant(name: str) -> float:
    raise MalformedEventError(f"Non-finite number {name} is not allowed")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise MalformedEventError(f"Number {text} is out of range")
    return value


def load_json_document(body: bytes | str) -> Any:
    """Parse ``body`` as strict JSON that can be re-serialized without loss.

    NaN, Infinity and overflowing numbers are rejected, as are documents
    nested too deeply to parse.
    """

    try:
        return json.loads(body, parse_constant=_reject_constant, parse_float=_finite_float)
    except MalformedEventError:
        raise
    except ValueError as exc:
        raise MalformedEventError(f"Body is not valid JSON: {exc}") from exc
    except RecursionError as exc:
        raise MalformedEventError("Body is nested too deeply") from exc


def decode_event(body: bytes | str | Mapping[str, Any]) -> HookEvent:
    """Decode a request body into a :class:`HookEvent`.

    Anything that parses as a JSON object is accepted; unknown kinds and
    missing optional fields are left for the tracker to absorb.
    """

    if isinstance(body, Mapping):
        document: Any = body
    else:
        document = load_json_document(body)

    if not isinstance(document, Mapping):
        raise MalformedEventError(
            f"Event must be a JSON object, got {type(document).__name__}"
        )

    try:
        return HookEvent.from_payload(document)
    except ValidationError as exc:  # pragma: no cover - validators coerce every field
        raise MalformedEventError(str(exc)) from exc


__all__ = [
    "EventKind",
    "HookEvent",
    "MalformedEventError",
    "decode_event",
    "load_json_document",
    "normalize_kind",
]
