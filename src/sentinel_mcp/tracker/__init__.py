"""Agent activity tracking."""

from .activity import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_INACTIVITY_TIMEOUT_MS,
    ActivityTracker,
)
from .events import (
    EventKind,
    HookEvent,
    MalformedEventError,
    decode_event,
    load_json_document,
    normalize_kind,
)
from .models import ActivityRecord, ActivitySession, StatusView, TaskHandle

__all__ = [
    "ActivityRecord",
    "ActivitySession",
    "ActivityTracker",
    "DEFAULT_HISTORY_LIMIT",
    "DEFAULT_INACTIVITY_TIMEOUT_MS",
    "EventKind",
    "HookEvent",
    "MalformedEventError",
    "StatusView",
    "TaskHandle",
    "decode_event",
    "load_json_document",
    "normalize_kind",
]
