"""Activity state machine fed by agent lifecycle events."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Mapping

from .events import EventKind, HookEvent, decode_event
from .models import ActivityRecord, ActivitySession, StatusView, TaskHandle

if TYPE_CHECKING:
    from ..config import SentinelSettings

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_TIMEOUT_MS = 120_000
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_SESSION_ID = "active"


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class ActivityTracker:
    """Derive whether the agent is working from the events it reports.

    A session acts as a coarse on/off switch and in-flight tasks as an
    override: any open task means active no matter how long ago the last
    event arrived. Otherwise an open session stays active until
    ``inactivity_timeout_ms`` passes without activity.

    Every mutation and read happens under one lock, so callers on different
    threads always observe a fully applied event.
    """

    def __init__(
        self,
        *,
        inactivity_timeout_ms: int = DEFAULT_INACTIVITY_TIMEOUT_MS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if inactivity_timeout_ms < 1:
            raise ValueError("inactivity_timeout_ms must be >= 1")
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")

        self._inactivity_timeout_ms = inactivity_timeout_ms
        self._clock = clock or wall_clock_ms
        self._lock = threading.Lock()

        self._session: ActivitySession | None = None
        self._tasks: dict[str, TaskHandle] = {}
        self._last_activity_at: int | None = None
        self._history: deque[ActivityRecord] = deque(maxlen=history_limit)
        # Mirrors the last event's effect for log output; query_active() never reads it.
        self._cached_active = False

        self._handlers: dict[EventKind, Callable[[HookEvent, int], None]] = {
            EventKind.SESSION_START: self._on_session_start,
            EventKind.SESSION_END: self._on_session_end,
            EventKind.TASK_START: self._on_task_start,
            EventKind.TASK_END: self._on_task_end,
            EventKind.STOP: self._on_stop,
            EventKind.HEARTBEAT: self._touch,
            EventKind.UNKNOWN: self._on_unknown,
        }

    @classmethod
    def from_settings(
        cls, settings: "SentinelSettings", *, clock: Callable[[], int] | None = None
    ) -> "ActivityTracker":
        return cls(
            inactivity_timeout_ms=settings.inactivity_timeout_ms,
            history_limit=settings.history_limit,
            clock=clock,
        )

    @property
    def inactivity_timeout_ms(self) -> int:
        return self._inactivity_timeout_ms

    @property
    def history_limit(self) -> int:
        return self._history.maxlen or DEFAULT_HISTORY_LIMIT

    @property
    def session(self) -> ActivitySession | None:
        with self._lock:
            return self._session

    @property
    def tasks(self) -> dict[str, TaskHandle]:
        with self._lock:
            return dict(self._tasks)

    @property
    def last_activity_at(self) -> int | None:
        with self._lock:
            return self._last_activity_at

    def submit(self, event: HookEvent) -> ActivityRecord:
        """Apply ``event`` to the tracker state and record it in the history."""

        kind = event.kind
        with self._lock:
            now = self._clock()
            record = ActivityRecord(kind=kind, payload=event.payload, received_at=now)
            self._history.appendleft(record)
            self._handlers[kind](event, now)
            active_tasks = len(self._tasks)
            cached_active = self._cached_active

        logger.info(
            "Received %s event",
            kind.value,
            extra={
                "event_kind": kind.value,
                "raw_kind": event.raw_kind,
                "active_tasks": active_tasks,
                "cached_active": cached_active,
            },
        )
        return record

    def submit_payload(self, body: bytes | str | Mapping[str, Any]) -> ActivityRecord:
        """Decode ``body`` and submit it.

        Raises :class:`MalformedEventError` before touching any state when the
        body is not a JSON object.
        """

        return self.submit(decode_event(body))

    def query_active(self) -> bool:
        with self._lock:
            return self._derive_active(self._clock())

    def snapshot(self) -> StatusView:
        with self._lock:
            now = self._clock()
            last = self._last_activity_at
            return StatusView(
                is_active=self._derive_active(now),
                last_activity_at=last,
                session=self._session,
                active_task_count=len(self._tasks),
                time_since_activity=None if last is None else now - last,
                inactivity_timeout_ms=self._inactivity_timeout_ms,
            )

    def history_view(self) -> list[ActivityRecord]:
        """Return retained events, most recent first."""

        with self._lock:
            return list(self._history)

    def _derive_active(self, now: int) -> bool:
        if self._session is None and not self._tasks:
            return False
        if self._tasks:
            return True
        if self._last_activity_at is not None:
            return now - self._last_activity_at < self._inactivity_timeout_ms
        return False

    def _touch(self, event: HookEvent, now: int) -> None:
        self._last_activity_at = now

    def _on_session_start(self, event: HookEvent, now: int) -> None:
        self._session = ActivitySession(id=event.session_id or DEFAULT_SESSION_ID)
        self._cached_active = True
        self._last_activity_at = now
        logger.info("Session started, agent is ACTIVE", extra={"session_id": self._session.id})

    def _on_session_end(self, event: HookEvent, now: int) -> None:
        self._session = None
        self._tasks.clear()
        self._cached_active = False
        logger.info("Session ended, agent is INACTIVE")

    def _on_task_start(self, event: HookEvent, now: int) -> None:
        if event.task_id:
            self._tasks[event.task_id] = TaskHandle(
                id=event.task_id, started_at=now, tool_name=event.tool_name
            )
        self._cached_active = True
        self._last_activity_at = now
        logger.info(
            "Task started (%d active), agent is ACTIVE",
            len(self._tasks),
            extra={"task_id": event.task_id, "tool_name": event.tool_name},
        )

    def _on_task_end(self, event: HookEvent, now: int) -> None:
        if event.task_id:
            self._tasks.pop(event.task_id, None)
        self._last_activity_at = now
        self._cached_active = bool(self._tasks) or self._session is not None
        logger.info(
            "Task ended (%d remaining)",
            len(self._tasks),
            extra={"task_id": event.task_id},
        )

    def _on_stop(self, event: HookEvent, now: int) -> None:
        # The active flag is left alone; the inactivity timeout decides.
        self._last_activity_at = now
        logger.info("Agent stopped responding, inactive once the timeout elapses")

    def _on_unknown(self, event: HookEvent, now: int) -> None:
        self._last_activity_at = now
        logger.info("Unknown event type: %s", event.raw_kind, extra={"raw_kind": event.raw_kind})


__all__ = [
    "ActivityTracker",
    "DEFAULT_HISTORY_LIMIT",
    "DEFAULT_INACTIVITY_TIMEOUT_MS",
    "wall_clock_ms",
]
