from __future__ import annotations

import itertools
from concurrent.futures import ThreadPoolExecutor

import pytest

from sentinel_mcp.tracker import (
    ActivitySession,
    ActivityTracker,
    EventKind,
    HookEvent,
    MalformedEventError,
)

TIMEOUT_MS = 120_000


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> ActivityTracker:
    return ActivityTracker(inactivity_timeout_ms=TIMEOUT_MS, clock=clock)


def _event(**payload) -> HookEvent:
    return HookEvent.from_payload(payload)


def test_fresh_tracker_is_inactive(tracker: ActivityTracker) -> None:
    view = tracker.snapshot()

    assert view.is_active is False
    assert view.session is None
    assert view.last_activity_at is None
    assert view.time_since_activity is None
    assert view.active_task_count == 0
    assert view.inactivity_timeout_ms == TIMEOUT_MS
    assert tracker.history_view() == []


def test_session_start_marks_active_with_session_id(tracker: ActivityTracker, clock: FakeClock) -> None:
    tracker.submit(_event(kind="session-start", sessionId="s1"))

    view = tracker.snapshot()
    assert view.is_active is True
    assert view.session == ActivitySession(id="s1")
    assert view.last_activity_at == clock.now
    assert view.to_dict()["session"] == {"id": "s1"}


def test_session_start_without_id_uses_placeholder(tracker: ActivityTracker) -> None:
    tracker.submit(_event(hook_event_name="SessionStart"))

    assert tracker.session == ActivitySession(id="active")


def test_task_start_then_end_without_session_is_inactive(tracker: ActivityTracker) -> None:
    tracker.submit(_event(kind="task-start", taskId="t1"))
    assert tracker.query_active() is True

    tracker.submit(_event(kind="task-end", taskId="t1"))

    view = tracker.snapshot()
    assert view.active_task_count == 0
    assert view.is_active is False


def test_stop_keeps_session_active_until_timeout(tracker: ActivityTracker, clock: FakeClock) -> None:
    tracker.submit(_event(kind="session-start"))
    tracker.submit(_event(kind="stop"))

    clock.advance(TIMEOUT_MS - 1)
    assert tracker.snapshot().is_active is True

    clock.advance(2)
    assert tracker.snapshot().is_active is False
    assert tracker.session is not None


def test_timeout_boundary_is_exclusive(tracker: ActivityTracker, clock: FakeClock) -> None:
    tracker.submit(_event(event="session_start"))
    start = clock.now

    clock.now = start + TIMEOUT_MS - 1
    assert tracker.query_active() is True
    clock.now = start + TIMEOUT_MS
    assert tracker.query_active() is False
    clock.now = start + TIMEOUT_MS * 10
    assert tracker.query_active() is False


def test_open_task_overrides_timeout(tracker: ActivityTracker, clock: FakeClock) -> None:
    tracker.submit(_event(hook_event_name="PreToolUse", tool_use_id="toolu_1", tool_name="Bash"))

    clock.advance(TIMEOUT_MS * 50)

    assert tracker.query_active() is True
    assert tracker.tasks["toolu_1"].tool_name == "Bash"


def test_session_end_is_idempotent(clock: FakeClock) -> None:
    once = ActivityTracker(clock=clock)
    twice = ActivityTracker(clock=clock)
    for tracker in (once, twice):
        tracker.submit(_event(kind="session_start", session_id="s1"))
        tracker.submit(_event(kind="task_start", task_id="t1"))
    once.submit(_event(kind="session_end"))
    twice.submit(_event(kind="session_end"))
    twice.submit(_event(kind="SessionEnd"))

    assert once.snapshot() == twice.snapshot()
    view = twice.snapshot()
    assert view.session is None
    assert view.active_task_count == 0
    assert view.is_active is False


@pytest.mark.parametrize("end_order", list(itertools.permutations(["a", "b", "c"])))
def test_matching_task_ends_in_any_order_drain_tasks(
    tracker: ActivityTracker, end_order: tuple[str, ...]
) -> None:
    for task_id in ("a", "b", "c"):
        tracker.submit(_event(kind="task_start", task_id=task_id))
    for index, task_id in enumerate(end_order):
        tracker.submit(_event(kind="task_end", task_id=task_id))
        if index < len(end_order) - 1:
            assert tracker.query_active() is True

    assert tracker.tasks == {}
    assert tracker.query_active() is False


def test_task_end_with_open_session_stays_active(tracker: ActivityTracker) -> None:
    tracker.submit(_event(kind="session_start"))
    tracker.submit(_event(kind="task_start", task_id="t1"))
    tracker.submit(_event(kind="task_end", task_id="t1"))

    assert tracker.query_active() is True


def test_task_start_upserts_same_id(tracker: ActivityTracker, clock: FakeClock) -> None:
    tracker.submit(_event(kind="task_start", task_id="t1", tool_name="Read"))
    clock.advance(500)
    tracker.submit(_event(kind="task_start", task_id="t1", tool_name="Edit"))

    tasks = tracker.tasks
    assert list(tasks) == ["t1"]
    assert tasks["t1"].started_at == clock.now
    assert tasks["t1"].tool_name == "Edit"


def test_task_event_without_id_only_touches_activity(tracker: ActivityTracker, clock: FakeClock) -> None:
    tracker.submit(_event(kind="task_start", tool_name="Bash"))

    assert tracker.tasks == {}
    assert tracker.last_activity_at == clock.now

    clock.advance(10)
    tracker.submit(_event(kind="task_end"))
    assert tracker.last_activity_at == clock.now


def test_session_end_clears_tasks(tracker: ActivityTracker) -> None:
    tracker.submit(_event(kind="session_start"))
    tracker.submit(_event(kind="task_start", task_id="t1"))
    tracker.submit(_event(kind="task_start", task_id="t2"))

    tracker.submit(_event(kind="session_end"))

    assert tracker.tasks == {}
    assert tracker.query_active() is False


@pytest.mark.parametrize("kind", ["heartbeat", "UserPromptSubmit", "Notification", None])
def test_activity_only_events_refresh_timestamp(
    tracker: ActivityTracker, clock: FakeClock, kind: str | None
) -> None:
    tracker.submit(_event(kind="session_start"))
    clock.advance(TIMEOUT_MS - 10)

    payload = {"kind": kind} if kind is not None else {"note": "no kind"}
    tracker.submit(HookEvent.from_payload(payload))
    clock.advance(TIMEOUT_MS - 10)

    assert tracker.query_active() is True


def test_unknown_kind_without_session_stays_inactive(tracker: ActivityTracker, clock: FakeClock) -> None:
    record = tracker.submit(_event(kind="SomethingNew"))

    assert record.kind is EventKind.UNKNOWN
    assert tracker.last_activity_at == clock.now
    assert tracker.query_active() is False


def test_history_is_capped_and_newest_first(tracker: ActivityTracker) -> None:
    for index in range(60):
        tracker.submit(_event(kind="heartbeat", seq=index))

    history = tracker.history_view()
    assert len(history) == 50
    assert history[0].payload["seq"] == 59
    assert history[-1].payload["seq"] == 10


def test_history_respects_configured_limit(clock: FakeClock) -> None:
    tracker = ActivityTracker(history_limit=3, clock=clock)
    for index in range(5):
        tracker.submit(_event(kind="heartbeat", seq=index))

    assert [record.payload["seq"] for record in tracker.history_view()] == [4, 3, 2]


def test_history_record_serializes_payload_and_receipt(tracker: ActivityTracker) -> None:
    tracker.submit(_event(hook_event_name="PostToolUse", tool_use_id="toolu_9", cwd="/repo"))

    entry = tracker.history_view()[0].to_dict()
    assert entry["hook_event_name"] == "PostToolUse"
    assert entry["cwd"] == "/repo"
    assert entry["normalizedKind"] == "task_end"
    assert "kind" not in entry
    assert entry["receivedAt"] == "2023-11-14T22:13:20.000+00:00"


def test_history_view_is_a_copy(tracker: ActivityTracker) -> None:
    tracker.submit(_event(kind="heartbeat"))

    view = tracker.history_view()
    view.clear()

    assert len(tracker.history_view()) == 1


def test_history_keeps_submitted_kind_beside_normalized_kind(tracker: ActivityTracker) -> None:
    tracker.submit(_event(kind="UserPromptSubmit", prompt="hi"))

    entry = tracker.history_view()[0].to_dict()
    assert entry["kind"] == "UserPromptSubmit"
    assert entry["normalizedKind"] == "unknown"
    assert entry["prompt"] == "hi"


def test_retained_records_are_read_only(tracker: ActivityTracker) -> None:
    source = {"kind": "heartbeat", "meta": {"tags": ["a"]}}
    tracker.submit(HookEvent.from_payload(source))
    source["meta"]["tags"].append("from-submitter")

    record = tracker.history_view()[0]
    with pytest.raises(TypeError):
        record.payload["kind"] = "session_end"
    with pytest.raises(TypeError):
        record.payload["meta"]["extra"] = True
    assert record.payload["meta"]["tags"] == ("a",)

    exported = record.to_dict()
    exported["meta"]["tags"].append("from-reader")
    exported["kind"] = "session_end"

    again = tracker.history_view()[0].to_dict()
    assert again["meta"] == {"tags": ["a"]}
    assert again["kind"] == "heartbeat"


@pytest.mark.parametrize("body", [b"{not json", b"", b"[1, 2]", b'"session_start"', b"\xff\xfe"])
def test_malformed_body_leaves_state_unchanged(tracker: ActivityTracker, body: bytes) -> None:
    tracker.submit(_event(kind="session_start", session_id="s1"))
    tracker.submit(_event(kind="task_start", task_id="t1"))
    before = (tracker.snapshot(), tracker.history_view())

    with pytest.raises(MalformedEventError):
        tracker.submit_payload(body)

    assert (tracker.snapshot(), tracker.history_view()) == before


@pytest.mark.parametrize(
    "body",
    [
        b'{"kind": "heartbeat", "x": NaN}',
        b'{"kind": "heartbeat", "x": Infinity}',
        b'{"kind": "heartbeat", "x": -Infinity}',
        b'{"kind": "heartbeat", "x": 1e999}',
        b"[" * 100_000 + b"]" * 100_000,
    ],
    ids=["nan", "infinity", "negative-infinity", "overflow", "deep-nesting"],
)
def test_unserializable_body_is_rejected(tracker: ActivityTracker, body: bytes) -> None:
    with pytest.raises(MalformedEventError):
        tracker.submit_payload(body)

    assert tracker.history_view() == []
    assert tracker.last_activity_at is None


def test_submit_payload_accepts_json_text(tracker: ActivityTracker) -> None:
    tracker.submit_payload('{"hook_event_name": "SessionStart", "session_id": "abc"}')

    assert tracker.session == ActivitySession(id="abc")


def test_concurrent_submissions_are_all_applied(tracker: ActivityTracker) -> None:
    def _start(index: int) -> None:
        tracker.submit(_event(kind="task_start", task_id=f"t{index}"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_start, range(200)))

    assert len(tracker.tasks) == 200
    assert len(tracker.history_view()) == 50


def test_invalid_construction_arguments() -> None:
    with pytest.raises(ValueError):
        ActivityTracker(inactivity_timeout_ms=0)
    with pytest.raises(ValueError):
        ActivityTracker(history_limit=0)
