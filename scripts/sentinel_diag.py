"""Sentinel diagnostics CLI."""

from __future__ import annotations

import argparse
import json
import sys
import time

from sentinel_mcp.client import FocusGuard, SentinelClient, ServerUnreachableError
from sentinel_mcp.config import SentinelSettings
from sentinel_mcp.routes import SIMULATE_ACTIONS


def load_client(settings: SentinelSettings) -> SentinelClient:
    return SentinelClient.from_settings(settings)


def format_time_ago(elapsed_ms: int | None) -> str:
    if elapsed_ms is None:
        return "never"
    seconds = elapsed_ms // 1000
    if seconds < 5:
        return "just now"
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def _format_status(status: dict) -> str:
    session = status.get("session") or {}
    return " | ".join(
        [
            "ACTIVE" if status.get("isActive") else "INACTIVE",
            f"tasks={status.get('activeTaskCount', 0)}",
            f"session={session.get('id') or 'none'}",
            f"last activity {format_time_ago(status.get('timeSinceActivity'))}",
        ]
    )


def cmd_status(args: argparse.Namespace) -> None:
    settings = SentinelSettings()
    with load_client(settings) as client:
        try:
            status = client.status()
        except ServerUnreachableError as exc:
            print(f"Sentinel server unreachable: {exc}")
            raise SystemExit(1)
    if args.json:
        print(json.dumps(status, indent=2))
    else:
        print(_format_status(status))


def cmd_history(args: argparse.Namespace) -> None:
    settings = SentinelSettings()
    with load_client(settings) as client:
        try:
            records = client.history()
        except ServerUnreachableError as exc:
            print(f"Sentinel server unreachable: {exc}")
            raise SystemExit(1)
    if args.limit is not None and args.limit > 0:
        records = records[: args.limit]
    print(json.dumps(records, indent=2))


def cmd_simulate(args: argparse.Namespace) -> None:
    settings = SentinelSettings()
    with load_client(settings) as client:
        try:
            result = client.simulate(args.action)
        except ServerUnreachableError as exc:
            print(f"Sentinel server unreachable: {exc}")
            raise SystemExit(1)
    print(_format_status(result.get("status") or {}))


def cmd_hook(args: argparse.Namespace) -> None:
    # Runs inside the agent's hook pipeline: report problems on stderr, never fail the hook.
    raw = sys.stdin.read()
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        print(f"Ignoring hook payload that is not JSON: {exc}", file=sys.stderr)
        return
    if not isinstance(payload, dict):
        print("Ignoring hook payload that is not a JSON object", file=sys.stderr)
        return
    if args.event:
        payload.setdefault("hook_event_name", args.event)

    settings = SentinelSettings()
    with load_client(settings) as client:
        try:
            client.send_event(payload)
        except ServerUnreachableError as exc:
            print(f"Sentinel server unreachable: {exc}", file=sys.stderr)


def cmd_watch(args: argparse.Namespace) -> None:
    settings = SentinelSettings()
    with load_client(settings) as client:
        guard = FocusGuard.from_settings(settings, client)
        if args.bypass:
            guard.grant_bypass()

        interval = args.interval if args.interval is not None else settings.poll_interval_seconds
        polls = 0
        while args.count is None or polls < args.count:
            decision = guard.evaluate()
            line = f"{'BLOCKED' if decision.blocked else 'ALLOWED'} ({decision.reason.value})"
            if decision.status is not None:
                line = f"{line} | {_format_status(decision.status)}"
            print(line, flush=True)
            polls += 1
            if args.count is None or polls < args.count:
                time.sleep(interval)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sentinel diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Show whether the agent is active")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_status)

    p_history = sub.add_parser("history", help="List recently received events")
    p_history.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_history.set_defaults(func=cmd_history)

    p_simulate = sub.add_parser("simulate", help="Send a synthetic event to the server")
    p_simulate.add_argument("action", choices=SIMULATE_ACTIONS)
    p_simulate.set_defaults(func=cmd_simulate)

    p_hook = sub.add_parser(
        "hook",
        help="Forward a hook payload read from stdin to the server",
    )
    p_hook.add_argument(
        "--event",
        default=None,
        help="Event name to use when the payload does not carry one",
    )
    p_hook.set_defaults(func=cmd_hook)

    p_watch = sub.add_parser("watch", help="Poll the server and print blocking decisions")
    p_watch.add_argument("--interval", type=float, default=None, help="Seconds between polls")
    p_watch.add_argument("--count", type=int, default=None, help="Stop after N polls")
    p_watch.add_argument("--bypass", action="store_true", help="Start with a bypass granted")
    p_watch.set_defaults(func=cmd_watch)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
