"""HTTP route and MCP resource registration for Sentinel."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastmcp import FastMCP
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..tracker import ActivityTracker, HookEvent, MalformedEventError, load_json_document

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

SIMULATED_SESSION_ID = "test-session"
SIMULATE_ACTIONS = ("start", "stop", "task_start")
_CATCH_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@dataclass(slots=True)
class RouteHandles:
    hook: Any
    status: Any
    history: Any
    simulate: Any
    not_found: Any
    status_resource: Any
    history_resource: Any
    tracker: ActivityTracker


class PermissiveCORSMiddleware:
    """Answer every preflight with 204 and stamp CORS headers on every response.

    The browser extension calls from its own origin, so all origins are allowed.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(status_code=204, headers=CORS_HEADERS)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                headers.update(CORS_HEADERS)
            await send(message)

        await self.app(scope, receive, send_with_cors)


def simulated_payload(action: Any) -> dict[str, Any] | None:
    """Translate a simulator action into a hook payload, or ``None`` for unknown actions."""

    if action == "start":
        return {"event": "session_start", "session_id": SIMULATED_SESSION_ID}
    if action == "stop":
        return {"event": "session_end"}
    if action == "task_start":
        return {"event": "task_start", "tool_use_id": f"task-{uuid4().hex}"}
    return None


def register_routes(server: FastMCP, *, tracker: ActivityTracker) -> RouteHandles:
    """Register the extension-facing HTTP routes and MCP resources on the server."""

    async def _hook(request: Request) -> JSONResponse:
        body = await request.body()
        try:
            tracker.submit_payload(body)
        except MalformedEventError as exc:
            logger.warning("Failed to parse hook event", extra={"error": str(exc)})
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        return JSONResponse({"success": True})

    async def _status(request: Request) -> JSONResponse:
        return JSONResponse(tracker.snapshot().to_dict())

    async def _history(request: Request) -> JSONResponse:
        return JSONResponse([record.to_dict() for record in tracker.history_view()])

    async def _simulate(request: Request) -> JSONResponse:
        body = await request.body()
        try:
            document = load_json_document(body)
        except MalformedEventError as exc:
            logger.warning("Failed to parse simulate request", extra={"error": str(exc)})
            return JSONResponse({"error": "Invalid request"}, status_code=400)
        if not isinstance(document, dict):
            return JSONResponse({"error": "Invalid request"}, status_code=400)

        action = document.get("action")
        payload = simulated_payload(action)
        if payload is not None:
            tracker.submit(HookEvent.from_payload(payload))
        else:
            logger.debug("Ignoring unknown simulate action", extra={"action": action})

        return JSONResponse({"success": True, "status": tracker.snapshot().to_dict()})

    async def _not_found(request: Request) -> JSONResponse:
        return JSONResponse({"error": "Not found"}, status_code=404)

    server.custom_route("/hook", methods=["POST"], name="hook")(_hook)
    server.custom_route("/status", methods=["GET"], name="status")(_status)
    server.custom_route("/history", methods=["GET"], name="history")(_history)
    server.custom_route("/simulate", methods=["POST"], name="simulate")(_simulate)
    # Registered last so every concrete route matches first.
    server.custom_route(
        "/{path:path}", methods=_CATCH_ALL_METHODS, name="not_found", include_in_schema=False
    )(_not_found)

    def _status_resource() -> str:
        """Return the current activity status as JSON."""

        return json.dumps(tracker.snapshot().to_dict())

    def _history_resource() -> str:
        """Return recently received events as JSON, most recent first."""

        return json.dumps([record.to_dict() for record in tracker.history_view()])

    server.resource(
        "resource://sentinel/status",
        name="sentinel_status",
        description="Whether the agent is currently considered active, with timing details.",
        mime_type="application/json",
        tags={"status", "activity"},
    )(_status_resource)

    server.resource(
        "resource://sentinel/history",
        name="sentinel_history",
        description="The most recent hook events received by Sentinel.",
        mime_type="application/json",
        tags={"history", "debug"},
    )(_history_resource)

    return RouteHandles(
        hook=_hook,
        status=_status,
        history=_history,
        simulate=_simulate,
        not_found=_not_found,
        status_resource=_status_resource,
        history_resource=_history_resource,
        tracker=tracker,
    )


__all__ = [
    "CORS_HEADERS",
    "PermissiveCORSMiddleware",
    "RouteHandles",
    "SIMULATE_ACTIONS",
    "register_routes",
    "simulated_payload",
]
