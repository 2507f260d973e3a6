"""FastMCP server bootstrap for Sentinel."""

import logging
from typing import Optional

import uvicorn
from fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware import Middleware

from . import __version__
from .config import SentinelSettings, get_settings
from .routes import PermissiveCORSMiddleware, register_routes
from .tracker import ActivityTracker


def configure_logging(level: str) -> None:
    """Configure root logging for the Sentinel server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[SentinelSettings] = None,
    tracker: ActivityTracker | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server around a single activity tracker."""

    settings = settings or get_settings()
    tracker = tracker or ActivityTracker.from_settings(settings)

    server = FastMCP(
        name="Sentinel",
        version=__version__,
        instructions=(
            "Sentinel tracks whether a coding agent is actively working, based on "
            "hook events it receives. Read the status resource to see whether the "
            "agent is active and the history resource for recent events."
        ),
    )

    handles = register_routes(server, tracker=tracker)

    setattr(server, "sentinel_settings", settings)
    setattr(server, "tracker", tracker)
    setattr(server, "route_handles", handles)
    return server


def create_app(server: FastMCP) -> Starlette:
    """Build the ASGI app serving both the HTTP routes and the MCP endpoint."""

    return server.http_app(middleware=[Middleware(PermissiveCORSMiddleware)])


def main() -> None:
    """Entry point for running the Sentinel server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    app = create_app(server)
    logging.getLogger(__name__).info(
        "Launching Sentinel server on http://%s:%d (POST /hook, GET /status, GET /history, "
        "POST /simulate); inactivity timeout %.1f minutes",
        settings.host,
        settings.port,
        settings.inactivity_timeout_ms / 60_000,
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "inactivity_timeout_ms": settings.inactivity_timeout_ms,
        },
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
