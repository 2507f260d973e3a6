"""HTTP client and blocking policy for Sentinel consumers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

import httpx

from .config import SentinelSettings
from .tracker.activity import wall_clock_ms

logger = logging.getLogger(__name__)


class SentinelClientError(RuntimeError):
    """Base class for client-side errors."""


class ServerUnreachableError(SentinelClientError):
    """Raised when the Sentinel server cannot be reached or answers unusably."""


class SentinelClient:
    """Talk to a running Sentinel server over HTTP."""

    def __init__(
        self,
        base_url: str = "http://localhost:8765",
        *,
        timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(
        cls, settings: SentinelSettings, *, transport: httpx.BaseTransport | None = None
    ) -> "SentinelClient":
        return cls(
            settings.server_url,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SentinelClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def status(self) -> dict[str, Any]:
        return self._expect("GET", "/status", dict)

    def history(self) -> list[dict[str, Any]]:
        return self._expect("GET", "/history", list)

    def simulate(self, action: str) -> dict[str, Any]:
        return self._expect("POST", "/simulate", dict, json={"action": action})

    def send_event(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return self._expect("POST", "/hook", dict, json=dict(payload))

    def _expect(self, method: str, path: str, shape: type, **kwargs: Any) -> Any:
        body = self._request(method, path, **kwargs)
        if not isinstance(body, shape):
            raise ServerUnreachableError(
                f"Sentinel sent a JSON {type(body).__name__} for {method} {path}, "
                f"expected {shape.__name__}"
            )
        return body

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ServerUnreachableError(f"Cannot reach Sentinel at {self._base_url}: {exc}") from exc

        if response.is_error:
            raise ServerUnreachableError(
                f"Sentinel returned HTTP {response.status_code} for {method} {path}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ServerUnreachableError(f"Sentinel sent a non-JSON body for {method} {path}") from exc


class GuardReason(str, Enum):
    DISABLED = "disabled"
    BYPASS = "bypass"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SERVER_UNREACHABLE = "server_unreachable"


@dataclass(slots=True)
class GuardDecision:
    """Whether the distracting site should be blocked right now, and why."""

    blocked: bool
    reason: GuardReason
    status: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"blocked": self.blocked, "reason": self.reason.value, "status": self.status}


class FocusGuard:
    """Decide whether to block, with local overrides taking precedence over the server.

    Order of precedence: blocking disabled, then a live bypass, then the
    server's ``isActive``. A server that cannot be reached counts as inactive,
    so the guard fails closed.
    """

    def __init__(
        self,
        client: SentinelClient,
        *,
        blocking_enabled: bool = True,
        bypass_minutes: float = 5.0,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._client = client
        self._clock = clock or wall_clock_ms
        self.blocking_enabled = blocking_enabled
        self.bypass_minutes = bypass_minutes
        self.bypass_until: int | None = None

    @classmethod
    def from_settings(
        cls,
        settings: SentinelSettings,
        client: SentinelClient,
        *,
        clock: Callable[[], int] | None = None,
    ) -> "FocusGuard":
        return cls(client, bypass_minutes=settings.bypass_minutes, clock=clock)

    def grant_bypass(self, minutes: float | None = None) -> int:
        """Allow the site for ``minutes`` (default ``bypass_minutes``); return the deadline."""

        duration = self.bypass_minutes if minutes is None else minutes
        self.bypass_until = self._clock() + int(duration * 60_000)
        logger.info("Bypass granted", extra={"bypass_until": self.bypass_until})
        return self.bypass_until

    def clear_bypass(self) -> None:
        self.bypass_until = None

    def evaluate(self) -> GuardDecision:
        if not self.blocking_enabled:
            return GuardDecision(blocked=False, reason=GuardReason.DISABLED)

        if self.bypass_until is not None:
            if self._clock() < self.bypass_until:
                return GuardDecision(blocked=False, reason=GuardReason.BYPASS)
            self.bypass_until = None

        try:
            status = self._client.status()
        except ServerUnreachableError as exc:
            logger.warning("Sentinel server not reachable, blocking", extra={"error": str(exc)})
            return GuardDecision(blocked=True, reason=GuardReason.SERVER_UNREACHABLE)

        if status.get("isActive"):
            return GuardDecision(blocked=False, reason=GuardReason.ACTIVE, status=status)
        return GuardDecision(blocked=True, reason=GuardReason.INACTIVE, status=status)


__all__ = [
    "FocusGuard",
    "GuardDecision",
    "GuardReason",
    "SentinelClient",
    "SentinelClientError",
    "ServerUnreachableError",
]
