from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "invalid_input",
        "route_too_long",
        "routing_engine_unavailable",
        "routing_engine_malformed_response",
        "no_route_found",
        "detour_exceeded",
        "route_compute_timeout",
        "camera_snapshot_unavailable",
        "client_disconnected",
    }
)


@dataclass(eq=False)
class CameraRoutingError(RuntimeError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class InvalidInput(CameraRoutingError):
    reason_code: str = "invalid_input"
    message: str = "invalid input"


@dataclass(eq=False)
class RouteTooLong(InvalidInput):
    reason_code: str = "route_too_long"
    message: str = "route distance exceeds maximum"


@dataclass(eq=False)
class RoutingEngineUnavailable(CameraRoutingError):
    """Network/HTTP failure talking to the routing engine."""

    reason_code: str = "routing_engine_unavailable"
    message: str = "routing engine unavailable"


@dataclass(eq=False)
class MalformedEngineResponse(RoutingEngineUnavailable):
    reason_code: str = "routing_engine_malformed_response"
    message: str = "routing engine returned a malformed response"


@dataclass(eq=False)
class NoRouteFound(CameraRoutingError):
    """The engine could not connect the requested points under the submitted cost model."""

    reason_code: str = "no_route_found"
    message: str = "no route found"


@dataclass(eq=False)
class DetourExceeded(CameraRoutingError):
    reason_code: str = "detour_exceeded"
    message: str = "candidate route exceeds the detour budget"


@dataclass(eq=False)
class RouteComputeTimeout(CameraRoutingError):
    reason_code: str = "route_compute_timeout"
    message: str = "route computation timed out"


@dataclass(eq=False)
class ClientDisconnected(CameraRoutingError):
    reason_code: str = "client_disconnected"
    message: str = "client disconnected before the route was ready"


def normalize_reason_code(reason_code: str, *, default: str = "routing_engine_unavailable") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
