from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Protocol
from urllib.parse import urlparse

import httpx

from .errors import MalformedEngineResponse, NoRouteFound, RoutingEngineUnavailable
from .geo import LatLon
from .logging_utils import log_event
from .models import Costing
from .polyline import decode_polyline, precision_from_multiplier
from .settings import running_in_docker
from .zones import BLOCK_PENALTY_WEIGHT, AvoidanceZone, ZoneKind, zone_polygon


class RouteMode(str, Enum):
    PLAIN = "plain"
    BLOCK = "block"
    PENALTY = "penalty"


PROFILE_BY_COSTING: Final[dict[str, str]] = {
    "auto": "car",
    "bicycle": "bike",
    "pedestrian": "foot",
}

# Keep routes out of parking lots, driveways and unpaved tracks when alternatives exist.
ROAD_CLASS_PRIORITY: Final[tuple[tuple[str, float], ...]] = (
    ("SERVICE", 0.1),
    ("TRACK", 0.1),
    ("UNCLASSIFIED", 0.7),
)
DISTANCE_INFLUENCE: Final[float] = 150.0

_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}
_LOCALHOST_HOSTS: Final[set[str]] = {"localhost", "127.0.0.1"}
_NO_PATH_MARKERS: Final[tuple[str, ...]] = (
    "connection between locations not found",
    "cannot find point",
    "no path found",
)


@dataclass(frozen=True)
class Maneuver:
    instruction: str
    distance_m: float
    duration_s: float
    begin_shape_index: int
    end_shape_index: int
    street_name: str | None = None


@dataclass(frozen=True)
class RouteRequest:
    origin: LatLon
    destination: LatLon
    waypoints: tuple[LatLon, ...] = ()
    costing: Costing = "auto"
    zones: tuple[AvoidanceZone, ...] = ()
    arc_steps: int = 8


@dataclass(frozen=True)
class RouteResult:
    geometry: tuple[LatLon, ...]
    distance_m: float
    duration_s: float
    strategy: str
    waypoints: tuple[LatLon, ...] = ()
    costing: Costing = "auto"
    maneuvers: tuple[Maneuver, ...] = field(default=(), repr=False)

    def relabel(self, strategy: str) -> RouteResult:
        return RouteResult(
            geometry=self.geometry,
            distance_m=self.distance_m,
            duration_s=self.duration_s,
            strategy=strategy,
            waypoints=self.waypoints,
            costing=self.costing,
            maneuvers=self.maneuvers,
        )


class RouteAdapter(Protocol):
    async def route(self, request: RouteRequest, mode: RouteMode) -> RouteResult: ...


def _multipolygon_feature(zones: list[AvoidanceZone], arc_steps: int) -> dict[str, Any]:
    polygons = []
    for zone in zones:
        ring = zone_polygon(zone, arc_steps=arc_steps)
        polygons.append([[[lon, lat] for lat, lon in ring]])
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": "MultiPolygon", "coordinates": polygons},
    }


def _road_class_rules() -> list[dict[str, Any]]:
    return [{"if": f"road_class == {cls}", "multiply_by": factor} for cls, factor in ROAD_CLASS_PRIORITY]


def build_custom_model(
    zones: tuple[AvoidanceZone, ...] | list[AvoidanceZone], mode: RouteMode, *, arc_steps: int = 8
) -> dict[str, Any] | None:
    """Engine cost model for `mode`.

    Block mode: block-kind zones only, edge priority forced to zero inside them.
    Penalty mode: every zone as a finite multiplier, block-kind far heavier.
    """
    if mode is RouteMode.PLAIN:
        return None

    block = [z for z in zones if z.kind is ZoneKind.BLOCK]
    penalty = [z for z in zones if z.kind is ZoneKind.PENALTY]

    areas: dict[str, Any] = {}
    priority: list[dict[str, Any]] = []
    if mode is RouteMode.BLOCK:
        if block:
            areas["block_zones"] = _multipolygon_feature(block, arc_steps)
            priority.append({"if": "in_block_zones", "multiply_by": 0})
    else:
        if block:
            areas["block_zones"] = _multipolygon_feature(block, arc_steps)
            priority.append({"if": "in_block_zones", "multiply_by": 1.0 / BLOCK_PENALTY_WEIGHT})
        if penalty:
            weight = max(z.cost_weight for z in penalty)
            areas["penalty_zones"] = _multipolygon_feature(penalty, arc_steps)
            priority.append({"if": "in_penalty_zones", "multiply_by": 1.0 / max(weight, 1.0)})

    priority.extend(_road_class_rules())
    model: dict[str, Any] = {"priority": priority, "distance_influence": DISTANCE_INFLUENCE}
    if areas:
        model["areas"] = areas
    return model


def build_payload(request: RouteRequest, mode: RouteMode, *, profile: str | None = None) -> dict[str, Any]:
    points = [[request.origin[1], request.origin[0]]]
    points.extend([lon, lat] for lat, lon in request.waypoints)
    points.append([request.destination[1], request.destination[0]])

    payload: dict[str, Any] = {
        "points": points,
        "profile": profile or PROFILE_BY_COSTING.get(request.costing, "car"),
        "points_encoded": True,
        "instructions": True,
        "calc_points": True,
        "locale": "en",
    }
    model = build_custom_model(request.zones, mode, arc_steps=request.arc_steps)
    if model is not None:
        payload["custom_model"] = model
        # Custom models need the flexible (non-CH) algorithm.
        payload["ch.disable"] = True
    return payload


def _format_engine_error(resp: httpx.Response) -> str:
    """Best-effort decode of engine JSON error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict) and data.get("message"):
            return f"routing engine {resp.status_code}: {data['message']}"
    except ValueError:
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"routing engine {resp.status_code}: {body}"
    return f"routing engine HTTP {resp.status_code}"


def _is_no_path_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _NO_PATH_MARKERS)


def _parse_geometry(path: dict[str, Any]) -> list[LatLon]:
    points = path.get("points")
    if isinstance(points, str):
        try:
            precision = precision_from_multiplier(path.get("points_encoded_multiplier"))
            coords = decode_polyline(points, precision)
        except ValueError as e:
            raise MalformedEngineResponse(message=f"undecodable route geometry: {e}") from e
    elif isinstance(points, dict) and isinstance(points.get("coordinates"), list):
        coords = []
        for pt in points["coordinates"]:
            if (
                isinstance(pt, (list, tuple))
                and len(pt) >= 2
                and isinstance(pt[0], (int, float))
                and isinstance(pt[1], (int, float))
            ):
                coords.append((float(pt[1]), float(pt[0])))
    else:
        raise MalformedEngineResponse(message="route path missing points")

    if len(coords) < 2:
        raise MalformedEngineResponse(message="route geometry has fewer than two points")
    return coords


def _parse_maneuvers(path: dict[str, Any]) -> tuple[Maneuver, ...]:
    out: list[Maneuver] = []
    for inst in path.get("instructions") or []:
        if not isinstance(inst, dict):
            continue
        interval = inst.get("interval") or [0, 0]
        try:
            out.append(
                Maneuver(
                    instruction=str(inst.get("text", "")),
                    distance_m=float(inst.get("distance", 0.0)),
                    duration_s=float(inst.get("time", 0.0)) / 1000.0,
                    begin_shape_index=int(interval[0]),
                    end_shape_index=int(interval[1]),
                    street_name=inst.get("street_name") or None,
                )
            )
        except (TypeError, ValueError, IndexError):
            continue
    return tuple(out)


def parse_route_response(data: Any, request: RouteRequest, *, strategy: str) -> RouteResult:
    if not isinstance(data, dict):
        raise MalformedEngineResponse(message="routing engine response is not a JSON object")

    paths = data.get("paths")
    if not isinstance(paths, list) or not paths:
        message = str(data.get("message") or "routing engine returned no paths")
        raise NoRouteFound(message=message)

    path = paths[0]
    if not isinstance(path, dict):
        raise MalformedEngineResponse(message="route path is not an object")

    geometry = _parse_geometry(path)
    try:
        distance_m = float(path["distance"])
        duration_s = float(path["time"]) / 1000.0
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedEngineResponse(message="route path missing distance/time") from e
    if distance_m < 0 or duration_s < 0:
        raise MalformedEngineResponse(message="route path has negative distance/time")

    return RouteResult(
        geometry=tuple(geometry),
        distance_m=distance_m,
        duration_s=duration_s,
        strategy=strategy,
        waypoints=request.waypoints,
        costing=request.costing,
        maneuvers=_parse_maneuvers(path),
    )


class RoutingEngineClient:
    """Async client for a GraphHopper-compatible `/route` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        profile: str | None = None,
        timeout_s: float = 30.0,
        connect_timeout_s: float = 5.0,
        max_retries: int = 3,
        backoff_base_s: float = 0.25,
        backoff_max_s: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.max_retries = max(1, int(max_retries))
        self.backoff_base_s = max(0.0, float(backoff_base_s))
        self.backoff_max_s = max(self.backoff_base_s, float(backoff_max_s))

        # trust_env=False keeps proxy env vars from hijacking requests to a local engine.
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s),
            trust_env=False,
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _hint(self) -> str:
        try:
            host = urlparse(self.base_url).hostname or ""
        except ValueError:
            host = ""
        if running_in_docker() and host in _LOCALHOST_HOSTS:
            return (
                " Hint: inside a container `localhost` is the container itself; "
                "set ROUTING_ENGINE_BASE_URL=http://graphhopper:8989."
            )
        if not running_in_docker() and host == "graphhopper":
            return (
                " Hint: `graphhopper` is the docker-compose service name; "
                "on the host set ROUTING_ENGINE_BASE_URL=http://localhost:8989."
            )
        return ""

    async def _post(self, payload: dict[str, Any]) -> Any:
        url = f"{self.base_url}/route"
        last_err: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                resp = await self._client.post(url, json=payload)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_err = e
            else:
                if resp.status_code in _RETRYABLE_STATUS:
                    last_err = RoutingEngineUnavailable(
                        message=_format_engine_error(resp),
                        details={"status_code": resp.status_code},
                    )
                elif 400 <= resp.status_code < 500:
                    message = _format_engine_error(resp)
                    if _is_no_path_message(message):
                        raise NoRouteFound(message=message, details={"status_code": resp.status_code})
                    raise RoutingEngineUnavailable(message=message, details={"status_code": resp.status_code})
                elif resp.status_code >= 300:
                    raise RoutingEngineUnavailable(
                        message=_format_engine_error(resp),
                        details={"status_code": resp.status_code},
                    )
                else:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise MalformedEngineResponse(message="routing engine returned invalid JSON") from e

            if attempt < self.max_retries - 1:
                delay = min(self.backoff_base_s * (2**attempt), self.backoff_max_s)
                log_event(
                    "routing_engine_retry",
                    level=logging.WARNING,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_s=delay,
                    error=f"{type(last_err).__name__}: {last_err}",
                )
                await asyncio.sleep(delay)

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        if last_err is None:
            detail = "unknown error"
        else:
            msg = str(last_err).strip()
            detail = f"{type(last_err).__name__}: {msg}" if msg else f"{type(last_err).__name__}: {last_err!r}"

        raise RoutingEngineUnavailable(
            message=(
                f"routing engine request failed after {self.max_retries} attempts "
                f"(base={self.base_url}): {detail}{self._hint()}"
            ),
            details={"base_url": self.base_url, "attempts": self.max_retries},
        )

    async def route(self, request: RouteRequest, mode: RouteMode) -> RouteResult:
        payload = build_payload(request, mode, profile=self.profile)
        try:
            data = await self._post(payload)
            return parse_route_response(data, request, strategy=mode.value)
        except (RoutingEngineUnavailable, NoRouteFound) as e:
            log_event(
                "routing_engine_request_failed",
                level=logging.WARNING,
                mode=mode.value,
                reason_code=e.reason_code,
                error=str(e),
                zone_count=len(request.zones),
                waypoint_count=len(request.waypoints),
            )
            raise
