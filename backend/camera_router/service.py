from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from .camera_snapshot import CameraSnapshot
from .comparator import Improvement, RouteScore, compare, score_route
from .detection import CameraOnRoute, find_cameras_on_route
from .errors import InvalidInput, NoRouteFound, RouteTooLong, RoutingEngineUnavailable
from .geo import LatLon, haversine_m
from .logging_utils import log_event
from .models import AvoidanceConfig
from .orchestrator import RouteSearch, SearchResult
from .routing_engine import RouteAdapter, RouteMode, RouteRequest, RouteResult
from .waypoints import WaypointStrategy, perpendicular_offset
from .zones import ZoneSet, build_zones


@dataclass(frozen=True)
class CameraRouteReport:
    search: SearchResult
    normal_score: RouteScore
    avoidance_score: RouteScore
    improvement: Improvement
    cameras_considered: int


@dataclass(frozen=True)
class CustomRouteReport:
    route: RouteResult
    cameras: tuple[CameraOnRoute, ...]
    score: RouteScore
    zones: ZoneSet


def _check_point(point: LatLon, label: str) -> None:
    lat, lon = point
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidInput(message=f"{label} coordinate is not finite")
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidInput(message=f"{label} coordinate ({lat}, {lon}) out of range")


def trip_points(origin: LatLon, destination: LatLon, waypoints: Sequence[LatLon] = ()) -> list[LatLon]:
    return [origin, *waypoints, destination]


def validate_trip(points: Sequence[LatLon], *, max_route_distance_m: float) -> float:
    """Reject bad coordinates and over-long trips before any engine call.

    Returns the straight-line length through all points.
    """
    for i, point in enumerate(points):
        label = "origin" if i == 0 else "destination" if i == len(points) - 1 else f"waypoint {i}"
        _check_point(point, label)

    straight = sum(haversine_m(a[0], a[1], b[0], b[1]) for a, b in zip(points, points[1:]))
    if straight > max_route_distance_m:
        raise RouteTooLong(
            message=(
                f"trip is {straight / 1609.344:.0f} miles in a straight line; "
                f"maximum is {max_route_distance_m / 1609.344:.0f} miles"
            ),
            details={"straight_line_m": round(straight, 1), "max_route_distance_m": max_route_distance_m},
        )
    return straight


async def compute_camera_route(
    adapter: RouteAdapter,
    snapshot: CameraSnapshot,
    *,
    origin: LatLon,
    destination: LatLon,
    waypoints: Sequence[LatLon] = (),
    config: AvoidanceConfig,
    max_route_distance_m: float,
    waypoint_strategy: WaypointStrategy = perpendicular_offset,
) -> CameraRouteReport:
    points = trip_points(origin, destination, waypoints)
    validate_trip(points, max_route_distance_m=max_route_distance_m)

    cameras = snapshot.cameras_near(points, config.bbox_buffer_degrees)
    zones = build_zones(cameras, config)
    search = RouteSearch(
        adapter,
        cameras=cameras,
        zones=zones,
        config=config,
        waypoint_strategy=waypoint_strategy,
    )
    result = await search.run(
        RouteRequest(
            origin=origin,
            destination=destination,
            waypoints=tuple(waypoints),
            costing=config.costing,
            arc_steps=config.cone_arc_steps,
        )
    )

    radius = config.camera_detection_radius_m
    normal_score = score_route(result.baseline.route, result.baseline.cameras, radius)
    avoidance_score = score_route(result.avoidance.route, result.avoidance.cameras, radius)
    return CameraRouteReport(
        search=result,
        normal_score=normal_score,
        avoidance_score=avoidance_score,
        improvement=compare(normal_score, avoidance_score),
        cameras_considered=len(cameras),
    )


async def compute_custom_route(
    adapter: RouteAdapter,
    snapshot: CameraSnapshot,
    *,
    origin: LatLon,
    destination: LatLon,
    waypoints: Sequence[LatLon],
    config: AvoidanceConfig,
    max_route_distance_m: float,
) -> CustomRouteReport:
    """Route through the caller's own waypoints, softly steering around cameras."""
    if not waypoints:
        raise InvalidInput(message="custom routes need at least one waypoint")
    points = trip_points(origin, destination, waypoints)
    validate_trip(points, max_route_distance_m=max_route_distance_m)

    cameras = snapshot.cameras_near(points, config.bbox_buffer_degrees)
    zones = build_zones(cameras, config)
    request = RouteRequest(
        origin=origin,
        destination=destination,
        waypoints=tuple(waypoints),
        costing=config.costing,
        zones=zones.zones,
        arc_steps=config.cone_arc_steps,
    )

    try:
        route = await adapter.route(request, RouteMode.PENALTY)
    except (RoutingEngineUnavailable, NoRouteFound) as e:
        log_event(
            "custom_route_penalty_failed",
            level=logging.WARNING,
            reason_code=e.reason_code,
            error=str(e),
        )
        route = await adapter.route(request, RouteMode.PLAIN)

    on_route = tuple(
        find_cameras_on_route(
            cameras,
            route.geometry,
            config.camera_detection_radius_m,
            config.use_directional_zones,
            fov_degrees=config.fov_degrees,
            back_buffer_m=config.back_buffer_m,
        )
    )
    return CustomRouteReport(
        route=route,
        cameras=on_route,
        score=score_route(route, on_route, config.camera_detection_radius_m),
        zones=zones,
    )
