from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .cameras import Camera
from .detection import CameraOnRoute
from .geo import (
    LatLon,
    angular_difference,
    destination_point,
    haversine_m,
    initial_bearing,
    nearest_point_on_polyline,
)
from .models import AvoidanceConfig

CLUSTER_RADIUS_FACTOR = 2.0
HEADING_WINDOW = 2

ClusterKey = tuple[str, ...]


@dataclass(frozen=True)
class WaypointProposal:
    point: LatLon
    cluster_key: ClusterKey
    route_index: int
    cluster_size: int


class WaypointStrategy(Protocol):
    def __call__(
        self,
        route: Sequence[LatLon],
        detected: Sequence[CameraOnRoute],
        nearby: Sequence[Camera],
        config: AvoidanceConfig,
        tried: frozenset[ClusterKey],
    ) -> WaypointProposal | None: ...


def _cluster_key(members: Sequence[CameraOnRoute]) -> ClusterKey:
    return tuple(sorted(str(m.camera.id) for m in members))


def _centroid(members: Sequence[CameraOnRoute]) -> LatLon:
    lat = sum(m.camera.lat for m in members) / len(members)
    lon = sum(m.camera.lon for m in members) / len(members)
    return (lat, lon)


def route_heading(route: Sequence[LatLon], index: int) -> float:
    """Heading of `route` around vertex `index`, smoothed over a small window."""
    lo = max(0, index - HEADING_WINDOW)
    hi = min(len(route) - 1, index + HEADING_WINDOW)
    if lo == hi or route[lo] == route[hi]:
        return 0.0
    return initial_bearing(route[lo][0], route[lo][1], route[hi][0], route[hi][1])


def densest_cluster(
    detected: Sequence[CameraOnRoute], cluster_radius_m: float, tried: frozenset[ClusterKey]
) -> list[CameraOnRoute]:
    """Largest group of detected cameras within `cluster_radius_m` of a seed camera.

    Clusters already tried are skipped. Ties go to the nearer-to-route seed.
    """
    best: list[CameraOnRoute] = []
    for seed in detected:
        members = [
            c
            for c in detected
            if haversine_m(seed.camera.lat, seed.camera.lon, c.camera.lat, c.camera.lon) <= cluster_radius_m
        ]
        if _cluster_key(members) in tried:
            continue
        if len(members) > len(best):
            best = members
    return best


def _cameras_within(nearby: Sequence[Camera], point: LatLon, radius_m: float) -> int:
    return sum(1 for c in nearby if haversine_m(c.lat, c.lon, point[0], point[1]) <= radius_m)


def perpendicular_offset(
    route: Sequence[LatLon],
    detected: Sequence[CameraOnRoute],
    nearby: Sequence[Camera],
    config: AvoidanceConfig,
    tried: frozenset[ClusterKey],
) -> WaypointProposal | None:
    """Offset a waypoint sideways from the densest remaining camera cluster.

    The waypoint sits perpendicular to the route heading at the cluster,
    one block radius beyond the cluster's extent. The side with fewer known
    cameras around the candidate point wins; on a tie, the side away from
    the cluster.
    """
    if len(route) < 2 or not detected:
        return None

    members = densest_cluster(detected, CLUSTER_RADIUS_FACTOR * config.block_radius_m, tried)
    if not members:
        return None

    centroid = _centroid(members)
    extent = max(haversine_m(centroid[0], centroid[1], m.camera.lat, m.camera.lon) for m in members)
    _, on_route, seg_idx = nearest_point_on_polyline(centroid, route)
    heading = route_heading(route, seg_idx)
    offset_m = extent + config.block_radius_m

    right = destination_point(centroid[0], centroid[1], offset_m, (heading + 90.0) % 360.0)
    left = destination_point(centroid[0], centroid[1], offset_m, (heading - 90.0) % 360.0)

    right_count = _cameras_within(nearby, right, config.penalty_radius_m)
    left_count = _cameras_within(nearby, left, config.penalty_radius_m)
    if right_count != left_count:
        point = right if right_count < left_count else left
    elif haversine_m(on_route[0], on_route[1], centroid[0], centroid[1]) < 1.0:
        point = right
    else:
        # Cluster sits off to one side of the route: go the other way.
        to_cluster = initial_bearing(on_route[0], on_route[1], centroid[0], centroid[1])
        cluster_on_right = angular_difference(to_cluster, (heading + 90.0) % 360.0) < 90.0
        point = left if cluster_on_right else right

    return WaypointProposal(
        point=point,
        cluster_key=_cluster_key(members),
        route_index=seg_idx,
        cluster_size=len(members),
    )


def insert_waypoint(
    existing: Sequence[LatLon], new_point: LatLon, route: Sequence[LatLon], route_index: int
) -> tuple[LatLon, ...]:
    """Insert `new_point` among `existing` waypoints in route order."""
    if len(route) < 2:
        return (*existing, new_point)
    positions = [nearest_point_on_polyline(wp, route)[2] for wp in existing]
    at = len(existing)
    for i, pos in enumerate(positions):
        if pos > route_index:
            at = i
            break
    return (*existing[:at], new_point, *existing[at:])
