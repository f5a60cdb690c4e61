from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .cameras import Camera
from .geo import LatLon, angular_difference, haversine_m, initial_bearing, nearest_point_on_polyline

DEFAULT_FOV_DEGREES = 70.0
DEFAULT_BACK_BUFFER_M = 15.0


@dataclass(frozen=True)
class CameraOnRoute:
    camera: Camera
    distance_from_route_m: float
    nearest_route_point: LatLon
    is_facing_route: bool


def in_field_of_view(facing: float, bearing_to_point: float, fov_degrees: float) -> bool:
    """True when `bearing_to_point` lies in [facing - fov/2, facing + fov/2] (wraps at 0/360)."""
    if fov_degrees >= 360.0:
        return True
    return angular_difference(facing, bearing_to_point) <= fov_degrees / 2.0 + 1e-9


def is_detected(
    camera: Camera,
    point: LatLon,
    radius_m: float,
    directional: bool = False,
    *,
    fov_degrees: float = DEFAULT_FOV_DEGREES,
    back_buffer_m: float = DEFAULT_BACK_BUFFER_M,
    distance_m: float | None = None,
) -> bool:
    """Whether `camera` observes `point`.

    Omnidirectional: great-circle distance <= radius (inclusive). Directional
    (only for cameras with facing data): inside the radius and the cone, or
    within the back buffer regardless of bearing, even where the back buffer
    reaches past the radius.
    """
    d = haversine_m(camera.lat, camera.lon, point[0], point[1]) if distance_m is None else distance_m
    if not directional or camera.facing_bearing is None:
        return d <= radius_m
    if d <= back_buffer_m:
        return True
    if d > radius_m:
        return False
    bearing = initial_bearing(camera.lat, camera.lon, point[0], point[1])
    return in_field_of_view(camera.facing_bearing, bearing, fov_degrees)


def _facing_route(camera: Camera, nearest: LatLon, fov_degrees: float) -> bool:
    if camera.facing_bearing is None:
        # No facing data: assume worst case.
        return True
    bearing = initial_bearing(camera.lat, camera.lon, nearest[0], nearest[1])
    return in_field_of_view(camera.facing_bearing, bearing, fov_degrees)


def find_cameras_on_route(
    cameras: Iterable[Camera],
    polyline: Sequence[LatLon],
    radius_m: float,
    directional: bool = False,
    *,
    fov_degrees: float = DEFAULT_FOV_DEGREES,
    back_buffer_m: float = DEFAULT_BACK_BUFFER_M,
) -> list[CameraOnRoute]:
    """Cameras detecting any point of `polyline`, nearest first.

    Distance is measured to the great-circle segments, not just the vertices.
    Each camera appears at most once, at its minimum distance.
    """
    if not polyline:
        return []

    out: list[CameraOnRoute] = []
    seen: set[int | str] = set()
    for camera in cameras:
        if camera.id in seen:
            continue
        d, nearest, _ = nearest_point_on_polyline(camera.coordinate, polyline)
        reach = radius_m
        if directional and camera.facing_bearing is not None:
            reach = max(radius_m, back_buffer_m)
        if d > reach:
            continue
        detected = is_detected(
            camera,
            nearest,
            radius_m,
            directional,
            fov_degrees=fov_degrees,
            back_buffer_m=back_buffer_m,
            distance_m=d,
        )
        if not detected:
            continue
        seen.add(camera.id)
        out.append(
            CameraOnRoute(
                camera=camera,
                distance_from_route_m=d,
                nearest_route_point=nearest,
                is_facing_route=_facing_route(camera, nearest, fov_degrees),
            )
        )

    out.sort(key=lambda c: c.distance_from_route_m)
    return out

