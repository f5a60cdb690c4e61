from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

EARTH_RADIUS_M = 6_371_000.0

# (lat, lon) in WGS84 degrees. Geometry inside this package is always lat-first;
# conversion to the engine's lon-first GeoJSON happens at the adapter boundary.
LatLon = tuple[float, float]


def normalize_angle(degrees: float) -> float:
    """Normalise an angle to [0, 360)."""
    mod = math.fmod(degrees, 360.0)
    if mod < 0:
        mod += 360.0
    # fmod(-1e-17, 360) + 360 rounds to 360.0
    return 0.0 if mod >= 360.0 else mod


def angular_difference(a: float, b: float) -> float:
    """Smallest absolute difference between two bearings, in [0, 180]."""
    diff = abs(normalize_angle(a) - normalize_angle(b))
    return 360.0 - diff if diff > 180.0 else diff


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    a = min(1.0, max(0.0, a))
    return 2.0 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return normalize_angle(math.degrees(math.atan2(y, x)))


def destination_point(lat: float, lon: float, distance_m: float, bearing_deg: float) -> LatLon:
    """Forward geodesic on a sphere: the point `distance_m` away along `bearing_deg`."""
    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    phi2 = math.asin(min(1.0, max(-1.0, sin_phi2)))
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )

    out_lon = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return (math.degrees(phi2), out_lon)


def nearest_point_on_segment(point: LatLon, start: LatLon, end: LatLon) -> tuple[float, LatLon]:
    """Distance (m) from `point` to the great-circle segment start->end, and the nearest point.

    Uses cross-track / along-track distances; the along-track position is clamped to
    the segment so points beyond either end resolve to that endpoint.
    """
    seg_len = haversine_m(start[0], start[1], end[0], end[1])
    d_start = haversine_m(start[0], start[1], point[0], point[1])
    if seg_len <= 1e-6:
        return d_start, start

    delta13 = d_start / EARTH_RADIUS_M
    theta13 = math.radians(initial_bearing(start[0], start[1], point[0], point[1]))
    theta12 = math.radians(initial_bearing(start[0], start[1], end[0], end[1]))

    sin_xt = math.sin(delta13) * math.sin(theta13 - theta12)
    delta_xt = math.asin(min(1.0, max(-1.0, sin_xt)))

    # Signed along-track angle; atan2 keeps precision at metre scale where acos would not.
    delta_at = math.atan2(math.sin(delta13) * math.cos(theta13 - theta12), math.cos(delta13))

    along_m = delta_at * EARTH_RADIUS_M
    if along_m <= 0.0:
        return d_start, start
    if along_m >= seg_len:
        return haversine_m(end[0], end[1], point[0], point[1]), end

    nearest = destination_point(start[0], start[1], along_m, math.degrees(theta12))
    return abs(delta_xt) * EARTH_RADIUS_M, nearest


def nearest_point_on_polyline(point: LatLon, polyline: Sequence[LatLon]) -> tuple[float, LatLon, int]:
    """Minimum distance from `point` to `polyline`, the nearest point and its segment index."""
    if not polyline:
        raise ValueError("polyline must contain at least one point")
    if len(polyline) == 1:
        only = polyline[0]
        return haversine_m(only[0], only[1], point[0], point[1]), only, 0

    best_d = math.inf
    best_pt = polyline[0]
    best_idx = 0
    for idx in range(len(polyline) - 1):
        d, pt = nearest_point_on_segment(point, polyline[idx], polyline[idx + 1])
        if d < best_d:
            best_d, best_pt, best_idx = d, pt, idx
    return best_d, best_pt, best_idx


def polyline_length_m(polyline: Sequence[LatLon]) -> float:
    return sum(
        haversine_m(a[0], a[1], b[0], b[1]) for a, b in zip(polyline, polyline[1:])
    )


def circle_polygon(lat: float, lon: float, radius_m: float, segments: int = 16) -> list[LatLon]:
    """Closed ring approximating a circle; first and last points are identical."""
    segments = max(3, int(segments))
    ring = [destination_point(lat, lon, radius_m, 360.0 * i / segments) for i in range(segments)]
    ring.append(ring[0])
    return ring


def bounding_box(points: Iterable[LatLon], buffer_deg: float = 0.0) -> tuple[float, float, float, float]:
    """(north, south, east, west) around `points`, clamped to valid latitude/longitude."""
    lats: list[float] = []
    lons: list[float] = []
    for lat, lon in points:
        lats.append(lat)
        lons.append(lon)
    if not lats:
        raise ValueError("bounding_box needs at least one point")

    north = min(90.0, max(lats) + buffer_deg)
    south = max(-90.0, min(lats) - buffer_deg)
    east = min(180.0, max(lons) + buffer_deg)
    west = max(-180.0, min(lons) - buffer_deg)
    return north, south, east, west
