from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .cameras import Camera
from .geo import LatLon, circle_polygon, destination_point, normalize_angle
from .logging_utils import log_event
from .models import AvoidanceConfig

CIRCLE_SEGMENTS = 16
BACK_ARC_SEGMENTS = 4

# Cost multipliers relative to an unpenalised edge. Block zones are excluded
# outright in block mode; in penalty mode they still cost far more than penalty zones.
BLOCK_PENALTY_WEIGHT = 10_000.0
PENALTY_WEIGHT = 100.0


class ZoneKind(str, Enum):
    BLOCK = "block"
    PENALTY = "penalty"


@dataclass(frozen=True)
class Circle:
    center: LatLon
    radius_m: float


@dataclass(frozen=True)
class Cone:
    apex: LatLon
    bearing_deg: float
    spread_deg: float
    length_m: float
    back_buffer_m: float = 0.0


@dataclass(frozen=True)
class AvoidanceZone:
    shape: Circle | Cone
    kind: ZoneKind
    cost_weight: float
    camera_id: int | str | None = None

    @property
    def is_directional(self) -> bool:
        return isinstance(self.shape, Cone)


@dataclass(frozen=True)
class ZoneStats:
    directional_zones: int = 0
    circular_zones: int = 0
    dropped_zones: int = 0


@dataclass(frozen=True)
class ZoneSet:
    zones: tuple[AvoidanceZone, ...] = ()
    stats: ZoneStats = field(default_factory=ZoneStats)

    def of_kind(self, kind: ZoneKind) -> list[AvoidanceZone]:
        return [z for z in self.zones if z.kind is kind]

    def __len__(self) -> int:
        return len(self.zones)


def default_weight(kind: ZoneKind) -> float:
    return 0.0 if kind is ZoneKind.BLOCK else PENALTY_WEIGHT


def _degraded(camera_id: int | str | None, reason: str, action: str) -> None:
    log_event(
        "zone_degraded",
        level=logging.WARNING,
        camera_id=camera_id,
        reason=reason,
        action=action,
    )


def make_zone(
    camera: Camera,
    radius_m: float,
    kind: ZoneKind,
    *,
    directional: bool,
    fov_degrees: float,
    back_buffer_m: float,
) -> AvoidanceZone | None:
    """One zone for one camera; None when the zone degenerates to nothing."""
    if not math.isfinite(radius_m) or radius_m <= 0.0:
        _degraded(camera.id, "non_positive_length", "dropped")
        return None

    weight = default_weight(kind)
    bearing = camera.facing_bearing
    if directional and bearing is not None:
        if not math.isfinite(bearing) or not math.isfinite(fov_degrees) or fov_degrees <= 0.0:
            _degraded(camera.id, "invalid_cone", "circle")
        elif fov_degrees >= 360.0:
            _degraded(camera.id, "full_spread_cone", "circle")
        else:
            cone = Cone(
                apex=camera.coordinate,
                bearing_deg=normalize_angle(bearing),
                spread_deg=fov_degrees,
                length_m=radius_m,
                back_buffer_m=max(back_buffer_m, 0.0),
            )
            return AvoidanceZone(shape=cone, kind=kind, cost_weight=weight, camera_id=camera.id)

    return AvoidanceZone(
        shape=Circle(center=camera.coordinate, radius_m=radius_m),
        kind=kind,
        cost_weight=weight,
        camera_id=camera.id,
    )


def build_zones(cameras: Iterable[Camera], config: AvoidanceConfig) -> ZoneSet:
    """Block and penalty zones for every camera, block zones first."""
    block: list[AvoidanceZone] = []
    penalty: list[AvoidanceZone] = []
    directional = circular = dropped = 0

    for camera in cameras:
        for kind, radius, bucket in (
            (ZoneKind.BLOCK, config.block_radius_m, block),
            (ZoneKind.PENALTY, config.penalty_radius_m, penalty),
        ):
            zone = make_zone(
                camera,
                radius,
                kind,
                directional=config.use_directional_zones,
                fov_degrees=config.fov_degrees,
                back_buffer_m=config.back_buffer_m,
            )
            if zone is None:
                dropped += 1
                continue
            bucket.append(zone)
            if kind is ZoneKind.BLOCK:
                if zone.is_directional:
                    directional += 1
                else:
                    circular += 1

    return ZoneSet(
        zones=tuple(block + penalty),
        stats=ZoneStats(directional_zones=directional, circular_zones=circular, dropped_zones=dropped),
    )


def cone_polygon(cone: Cone, arc_steps: int = 8) -> list[LatLon]:
    """Closed ring for a cone: the front arc, then back round behind the apex.

    With no back buffer the ring closes at the apex. Otherwise the part of the
    back-buffer circle outside the cone's spread is sampled so the dead zone
    under the camera is covered.
    """
    steps = max(1, int(arc_steps))
    lat, lon = cone.apex
    half = cone.spread_deg / 2.0
    start = cone.bearing_deg - half

    ring: list[LatLon] = [
        destination_point(lat, lon, cone.length_m, normalize_angle(start + cone.spread_deg * i / steps))
        for i in range(steps + 1)
    ]

    if cone.back_buffer_m > 0.0:
        side = max(half, 90.0)
        back_from = cone.bearing_deg + side
        back_span = 360.0 - 2.0 * side
        for i in range(BACK_ARC_SEGMENTS + 1):
            angle = normalize_angle(back_from + back_span * i / BACK_ARC_SEGMENTS)
            ring.append(destination_point(lat, lon, cone.back_buffer_m, angle))
    else:
        ring.append((lat, lon))

    ring.append(ring[0])
    return ring


def zone_polygon(zone: AvoidanceZone, *, arc_steps: int = 8) -> list[LatLon]:
    shape = zone.shape
    if isinstance(shape, Cone):
        return cone_polygon(shape, arc_steps)
    return circle_polygon(shape.center[0], shape.center[1], shape.radius_m, CIRCLE_SEGMENTS)
