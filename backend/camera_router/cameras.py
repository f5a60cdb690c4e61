from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

_CARDINAL_BEARINGS: dict[str, float] = {
    "N": 0.0,
    "NNE": 22.5,
    "NE": 45.0,
    "ENE": 67.5,
    "E": 90.0,
    "ESE": 112.5,
    "SE": 135.0,
    "SSE": 157.5,
    "S": 180.0,
    "SSW": 202.5,
    "SW": 225.0,
    "WSW": 247.5,
    "W": 270.0,
    "WNW": 292.5,
    "NW": 315.0,
    "NNW": 337.5,
}


@dataclass(frozen=True, slots=True)
class Camera:
    id: int | str
    lat: float
    lon: float
    facing_bearing: float | None = None
    operator: str | None = None
    brand: str | None = None

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError(f"camera {self.id!r} has out-of-range coordinate ({self.lat}, {self.lon})")
        if self.facing_bearing is not None and not (0.0 <= self.facing_bearing <= 360.0):
            raise ValueError(f"camera {self.id!r} has out-of-range bearing {self.facing_bearing}")

    @property
    def coordinate(self) -> tuple[float, float]:
        return (self.lat, self.lon)

    @property
    def has_facing(self) -> bool:
        return self.facing_bearing is not None


def parse_direction(value: Any) -> float | None:
    """Parse an OSM-style direction tag into a bearing in [0, 360).

    Accepts numbers, numeric strings and 16-point cardinals. Multi-valued tags
    ("185;70") use the first value.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    else:
        first = str(value).split(";")[0].strip()
        if not first:
            return None
        cardinal = _CARDINAL_BEARINGS.get(first.upper())
        if cardinal is not None:
            return cardinal
        try:
            num = float(first)
        except ValueError:
            return None
    if not math.isfinite(num) or num < 0.0 or num >= 360.0:
        return None
    return num


def camera_from_record(record: dict[str, Any]) -> Camera:
    """Build a Camera from one snapshot row (`osmId`/`id`, `lat`, `lon`, `direction`...)."""
    camera_id = record.get("osmId", record.get("id"))
    if camera_id is None:
        raise ValueError("camera record missing id")
    lat = record.get("lat")
    lon = record.get("lon")
    numeric = all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (lat, lon))
    if not numeric:
        raise ValueError(f"camera {camera_id!r} missing numeric lat/lon")

    bearing = parse_direction(record.get("direction"))
    if bearing is None:
        bearing = parse_direction(record.get("directionCardinal"))

    operator = record.get("operator")
    brand = record.get("brand")
    return Camera(
        id=camera_id,
        lat=float(lat),
        lon=float(lon),
        facing_bearing=bearing,
        operator=str(operator) if operator else None,
        brand=str(brand) if brand else None,
    )
