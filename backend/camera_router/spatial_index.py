from __future__ import annotations

import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .cameras import Camera

DEFAULT_CELL_DEGREES = 0.1

CellKey = tuple[int, int]


def cell_key(lat: float, lon: float, cell_degrees: float) -> CellKey:
    return (math.floor(lat / cell_degrees), math.floor(lon / cell_degrees))


@dataclass(frozen=True)
class CameraGrid:
    """Immutable lat/lon bucket index over a camera snapshot.

    Queries are a prefilter: every camera inside the box is returned, plus
    possibly some from the same edge cells. Refresh by building a new grid.
    """

    cell_degrees: float
    cells: Mapping[CellKey, tuple[Camera, ...]]
    camera_count: int

    @property
    def cell_count(self) -> int:
        return len(self.cells)

    def _lon_ranges(self, east: float, west: float) -> list[tuple[int, int]]:
        size = self.cell_degrees
        if west <= east:
            return [(math.floor(west / size), math.floor(east / size))]
        # Box crosses the antimeridian.
        return [
            (math.floor(west / size), math.floor(180.0 / size)),
            (math.floor(-180.0 / size), math.floor(east / size)),
        ]

    def iter_cells(self, north: float, south: float, east: float, west: float) -> Iterator[CellKey]:
        if south > north:
            return
        size = self.cell_degrees
        min_lat = math.floor(south / size)
        max_lat = math.floor(north / size)
        for lon_lo, lon_hi in self._lon_ranges(east, west):
            # Skip dense iteration when the box covers more cells than exist.
            if (max_lat - min_lat + 1) * (lon_hi - lon_lo + 1) > len(self.cells):
                for key in self.cells:
                    if min_lat <= key[0] <= max_lat and lon_lo <= key[1] <= lon_hi:
                        yield key
                continue
            for lat_i in range(min_lat, max_lat + 1):
                for lon_i in range(lon_lo, lon_hi + 1):
                    if (lat_i, lon_i) in self.cells:
                        yield (lat_i, lon_i)

    def query(self, north: float, south: float, east: float, west: float) -> list[Camera]:
        """All cameras in cells overlapping the box (north/south/east/west in degrees)."""
        out: list[Camera] = []
        for key in self.iter_cells(north, south, east, west):
            out.extend(self.cells[key])
        return out

    def cameras_in_bounds(self, north: float, south: float, east: float, west: float) -> list[Camera]:
        """Exact box filter on top of `query`."""
        wraps = west > east
        out: list[Camera] = []
        for camera in self.query(north, south, east, west):
            if not (south <= camera.lat <= north):
                continue
            if wraps:
                if camera.lon >= west or camera.lon <= east:
                    out.append(camera)
            elif west <= camera.lon <= east:
                out.append(camera)
        return out


def build_grid(cameras: Iterable[Camera], cell_degrees: float = DEFAULT_CELL_DEGREES) -> CameraGrid:
    if cell_degrees <= 0:
        raise ValueError("cell_degrees must be positive")

    buckets: dict[CellKey, list[Camera]] = {}
    count = 0
    for camera in cameras:
        buckets.setdefault(cell_key(camera.lat, camera.lon, cell_degrees), []).append(camera)
        count += 1

    frozen = {key: tuple(items) for key, items in buckets.items()}
    return CameraGrid(
        cell_degrees=float(cell_degrees),
        cells=MappingProxyType(frozen),
        camera_count=count,
    )
