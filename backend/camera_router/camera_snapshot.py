from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from threading import Lock
from typing import Any, Iterable

from .cameras import Camera, camera_from_record
from .errors import CameraRoutingError
from .geo import bounding_box
from .logging_utils import log_event
from .spatial_index import DEFAULT_CELL_DEGREES, CameraGrid, build_grid


@dataclass(frozen=True)
class CameraSnapshot:
    """Read-only camera set plus its grid index, shared by all requests."""

    cameras: tuple[Camera, ...]
    grid: CameraGrid
    source: str
    loaded_at: str
    skipped_records: int = 0

    def cameras_near(self, points: Iterable[tuple[float, float]], buffer_deg: float) -> list[Camera]:
        north, south, east, west = bounding_box(points, buffer_deg)
        return self.grid.cameras_in_bounds(north, south, east, west)


def build_snapshot(
    cameras: Iterable[Camera],
    *,
    source: str = "memory",
    cell_degrees: float = DEFAULT_CELL_DEGREES,
    skipped_records: int = 0,
) -> CameraSnapshot:
    frozen = tuple(cameras)
    return CameraSnapshot(
        cameras=frozen,
        grid=build_grid(frozen, cell_degrees),
        source=source,
        loaded_at=datetime.now(UTC).isoformat(),
        skipped_records=skipped_records,
    )


def parse_camera_records(raw: Any) -> tuple[list[Camera], int]:
    if not isinstance(raw, list):
        raise ValueError("camera snapshot must be a JSON array")
    cameras: list[Camera] = []
    skipped = 0
    for record in raw:
        if not isinstance(record, dict):
            skipped += 1
            continue
        try:
            cameras.append(camera_from_record(record))
        except ValueError:
            skipped += 1
    return cameras, skipped


def load_snapshot(path: str | Path, *, cell_degrees: float = DEFAULT_CELL_DEGREES) -> CameraSnapshot:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
        cameras, skipped = parse_camera_records(raw)
    except (OSError, ValueError) as e:
        raise CameraRoutingError(
            reason_code="camera_snapshot_unavailable",
            message=f"failed to load camera data from {p}: {e}",
            details={"path": str(p)},
        ) from e

    snapshot = build_snapshot(cameras, source=str(p), cell_degrees=cell_degrees, skipped_records=skipped)
    log_event(
        "camera_snapshot_loaded",
        source=str(p),
        camera_count=len(snapshot.cameras),
        skipped_records=skipped,
        grid_cells=snapshot.grid.cell_count,
        directional_count=sum(1 for c in snapshot.cameras if c.has_facing),
    )
    return snapshot


class CameraSnapshotHolder:
    """Holds the current snapshot; refresh swaps in a fully built replacement."""

    def __init__(self, snapshot: CameraSnapshot) -> None:
        self._lock = Lock()
        self._snapshot = snapshot

    def current(self) -> CameraSnapshot:
        with self._lock:
            return self._snapshot

    def swap(self, snapshot: CameraSnapshot) -> CameraSnapshot:
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
            return previous
