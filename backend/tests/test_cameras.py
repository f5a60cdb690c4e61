from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from camera_router.camera_snapshot import (
    CameraSnapshotHolder,
    build_snapshot,
    load_snapshot,
    parse_camera_records,
)
from camera_router.cameras import Camera, camera_from_record, parse_direction
from camera_router.errors import CameraRoutingError


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("N", 0.0),
        ("nne", 22.5),
        ("SW", 225.0),
        ("NNW", 337.5),
        ("185;70", 185.0),
        (" 90 ", 90.0),
        (45, 45.0),
        (359.9, 359.9),
        ("360", None),
        (-10, None),
        ("north", None),
        ("", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_direction(value: object, expected: float | None) -> None:
    assert parse_direction(value) == expected


def test_camera_from_record_prefers_numeric_direction() -> None:
    cam = camera_from_record(
        {"osmId": 42, "lat": 40.0, "lon": -75.0, "direction": "120", "directionCardinal": "N", "brand": "Flock"}
    )
    assert cam == Camera(id=42, lat=40.0, lon=-75.0, facing_bearing=120.0, brand="Flock")
    assert cam.has_facing

    fallback = camera_from_record({"id": "a", "lat": 40.0, "lon": -75.0, "directionCardinal": "E"})
    assert fallback.facing_bearing == 90.0
    assert fallback.operator is None


@pytest.mark.parametrize(
    "record",
    [
        {"lat": 40.0, "lon": -75.0},
        {"osmId": 1, "lat": "40.0", "lon": -75.0},
        {"osmId": 1, "lat": True, "lon": -75.0},
        {"osmId": 1, "lat": 95.0, "lon": -75.0},
    ],
)
def test_camera_from_record_rejects_bad_rows(record: dict) -> None:
    with pytest.raises(ValueError):
        camera_from_record(record)


def test_parse_camera_records_counts_skipped_rows() -> None:
    cameras, skipped = parse_camera_records(
        [{"osmId": 1, "lat": 40.0, "lon": -75.0}, "junk", {"osmId": 2, "lat": None, "lon": 1.0}]
    )
    assert [c.id for c in cameras] == [1]
    assert skipped == 2
    with pytest.raises(ValueError):
        parse_camera_records({"cameras": []})


def test_load_snapshot_builds_grid(tmp_path: Path) -> None:
    path = tmp_path / "cameras.json"
    path.write_text(
        json.dumps(
            [
                {"osmId": 1, "lat": 40.05, "lon": -75.05, "direction": 90},
                {"osmId": 2, "lat": 40.5, "lon": -75.5},
                {"osmId": 3},
            ]
        ),
        encoding="utf-8",
    )
    snapshot = load_snapshot(path, cell_degrees=0.1)
    assert len(snapshot.cameras) == 2
    assert snapshot.skipped_records == 1
    assert snapshot.grid.cell_count == 2
    assert snapshot.source == str(path)

    near = snapshot.cameras_near([(40.0, -75.0), (40.1, -75.1)], 0.05)
    assert [c.id for c in near] == [1]


def test_load_snapshot_missing_or_invalid_file(tmp_path: Path) -> None:
    with pytest.raises(CameraRoutingError) as exc:
        load_snapshot(tmp_path / "missing.json")
    assert exc.value.reason_code == "camera_snapshot_unavailable"

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(CameraRoutingError):
        load_snapshot(bad)


def test_snapshot_holder_swaps_whole_snapshots() -> None:
    first = build_snapshot([Camera(id=1, lat=40.0, lon=-75.0)])
    second = build_snapshot([Camera(id=2, lat=41.0, lon=-75.0), Camera(id=3, lat=41.0, lon=-75.1)])
    holder = CameraSnapshotHolder(first)

    seen: list[tuple[int, int]] = []

    def reader() -> None:
        for _ in range(200):
            snap = holder.current()
            seen.append((snap.grid.camera_count, len(snap.cameras)))

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    previous = holder.swap(second)
    for t in threads:
        t.join()

    assert previous is first
    assert holder.current() is second
    # Readers only ever see complete snapshots: grid and camera list agree.
    assert all(grid_count == count for grid_count, count in seen)
    assert {count for _, count in seen} <= {1, 2}
