from __future__ import annotations

import random

import pytest

from camera_router.cameras import Camera
from camera_router.detection import (
    find_cameras_on_route,
    in_field_of_view,
    is_detected,
)
from camera_router.geo import destination_point, haversine_m

ROUTE = [(40.0, -75.01), (40.0, -74.99)]


def test_omnidirectional_detection_matches_haversine() -> None:
    rng = random.Random(3)
    for _ in range(500):
        cam = Camera(id=1, lat=rng.uniform(39.9, 40.1), lon=rng.uniform(-75.1, -74.9))
        point = (cam.lat + rng.uniform(-0.002, 0.002), cam.lon + rng.uniform(-0.002, 0.002))
        radius = rng.uniform(10.0, 250.0)
        expected = haversine_m(cam.lat, cam.lon, point[0], point[1]) <= radius
        assert is_detected(cam, point, radius, False) == expected


def test_radius_boundary_is_inclusive() -> None:
    cam = Camera(id=1, lat=40.0, lon=-75.0)
    point = destination_point(40.0, -75.0, 75.0, 33.0)
    d = haversine_m(cam.lat, cam.lon, point[0], point[1])
    assert is_detected(cam, point, d)
    assert not is_detected(cam, point, d - 1e-6)


def test_directional_detection_is_subset_outside_back_buffer() -> None:
    rng = random.Random(5)
    for _ in range(500):
        cam = Camera(id=1, lat=40.0, lon=-75.0, facing_bearing=rng.uniform(0.0, 359.9))
        dist = rng.uniform(0.0, 120.0)
        point = destination_point(40.0, -75.0, dist, rng.uniform(0.0, 360.0))
        directional = is_detected(cam, point, 75.0, True, fov_degrees=70.0, back_buffer_m=15.0)
        omni = is_detected(cam, point, 75.0, False)
        if directional:
            assert omni
        if omni and not directional:
            assert dist > 15.0


def test_field_of_view_wraps_at_north() -> None:
    assert in_field_of_view(350.0, 10.0, 70.0)
    assert in_field_of_view(350.0, 315.0, 70.0)
    assert not in_field_of_view(350.0, 30.0, 70.0)
    assert in_field_of_view(0.0, 180.0, 360.0)


def test_back_buffer_detects_behind_camera() -> None:
    cam = Camera(id=1, lat=40.0, lon=-75.0, facing_bearing=0.0)
    behind_close = destination_point(40.0, -75.0, 10.0, 180.0)
    behind_far = destination_point(40.0, -75.0, 50.0, 180.0)
    ahead = destination_point(40.0, -75.0, 50.0, 10.0)
    assert is_detected(cam, behind_close, 75.0, True, back_buffer_m=15.0)
    assert not is_detected(cam, behind_far, 75.0, True, back_buffer_m=15.0)
    assert is_detected(cam, ahead, 75.0, True, back_buffer_m=15.0)


def test_back_buffer_reaching_past_radius_still_detects() -> None:
    cam = Camera(id=1, lat=40.0, lon=-75.0, facing_bearing=0.0)
    behind = destination_point(40.0, -75.0, 90.0, 180.0)
    assert is_detected(cam, behind, 75.0, True, back_buffer_m=100.0)
    assert not is_detected(cam, behind, 75.0, False, back_buffer_m=100.0)

    ahead_far = destination_point(40.0, -75.0, 90.0, 0.0)
    assert is_detected(cam, ahead_far, 75.0, True, back_buffer_m=100.0)
    assert not is_detected(cam, destination_point(40.0, -75.0, 110.0, 0.0), 75.0, True, back_buffer_m=100.0)

    # east-west road about 90 m south of the camera
    route = [(39.99919, -75.002), (39.99919, -74.998)]
    [found] = find_cameras_on_route([cam], route, 75.0, directional=True, back_buffer_m=100.0)
    assert 75.0 < found.distance_from_route_m <= 100.0
    assert find_cameras_on_route([cam], route, 75.0, directional=False) == []


def test_camera_without_facing_falls_back_to_omnidirectional() -> None:
    cam = Camera(id=1, lat=40.0, lon=-75.0)
    behind = destination_point(40.0, -75.0, 50.0, 180.0)
    assert is_detected(cam, behind, 75.0, True)


def test_route_detection_uses_segments_not_vertices() -> None:
    cam = Camera(id="mid", lat=40.0003, lon=-75.0)
    found = find_cameras_on_route([cam], ROUTE, 75.0)
    assert len(found) == 1
    hit = found[0]
    assert hit.distance_from_route_m == pytest.approx(33.4, abs=0.5)
    assert hit.nearest_route_point[1] == pytest.approx(-75.0, abs=1e-5)
    assert hit.is_facing_route


def test_route_detection_dedupes_and_sorts_nearest_first() -> None:
    near = Camera(id=1, lat=40.0001, lon=-75.005)
    far = Camera(id=2, lat=40.0006, lon=-74.995)
    outside = Camera(id=3, lat=40.01, lon=-75.0)
    found = find_cameras_on_route([far, near, outside, near], ROUTE, 75.0)
    assert [c.camera.id for c in found] == [1, 2]


def test_directional_camera_facing_away_is_not_detected() -> None:
    away = Camera(id=1, lat=40.0005, lon=-75.0, facing_bearing=0.0)
    toward = Camera(id=2, lat=40.0005, lon=-75.0, facing_bearing=180.0)
    found = find_cameras_on_route([away, toward], ROUTE, 75.0, directional=True)
    assert [c.camera.id for c in found] == [2]
    assert found[0].is_facing_route

    omni = find_cameras_on_route([away], ROUTE, 75.0, directional=False)
    assert len(omni) == 1
    assert not omni[0].is_facing_route


def test_empty_route_detects_nothing() -> None:
    assert find_cameras_on_route([Camera(id=1, lat=40.0, lon=-75.0)], [], 75.0) == []
