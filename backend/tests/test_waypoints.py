from __future__ import annotations

import pytest

from camera_router.cameras import Camera
from camera_router.detection import find_cameras_on_route
from camera_router.geo import angular_difference, destination_point, haversine_m, initial_bearing
from camera_router.models import AvoidanceConfig
from camera_router.waypoints import (
    densest_cluster,
    insert_waypoint,
    perpendicular_offset,
    route_heading,
)

EASTBOUND = [(40.0, -75.01), (40.0, -75.005), (40.0, -75.0), (40.0, -74.995), (40.0, -74.99)]
CONFIG = AvoidanceConfig()


def _detected(cameras: list[Camera]):
    return find_cameras_on_route(cameras, EASTBOUND, CONFIG.camera_detection_radius_m)


def test_route_heading_eastbound() -> None:
    assert route_heading(EASTBOUND, 2) == pytest.approx(90.0, abs=0.01)
    assert route_heading(EASTBOUND[:1], 0) == 0.0


def test_densest_cluster_prefers_larger_groups_and_skips_tried() -> None:
    pair = [Camera(id="a", lat=40.0, lon=-75.006), Camera(id="b", lat=40.0, lon=-75.005)]
    single = [Camera(id="c", lat=40.0, lon=-74.995)]
    detected = _detected(pair + single)

    cluster = densest_cluster(detected, 2 * CONFIG.block_radius_m, frozenset())
    assert {c.camera.id for c in cluster} == {"a", "b"}

    cluster = densest_cluster(detected, 2 * CONFIG.block_radius_m, frozenset({("a", "b")}))
    assert [c.camera.id for c in cluster] == ["c"]


def test_offset_is_perpendicular_and_one_block_radius_out() -> None:
    camera = Camera(id=1, lat=40.0, lon=-75.0)
    proposal = perpendicular_offset(EASTBOUND, _detected([camera]), [camera], CONFIG, frozenset())

    assert proposal is not None
    assert proposal.cluster_key == ("1",)
    assert proposal.cluster_size == 1
    lat, lon = proposal.point
    assert haversine_m(40.0, -75.0, lat, lon) == pytest.approx(CONFIG.block_radius_m, rel=1e-6)
    # Tie on both sides with the cluster on the route: go right of travel (south).
    assert initial_bearing(40.0, -75.0, lat, lon) == pytest.approx(180.0, abs=0.1)


def test_offset_picks_side_with_fewer_known_cameras() -> None:
    camera = Camera(id=1, lat=40.0, lon=-75.0)
    south = destination_point(40.0, -75.0, CONFIG.block_radius_m, 180.0)
    neighbour = Camera(id=2, lat=south[0], lon=south[1])
    proposal = perpendicular_offset(EASTBOUND, _detected([camera]), [camera, neighbour], CONFIG, frozenset())

    assert proposal is not None
    lat, lon = proposal.point
    assert angular_difference(initial_bearing(40.0, -75.0, lat, lon), 0.0) < 0.1


def test_offset_moves_away_from_off_route_cluster() -> None:
    camera = Camera(id=1, lat=40.0003, lon=-75.0)
    proposal = perpendicular_offset(EASTBOUND, _detected([camera]), [camera], CONFIG, frozenset())

    assert proposal is not None
    lat, _ = proposal.point
    assert lat < 40.0


def test_no_proposal_without_cameras_or_untried_clusters() -> None:
    camera = Camera(id=1, lat=40.0, lon=-75.0)
    assert perpendicular_offset(EASTBOUND, [], [camera], CONFIG, frozenset()) is None
    assert perpendicular_offset(EASTBOUND, _detected([camera]), [camera], CONFIG, frozenset({("1",)})) is None
    assert perpendicular_offset(EASTBOUND[:1], _detected([camera]), [camera], CONFIG, frozenset()) is None


def test_insert_waypoint_keeps_route_order() -> None:
    first = (40.0001, -75.008)
    last = (40.0001, -74.992)
    new = (39.999, -75.0)
    assert insert_waypoint([first, last], new, EASTBOUND, 2) == (first, new, last)
    assert insert_waypoint([], new, EASTBOUND, 2) == (new,)
    assert insert_waypoint([first], new, EASTBOUND, 2) == (first, new)
    assert insert_waypoint([last], new, EASTBOUND, 1) == (new, last)
