from __future__ import annotations

import pytest

from camera_router.cameras import Camera
from camera_router.geo import angular_difference, haversine_m, initial_bearing
from camera_router.models import AvoidanceConfig
from camera_router.zones import (
    PENALTY_WEIGHT,
    Circle,
    Cone,
    ZoneKind,
    build_zones,
    cone_polygon,
    default_weight,
    make_zone,
    zone_polygon,
)

FACING = Camera(id="facing", lat=40.05, lon=-75.05, facing_bearing=90.0)
OMNI = Camera(id="omni", lat=40.06, lon=-75.06)


def test_build_zones_emits_cones_for_facing_cameras_and_circles_otherwise() -> None:
    config = AvoidanceConfig()
    zone_set = build_zones([FACING, OMNI], config)

    assert len(zone_set) == 4
    kinds = [z.kind for z in zone_set.zones]
    assert kinds == [ZoneKind.BLOCK, ZoneKind.BLOCK, ZoneKind.PENALTY, ZoneKind.PENALTY]

    block_cone = zone_set.zones[0].shape
    assert isinstance(block_cone, Cone)
    assert block_cone.apex == FACING.coordinate
    assert block_cone.bearing_deg == 90.0
    assert block_cone.spread_deg == config.fov_degrees
    assert block_cone.length_m == pytest.approx(config.block_radius_m)

    penalty_cone = zone_set.zones[2].shape
    assert isinstance(penalty_cone, Cone)
    assert penalty_cone.length_m == pytest.approx(config.penalty_radius_m)
    assert penalty_cone.length_m > block_cone.length_m

    assert isinstance(zone_set.zones[1].shape, Circle)
    assert zone_set.stats.directional_zones == 1
    assert zone_set.stats.circular_zones == 1
    assert zone_set.stats.dropped_zones == 0
    assert len(zone_set.of_kind(ZoneKind.PENALTY)) == 2


def test_directional_mode_off_gives_circles_only() -> None:
    zone_set = build_zones([FACING], AvoidanceConfig(use_directional_zones=False))
    assert all(isinstance(z.shape, Circle) for z in zone_set.zones)
    assert zone_set.stats.directional_zones == 0


def test_full_spread_cone_degrades_to_circle() -> None:
    zone = make_zone(FACING, 120.0, ZoneKind.BLOCK, directional=True, fov_degrees=360.0, back_buffer_m=15.0)
    assert zone is not None
    assert isinstance(zone.shape, Circle)
    assert zone.shape.radius_m == 120.0


def test_zero_length_zone_is_dropped() -> None:
    assert make_zone(FACING, 0.0, ZoneKind.BLOCK, directional=True, fov_degrees=70.0, back_buffer_m=15.0) is None
    assert make_zone(OMNI, float("nan"), ZoneKind.PENALTY, directional=False, fov_degrees=70.0, back_buffer_m=0.0) is None


def test_back_buffer_longer_than_cone_is_kept() -> None:
    zone = make_zone(FACING, 10.0, ZoneKind.BLOCK, directional=True, fov_degrees=70.0, back_buffer_m=50.0)
    assert zone is not None
    assert isinstance(zone.shape, Cone)
    assert zone.shape.back_buffer_m == 50.0

    negative = make_zone(FACING, 10.0, ZoneKind.BLOCK, directional=True, fov_degrees=70.0, back_buffer_m=-5.0)
    assert negative is not None
    assert negative.shape.back_buffer_m == 0.0


def test_weights_order_block_above_penalty() -> None:
    assert default_weight(ZoneKind.PENALTY) == PENALTY_WEIGHT
    assert default_weight(ZoneKind.BLOCK) == 0.0


def test_cone_polygon_closes_at_apex_without_back_buffer() -> None:
    cone = Cone(apex=(40.0, -75.0), bearing_deg=0.0, spread_deg=70.0, length_m=120.0)
    ring = cone_polygon(cone, arc_steps=8)

    assert len(ring) == 8 + 1 + 2
    assert ring[0] == ring[-1]
    assert ring[-2] == (40.0, -75.0)
    for lat, lon in ring[:9]:
        assert haversine_m(40.0, -75.0, lat, lon) == pytest.approx(120.0, rel=1e-6)
        assert angular_difference(initial_bearing(40.0, -75.0, lat, lon), 0.0) <= 35.0 + 1e-6


def test_cone_polygon_wraps_across_north() -> None:
    cone = Cone(apex=(40.0, -75.0), bearing_deg=350.0, spread_deg=40.0, length_m=100.0)
    ring = cone_polygon(cone, arc_steps=4)
    bearings = [initial_bearing(40.0, -75.0, lat, lon) for lat, lon in ring[:5]]
    assert bearings[0] == pytest.approx(330.0, abs=1e-4)
    assert bearings[-1] == pytest.approx(10.0, abs=1e-4)


def test_cone_polygon_with_back_buffer_wraps_behind_apex() -> None:
    cone = Cone(apex=(40.0, -75.0), bearing_deg=90.0, spread_deg=70.0, length_m=120.0, back_buffer_m=15.0)
    ring = cone_polygon(cone, arc_steps=8)
    back = ring[9:-1]

    assert len(back) == 5
    assert ring[0] == ring[-1]
    for lat, lon in back:
        assert haversine_m(40.0, -75.0, lat, lon) == pytest.approx(15.0, rel=1e-6)
    # The middle of the back arc points straight behind the camera.
    mid = back[2]
    assert initial_bearing(40.0, -75.0, mid[0], mid[1]) == pytest.approx(270.0, abs=1e-4)


def test_zone_polygon_for_circle() -> None:
    zone = make_zone(OMNI, 100.0, ZoneKind.PENALTY, directional=True, fov_degrees=70.0, back_buffer_m=15.0)
    assert zone is not None
    ring = zone_polygon(zone)
    assert len(ring) == 17
    assert ring[0] == ring[-1]
