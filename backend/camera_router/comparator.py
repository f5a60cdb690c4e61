from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from .detection import CameraOnRoute
from .routing_engine import RouteResult

CAMERA_PENALTY_M = 800.0

ExposureRating = Literal["low", "medium", "high", "extreme"]


@dataclass(frozen=True)
class RouteScore:
    distance_m: float
    duration_s: float
    camera_count: int
    total_camera_penalty: float
    composite_score: float
    exposure_rating: ExposureRating


@dataclass(frozen=True)
class Improvement:
    cameras_avoided: int
    camera_reduction_percent: float
    distance_increase_m: float
    distance_increase_percent: float
    duration_increase_s: float
    duration_increase_percent: float
    penalty_reduction: float


def exposure_rating(camera_count: int) -> ExposureRating:
    if camera_count <= 0:
        return "low"
    if camera_count <= 2:
        return "medium"
    if camera_count <= 5:
        return "high"
    return "extreme"


def camera_penalty(distance_from_route_m: float, detection_radius_m: float) -> float:
    """Linear proximity penalty: full weight on the route, zero at the detection edge."""
    if detection_radius_m <= 0:
        return 0.0
    closeness = 1.0 - min(max(distance_from_route_m, 0.0), detection_radius_m) / detection_radius_m
    return CAMERA_PENALTY_M * closeness


def score_route(
    route: RouteResult, cameras_on_route: Sequence[CameraOnRoute], detection_radius_m: float
) -> RouteScore:
    penalty = sum(camera_penalty(c.distance_from_route_m, detection_radius_m) for c in cameras_on_route)
    return RouteScore(
        distance_m=route.distance_m,
        duration_s=route.duration_s,
        camera_count=len(cameras_on_route),
        total_camera_penalty=penalty,
        composite_score=route.distance_m + penalty,
        exposure_rating=exposure_rating(len(cameras_on_route)),
    )


def _percent(delta: float, base: float) -> float:
    if base <= 0:
        return 0.0
    return delta / base * 100.0


def compare(baseline: RouteScore, avoidance: RouteScore) -> Improvement:
    """Project two scored routes onto the improvement summary. Percentages are of the baseline."""
    avoided = baseline.camera_count - avoidance.camera_count
    distance_delta = avoidance.distance_m - baseline.distance_m
    duration_delta = avoidance.duration_s - baseline.duration_s
    return Improvement(
        cameras_avoided=avoided,
        camera_reduction_percent=_percent(avoided, baseline.camera_count),
        distance_increase_m=distance_delta,
        distance_increase_percent=_percent(distance_delta, baseline.distance_m),
        duration_increase_s=duration_delta,
        duration_increase_percent=_percent(duration_delta, baseline.duration_s),
        penalty_reduction=baseline.total_camera_penalty - avoidance.total_camera_penalty,
    )
