from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

Costing = Literal["auto", "bicycle", "pedestrian"]
ResponseFormat = Literal["deflock", "full"]


class LatLng(BaseModel):
    """WGS84 coordinate; accepts `lat`/`lon` or `latitude`/`longitude`."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lon: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lon", "longitude"))

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)


class Waypoint(LatLng):
    name: str | None = None


class AvoidanceConfig(BaseModel):
    """Per-request avoidance policy. Immutable once validated.

    Zone radii derive from the detection radius so that a route outside the
    block zone is also outside the detection radius:
    detection <= block (= detection * block multiplier) <= penalty.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    camera_detection_radius_m: float = Field(
        default=75.0,
        ge=1.0,
        le=2_000.0,
        validation_alias=AliasChoices("camera_detection_radius_m", "cameraDistanceMeters"),
    )
    block_radius_multiplier: float = Field(
        default=1.6,
        ge=1.0,
        le=10.0,
        validation_alias=AliasChoices("block_radius_multiplier", "blockRadiusMultiplier"),
    )
    penalty_radius_multiplier: float = Field(
        default=2.5,
        ge=1.0,
        le=20.0,
        validation_alias=AliasChoices("penalty_radius_multiplier", "penaltyRadiusMultiplier"),
    )
    max_detour_percent: float = Field(
        default=100.0,
        ge=0.0,
        le=1_000.0,
        validation_alias=AliasChoices("max_detour_percent", "maxDetourPercent"),
    )
    use_directional_zones: bool = Field(
        default=True,
        validation_alias=AliasChoices("use_directional_zones", "useDirectionalZones"),
    )
    fov_degrees: float = Field(
        default=70.0,
        gt=0.0,
        le=360.0,
        validation_alias=AliasChoices("fov_degrees", "cameraFovDegrees"),
    )
    back_buffer_m: float = Field(
        default=15.0,
        ge=0.0,
        le=500.0,
        validation_alias=AliasChoices("back_buffer_m", "backBufferMeters"),
    )
    max_iterations: int = Field(
        default=15,
        ge=0,
        le=50,
        validation_alias=AliasChoices("max_iterations", "maxIterations"),
    )
    use_iterative_waypoints: bool = Field(
        default=False,
        validation_alias=AliasChoices("use_iterative_waypoints", "useIterativeWaypoints"),
    )
    # Waypoint insertion also runs when this few cameras remain, with a smaller budget.
    auto_waypoint_threshold: int = Field(default=3, ge=0, le=50)
    auto_mode_iterations: int = Field(default=5, ge=0, le=50)
    bbox_buffer_degrees: float = Field(
        default=0.5,
        ge=0.0,
        le=5.0,
        validation_alias=AliasChoices("bbox_buffer_degrees", "bboxBufferDegrees"),
    )
    cone_arc_steps: int = Field(default=8, ge=1, le=64)
    costing: Costing = "auto"

    @model_validator(mode="after")
    def _radius_ordering(self) -> "AvoidanceConfig":
        if self.penalty_radius_multiplier < self.block_radius_multiplier:
            raise ValueError("penalty_radius_multiplier must be >= block_radius_multiplier")
        return self

    @property
    def block_radius_m(self) -> float:
        return self.camera_detection_radius_m * self.block_radius_multiplier

    @property
    def penalty_radius_m(self) -> float:
        return self.camera_detection_radius_m * self.penalty_radius_multiplier

    @property
    def max_detour_factor(self) -> float:
        return 1.0 + self.max_detour_percent / 100.0

    def max_detour_m(self, baseline_distance_m: float) -> float:
        return baseline_distance_m * self.max_detour_factor

    def effective_iterations(self, remaining_cameras: int) -> int:
        """Waypoint-insertion budget for a route with `remaining_cameras` still detected."""
        if remaining_cameras <= 0:
            return 0
        if self.use_iterative_waypoints:
            return self.max_iterations
        if remaining_cameras <= self.auto_waypoint_threshold:
            return min(self.max_iterations, self.auto_mode_iterations)
        return 0


def _avoidance_keys() -> set[str]:
    keys: set[str] = set()
    for name, info in AvoidanceConfig.model_fields.items():
        keys.add(name)
        alias = info.validation_alias
        if isinstance(alias, AliasChoices):
            keys.update(str(choice) for choice in alias.choices)
    return keys


_AVOIDANCE_KEYS = _avoidance_keys()


class RouteRequestBody(BaseModel):
    """Inbound route request.

    Avoidance overrides may be nested under `avoidance` or sent flat on the
    body (`maxDetourPercent`, `cameraDistanceMeters`, ...).
    """

    origin: LatLng
    destination: LatLng
    waypoints: list[Waypoint] = Field(default_factory=list, max_length=25)
    format: ResponseFormat = "deflock"
    avoidance: AvoidanceConfig = Field(default_factory=AvoidanceConfig)

    @model_validator(mode="before")
    @classmethod
    def collect_flat_overrides(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        flat = {key: data.pop(key) for key in list(data) if key in _AVOIDANCE_KEYS}
        if flat:
            nested = data.get("avoidance")
            merged: dict[str, Any] = dict(nested) if isinstance(nested, dict) else {}
            for key, item in flat.items():
                merged.setdefault(key, item)
            data["avoidance"] = merged
        return data


class CustomRouteRequestBody(RouteRequestBody):
    @field_validator("waypoints")
    @classmethod
    def require_waypoints(cls, v: list[Waypoint]) -> list[Waypoint]:
        if not v:
            raise ValueError("custom routes need at least one waypoint")
        return v


class CameraOut(BaseModel):
    id: int | str
    lat: float
    lon: float
    facing_bearing: float | None = None
    operator: str | None = None
    brand: str | None = None


class CameraOnRouteOut(BaseModel):
    camera: CameraOut
    distance_from_route_m: float
    nearest_route_point: tuple[float, float]
    is_facing_route: bool


class ManeuverOut(BaseModel):
    instruction: str
    street_name: str | None = None
    distance_m: float
    duration_s: float
    begin_shape_index: int
    end_shape_index: int


class RouteOut(BaseModel):
    geometry: list[tuple[float, float]]  # [lat, lon]
    encoded_polyline: str
    distance_m: float
    duration_s: float
    strategy: str
    costing: Costing
    waypoints: list[tuple[float, float]] = Field(default_factory=list)
    maneuvers: list[ManeuverOut] = Field(default_factory=list)


class RouteScoreOut(BaseModel):
    distance_m: float
    duration_s: float
    camera_count: int
    total_camera_penalty: float
    composite_score: float
    exposure_rating: Literal["low", "medium", "high", "extreme"]


class ZoneStatsOut(BaseModel):
    directional_zones: int = 0
    circular_zones: int = 0
    dropped_zones: int = 0


class RouteVariantOut(BaseModel):
    route: RouteOut
    cameras_on_route: list[CameraOnRouteOut]
    score: RouteScoreOut
    strategy: str
    attempts: int
    zone_stats: ZoneStatsOut | None = None


class ImprovementOut(BaseModel):
    cameras_avoided: int
    camera_reduction_percent: float
    distance_increase_m: float
    distance_increase_percent: float
    duration_increase_s: float
    duration_increase_percent: float
    penalty_reduction: float


class CameraRoutingResultOut(BaseModel):
    normal_route: RouteVariantOut
    avoidance_route: RouteVariantOut
    cameras_on_normal_route: list[CameraOnRouteOut]
    cameras_on_avoidance_route: list[CameraOnRouteOut]
    improvement: ImprovementOut
    transitions: list[str] = Field(default_factory=list)


class FullRouteResponse(BaseModel):
    ok: Literal[True] = True
    result: CameraRoutingResultOut


class DeflockRoute(BaseModel):
    coordinates: list[tuple[float, float]]  # [lon, lat]
    distance: float
    duration: float


class DeflockResult(BaseModel):
    route: DeflockRoute
    normal_route: DeflockRoute
    cameras_avoided: int
    camera_reduction_percent: float
    normal_camera_count: int
    avoidance_camera_count: int
    distance_increase_percent: float
    strategy: str


class DeflockRouteResponse(BaseModel):
    ok: Literal[True] = True
    result: DeflockResult


class CustomRouteResult(BaseModel):
    route: RouteOut
    cameras_on_route: list[CameraOnRouteOut]


class CustomRouteResponse(BaseModel):
    ok: Literal[True] = True
    result: CustomRouteResult


class ErrorResponse(BaseModel):
    ok: Literal[False] = False
    error: str
    detail: str | None = None
    reason_code: str | None = None


class HealthResponse(BaseModel):
    ok: bool
    status: str
    uptime_s: int
    cameras: int
    grid_cells: int
    routing_engine: str
    version: str
