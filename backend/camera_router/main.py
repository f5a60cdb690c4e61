from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable
from contextlib import asynccontextmanager
from typing import Annotated, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .camera_snapshot import CameraSnapshot, CameraSnapshotHolder, build_snapshot, load_snapshot
from .cameras import Camera
from .comparator import Improvement, RouteScore
from .detection import CameraOnRoute
from .errors import (
    CameraRoutingError,
    ClientDisconnected,
    InvalidInput,
    NoRouteFound,
    RouteComputeTimeout,
    RoutingEngineUnavailable,
    normalize_reason_code,
)
from .logging_utils import bind_request_id, log_event, reset_request_id
from .metrics_store import metrics_snapshot, record_request
from .models import (
    CameraOnRouteOut,
    CameraOut,
    CameraRoutingResultOut,
    CustomRouteRequestBody,
    CustomRouteResponse,
    CustomRouteResult,
    DeflockResult,
    DeflockRoute,
    DeflockRouteResponse,
    ErrorResponse,
    FullRouteResponse,
    HealthResponse,
    ImprovementOut,
    ManeuverOut,
    RouteOut,
    RouteRequestBody,
    RouteScoreOut,
    RouteVariantOut,
    ZoneStatsOut,
)
from .orchestrator import Candidate
from .polyline import encode_polyline
from .routing_engine import RoutingEngineClient, RouteResult
from .service import CameraRouteReport, compute_camera_route, compute_custom_route
from .settings import settings
from .zones import ZoneStats

APP_VERSION = "0.1.0"
DISCONNECT_POLL_S = 0.25

T = TypeVar("T")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        snapshot = load_snapshot(settings.camera_data_path, cell_degrees=settings.camera_grid_cell_degrees)
    except CameraRoutingError as e:
        # Serve routes without camera data rather than refusing to start.
        log_event("camera_snapshot_unavailable", level=logging.WARNING, error=str(e))
        snapshot = build_snapshot((), source="empty", cell_degrees=settings.camera_grid_cell_degrees)

    app.state.started_at = time.monotonic()
    app.state.snapshots = CameraSnapshotHolder(snapshot)
    app.state.engine = RoutingEngineClient(
        base_url=settings.routing_engine_base_url,
        profile=settings.routing_engine_profile,
        timeout_s=settings.routing_engine_timeout_s,
        connect_timeout_s=settings.routing_engine_connect_timeout_s,
        max_retries=settings.routing_engine_max_retries,
        backoff_base_s=settings.routing_engine_backoff_base_s,
        backoff_max_s=settings.routing_engine_backoff_max_s,
    )
    yield
    await app.state.engine.aclose()


app = FastAPI(title="Camera-Aware Router", version=APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list or ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def routing_engine_client(request: Request) -> RoutingEngineClient:
    engine: RoutingEngineClient | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="routing engine client not initialised")
    return engine


def camera_snapshot(request: Request) -> CameraSnapshot:
    holder: CameraSnapshotHolder | None = getattr(request.app.state, "snapshots", None)
    if holder is None:
        raise HTTPException(status_code=503, detail="camera data not initialised")
    return holder.current()


EngineDep = Annotated[RoutingEngineClient, Depends(routing_engine_client)]
SnapshotDep = Annotated[CameraSnapshot, Depends(camera_snapshot)]


def _error_status(err: CameraRoutingError) -> tuple[int, str]:
    if isinstance(err, InvalidInput):
        return 400, str(err)
    if isinstance(err, (RoutingEngineUnavailable, NoRouteFound)):
        return 502, "Routing service unavailable"
    if isinstance(err, RouteComputeTimeout):
        return 504, "Route computation timed out"
    if isinstance(err, ClientDisconnected):
        return 499, "Client closed request"
    return 500, "Internal error"


def _error_response(status_code: int, error: str, *, detail: str | None = None, reason_code: str | None = None):
    body = ErrorResponse(error=error, detail=detail, reason_code=reason_code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(CameraRoutingError)
async def camera_routing_error_handler(_: Request, exc: CameraRoutingError) -> JSONResponse:
    status_code, error = _error_status(exc)
    return _error_response(
        status_code,
        error,
        detail=str(exc),
        reason_code=normalize_reason_code(exc.reason_code, default="internal_error"),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid request")
    return _error_response(
        400,
        f"{loc}: {message}" if loc else str(message),
        detail=f"{len(errors)} validation error(s)",
        reason_code="invalid_input",
    )


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_S)


async def _run_for_client(request: Request, work: Awaitable[T], *, timeout_s: float) -> T:
    """Await `work` unless the client goes away or the time budget runs out.

    Either way the in-flight computation (and its engine call) is cancelled.
    """
    task = asyncio.ensure_future(asyncio.wait_for(work, timeout=timeout_s))
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task.cancelled():
        raise ClientDisconnected()
    try:
        return task.result()
    except asyncio.TimeoutError as e:
        raise RouteComputeTimeout(
            message=f"route computation exceeded {timeout_s:.0f}s",
            details={"timeout_s": timeout_s},
        ) from e


def _camera_out(camera: Camera) -> CameraOut:
    return CameraOut(
        id=camera.id,
        lat=camera.lat,
        lon=camera.lon,
        facing_bearing=camera.facing_bearing,
        operator=camera.operator,
        brand=camera.brand,
    )


def _cameras_out(cameras: tuple[CameraOnRoute, ...]) -> list[CameraOnRouteOut]:
    return [
        CameraOnRouteOut(
            camera=_camera_out(c.camera),
            distance_from_route_m=round(c.distance_from_route_m, 2),
            nearest_route_point=c.nearest_route_point,
            is_facing_route=c.is_facing_route,
        )
        for c in cameras
    ]


def _route_out(route: RouteResult) -> RouteOut:
    return RouteOut(
        geometry=list(route.geometry),
        encoded_polyline=encode_polyline(route.geometry),
        distance_m=round(route.distance_m, 1),
        duration_s=round(route.duration_s, 1),
        strategy=route.strategy,
        costing=route.costing,
        waypoints=list(route.waypoints),
        maneuvers=[
            ManeuverOut(
                instruction=m.instruction,
                street_name=m.street_name,
                distance_m=m.distance_m,
                duration_s=m.duration_s,
                begin_shape_index=m.begin_shape_index,
                end_shape_index=m.end_shape_index,
            )
            for m in route.maneuvers
        ],
    )


def _score_out(score: RouteScore) -> RouteScoreOut:
    return RouteScoreOut(
        distance_m=round(score.distance_m, 1),
        duration_s=round(score.duration_s, 1),
        camera_count=score.camera_count,
        total_camera_penalty=round(score.total_camera_penalty, 1),
        composite_score=round(score.composite_score, 1),
        exposure_rating=score.exposure_rating,
    )


def _variant_out(
    candidate: Candidate, score: RouteScore, *, strategy: str, attempts: int, zone_stats: ZoneStats | None
) -> RouteVariantOut:
    return RouteVariantOut(
        route=_route_out(candidate.route),
        cameras_on_route=_cameras_out(candidate.cameras),
        score=_score_out(score),
        strategy=strategy,
        attempts=attempts,
        zone_stats=(
            ZoneStatsOut(
                directional_zones=zone_stats.directional_zones,
                circular_zones=zone_stats.circular_zones,
                dropped_zones=zone_stats.dropped_zones,
            )
            if zone_stats is not None
            else None
        ),
    )


def _improvement_out(improvement: Improvement) -> ImprovementOut:
    return ImprovementOut(
        cameras_avoided=improvement.cameras_avoided,
        camera_reduction_percent=round(improvement.camera_reduction_percent, 1),
        distance_increase_m=round(improvement.distance_increase_m, 1),
        distance_increase_percent=round(improvement.distance_increase_percent, 1),
        duration_increase_s=round(improvement.duration_increase_s, 1),
        duration_increase_percent=round(improvement.duration_increase_percent, 1),
        penalty_reduction=round(improvement.penalty_reduction, 1),
    )


def _full_response(report: CameraRouteReport) -> FullRouteResponse:
    search = report.search
    return FullRouteResponse(
        result=CameraRoutingResultOut(
            normal_route=_variant_out(
                search.baseline, report.normal_score, strategy="baseline", attempts=1, zone_stats=None
            ),
            avoidance_route=_variant_out(
                search.avoidance,
                report.avoidance_score,
                strategy=search.strategy,
                attempts=search.attempts,
                zone_stats=search.zone_stats,
            ),
            cameras_on_normal_route=_cameras_out(search.baseline.cameras),
            cameras_on_avoidance_route=_cameras_out(search.avoidance.cameras),
            improvement=_improvement_out(report.improvement),
            transitions=list(search.transitions),
        )
    )


def _deflock_route(route: RouteResult) -> DeflockRoute:
    return DeflockRoute(
        coordinates=[(lon, lat) for lat, lon in route.geometry],
        distance=round(route.distance_m, 1),
        duration=round(route.duration_s, 1),
    )


def _deflock_response(report: CameraRouteReport) -> DeflockRouteResponse:
    search = report.search
    return DeflockRouteResponse(
        result=DeflockResult(
            route=_deflock_route(search.avoidance.route),
            normal_route=_deflock_route(search.baseline.route),
            cameras_avoided=report.improvement.cameras_avoided,
            camera_reduction_percent=round(report.improvement.camera_reduction_percent, 1),
            normal_camera_count=search.baseline.camera_count,
            avoidance_camera_count=search.avoidance.camera_count,
            distance_increase_percent=round(report.improvement.distance_increase_percent, 1),
            strategy=search.strategy,
        )
    )


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Camera-aware routing backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/api/v1/health", response_model=HealthResponse)
async def health(request: Request, snapshot: SnapshotDep) -> HealthResponse:
    started = getattr(request.app.state, "started_at", time.monotonic())
    return HealthResponse(
        ok=True,
        status="ok" if snapshot.cameras else "degraded",
        uptime_s=int(time.monotonic() - started),
        cameras=len(snapshot.cameras),
        grid_cells=snapshot.grid.cell_count,
        routing_engine=settings.routing_engine_base_url,
        version=APP_VERSION,
    )


@app.get("/api/v1/metrics")
async def metrics() -> dict[str, object]:
    return metrics_snapshot()


@app.post("/api/v1/route", response_model=FullRouteResponse | DeflockRouteResponse)
async def compute_route(
    body: RouteRequestBody, request: Request, engine: EngineDep, snapshot: SnapshotDep
) -> FullRouteResponse | DeflockRouteResponse:
    token = bind_request_id(str(uuid.uuid4()))
    t0 = time.perf_counter()
    try:
        report = await _run_for_client(
            request,
            compute_camera_route(
                engine,
                snapshot,
                origin=body.origin.as_tuple(),
                destination=body.destination.as_tuple(),
                waypoints=[wp.as_tuple() for wp in body.waypoints],
                config=body.avoidance,
                max_route_distance_m=settings.max_route_distance_m,
            ),
            timeout_s=settings.route_compute_timeout_s,
        )
    except CameraRoutingError as e:
        duration_ms = round((time.perf_counter() - t0) * 1000, 2)
        record_request("route", duration_ms=duration_ms, error=True, reason_code=e.reason_code)
        log_event(
            "route_request_failed",
            level=logging.WARNING,
            endpoint="route",
            reason_code=e.reason_code,
            error=str(e),
            duration_ms=duration_ms,
        )
        raise
    else:
        search = report.search
        duration_ms = round((time.perf_counter() - t0) * 1000, 2)
        record_request("route", duration_ms=duration_ms, strategy=search.strategy)
        log_event(
            "route_request",
            origin=body.origin.model_dump(),
            destination=body.destination.model_dump(),
            waypoint_count=len(body.waypoints),
            cameras_considered=report.cameras_considered,
            normal_camera_count=search.baseline.camera_count,
            avoidance_camera_count=search.avoidance.camera_count,
            strategy=search.strategy,
            attempts=search.attempts,
            duration_ms=duration_ms,
        )
    finally:
        reset_request_id(token)

    if body.format == "full":
        return _full_response(report)
    return _deflock_response(report)


@app.post("/api/v1/route/custom", response_model=CustomRouteResponse)
async def compute_custom(
    body: CustomRouteRequestBody, request: Request, engine: EngineDep, snapshot: SnapshotDep
) -> CustomRouteResponse:
    token = bind_request_id(str(uuid.uuid4()))
    t0 = time.perf_counter()
    try:
        report = await _run_for_client(
            request,
            compute_custom_route(
                engine,
                snapshot,
                origin=body.origin.as_tuple(),
                destination=body.destination.as_tuple(),
                waypoints=[wp.as_tuple() for wp in body.waypoints],
                config=body.avoidance,
                max_route_distance_m=settings.max_route_distance_m,
            ),
            timeout_s=settings.route_compute_timeout_s,
        )
    except CameraRoutingError as e:
        duration_ms = round((time.perf_counter() - t0) * 1000, 2)
        record_request("route_custom", duration_ms=duration_ms, error=True, reason_code=e.reason_code)
        log_event(
            "route_request_failed",
            level=logging.WARNING,
            endpoint="route_custom",
            reason_code=e.reason_code,
            error=str(e),
            duration_ms=duration_ms,
        )
        raise
    else:
        record_request(
            "route_custom",
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
            strategy=report.route.strategy,
        )
    finally:
        reset_request_id(token)

    return CustomRouteResponse(
        result=CustomRouteResult(route=_route_out(report.route), cameras_on_route=_cameras_out(report.cameras))
    )
