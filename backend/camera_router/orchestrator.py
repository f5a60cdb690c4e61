from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

from .cameras import Camera
from .detection import CameraOnRoute, find_cameras_on_route
from .errors import CameraRoutingError, DetourExceeded, NoRouteFound, RoutingEngineUnavailable
from .geo import LatLon
from .logging_utils import log_event
from .models import AvoidanceConfig
from .routing_engine import RouteAdapter, RouteMode, RouteRequest, RouteResult
from .waypoints import ClusterKey, WaypointProposal, WaypointStrategy, insert_waypoint, perpendicular_offset
from .zones import ZoneSet, ZoneStats


class SearchState(str, Enum):
    BASELINE = "baseline"
    BLOCK_ATTEMPT = "block_attempt"
    PENALTY_ATTEMPT = "penalty_attempt"
    WAYPOINT_INSERTION = "waypoint_insertion"
    FALLBACK = "fallback"
    DONE = "done"


STRATEGY_BASELINE = "baseline"
STRATEGY_BLOCK = "block"
STRATEGY_PENALTY = "penalty"
STRATEGY_WAYPOINTS = "waypoints"
STRATEGY_FALLBACK_BASELINE = "fallback_baseline"


@dataclass(frozen=True)
class Candidate:
    route: RouteResult
    cameras: tuple[CameraOnRoute, ...]

    @property
    def camera_count(self) -> int:
        return len(self.cameras)

    @property
    def distance_m(self) -> float:
        return self.route.distance_m


@dataclass(frozen=True)
class StepOutcome:
    """What executing one state produced: a candidate, an engine error, or nothing."""

    candidate: Candidate | None = None
    error: CameraRoutingError | None = None
    proposal: WaypointProposal | None = None


@dataclass(frozen=True)
class SearchContext:
    state: SearchState
    config: AvoidanceConfig
    user_waypoints: tuple[LatLon, ...] = ()
    baseline: Candidate | None = None
    best: Candidate | None = None
    result: Candidate | None = None
    strategy: str | None = None
    failure: CameraRoutingError | None = None
    iteration: int = 0
    iteration_budget: int = 0
    attempts: int = 0
    tried_clusters: frozenset[ClusterKey] = frozenset()
    rejections: tuple[str, ...] = ()
    transitions: tuple[str, ...] = ()

    @property
    def reference(self) -> Candidate | None:
        """Route the next waypoint is planned against: best candidate so far, else baseline."""
        return self.best if self.best is not None else self.baseline

    @property
    def max_detour_m(self) -> float:
        assert self.baseline is not None
        return self.config.max_detour_m(self.baseline.distance_m)

    @property
    def waypoints(self) -> tuple[LatLon, ...]:
        if self.best is not None:
            return self.best.route.waypoints
        return self.user_waypoints


@dataclass(frozen=True)
class SearchResult:
    baseline: Candidate
    avoidance: Candidate
    strategy: str
    attempts: int
    transitions: tuple[str, ...]
    zone_stats: ZoneStats = field(default_factory=ZoneStats)
    rejections: tuple[str, ...] = ()

    @property
    def fell_back(self) -> bool:
        return self.strategy == STRATEGY_FALLBACK_BASELINE


def _preferred(new: Candidate, current: Candidate | None) -> bool:
    """Fewer cameras wins; equal counts go to the shorter route."""
    if current is None:
        return True
    if new.camera_count != current.camera_count:
        return new.camera_count < current.camera_count
    return new.distance_m < current.distance_m


def _move(ctx: SearchContext, state: SearchState, **changes: object) -> SearchContext:
    label = f"{ctx.state.value}->{state.value}"
    return replace(ctx, state=state, transitions=(*ctx.transitions, label), **changes)


def _finish(ctx: SearchContext, result: Candidate, strategy: str) -> SearchContext:
    return _move(ctx, SearchState.DONE, result=result, strategy=strategy)


def _within_budget(ctx: SearchContext, candidate: Candidate) -> bool:
    return candidate.distance_m <= ctx.max_detour_m


def _detour_note(ctx: SearchContext, candidate: Candidate) -> str:
    err = DetourExceeded(
        message=(
            f"{candidate.route.strategy} route {candidate.distance_m:.0f} m exceeds "
            f"detour budget {ctx.max_detour_m:.0f} m"
        )
    )
    return f"{err.reason_code}: {err}"


def _after_penalty(ctx: SearchContext, **changes: object) -> SearchContext:
    ctx = replace(ctx, **changes)
    reference = ctx.reference
    remaining = reference.camera_count if reference is not None else 0
    budget = ctx.config.effective_iterations(remaining)
    if budget > 0:
        return _move(ctx, SearchState.WAYPOINT_INSERTION, iteration=0, iteration_budget=budget)
    return _move(ctx, SearchState.FALLBACK)


def transition(ctx: SearchContext, outcome: StepOutcome) -> SearchContext:
    """Advance the search by one step. Pure: no I/O, no mutation of `ctx`."""
    state = ctx.state
    cand = outcome.candidate

    if state is SearchState.BASELINE:
        if cand is None:
            failure = outcome.error or NoRouteFound(message="baseline route unavailable")
            return _move(ctx, SearchState.DONE, failure=failure)
        ctx = replace(ctx, baseline=cand, attempts=ctx.attempts + 1)
        if cand.camera_count == 0:
            return _finish(ctx, cand, STRATEGY_BASELINE)
        return _move(ctx, SearchState.BLOCK_ATTEMPT)

    if state is SearchState.BLOCK_ATTEMPT:
        ctx = replace(ctx, attempts=ctx.attempts + 1)
        if cand is None:
            note = f"block: {outcome.error.reason_code}" if outcome.error else "block: no route"
            return _move(ctx, SearchState.PENALTY_ATTEMPT, rejections=(*ctx.rejections, note))
        if not _within_budget(ctx, cand):
            return _move(
                ctx, SearchState.PENALTY_ATTEMPT, rejections=(*ctx.rejections, _detour_note(ctx, cand))
            )
        if cand.camera_count == 0:
            return _finish(ctx, cand, STRATEGY_BLOCK)
        best = cand if cand.camera_count < ctx.baseline.camera_count else ctx.best
        return _move(ctx, SearchState.PENALTY_ATTEMPT, best=best)

    if state is SearchState.PENALTY_ATTEMPT:
        ctx = replace(ctx, attempts=ctx.attempts + 1)
        if cand is None:
            note = f"penalty: {outcome.error.reason_code}" if outcome.error else "penalty: no route"
            return _move(ctx, SearchState.FALLBACK, rejections=(*ctx.rejections, note))
        if not _within_budget(ctx, cand):
            return _after_penalty(ctx, rejections=(*ctx.rejections, _detour_note(ctx, cand)))
        if cand.camera_count == 0:
            return _finish(ctx, cand, STRATEGY_PENALTY)
        best = ctx.best
        if cand.camera_count < ctx.baseline.camera_count and _preferred(cand, best):
            best = cand
        return _after_penalty(ctx, best=best)

    if state is SearchState.WAYPOINT_INSERTION:
        if outcome.proposal is None:
            # Nothing left to try.
            return _move(ctx, SearchState.FALLBACK)
        ctx = replace(
            ctx,
            attempts=ctx.attempts + 1,
            iteration=ctx.iteration + 1,
            tried_clusters=ctx.tried_clusters | {outcome.proposal.cluster_key},
        )
        if cand is None:
            note = f"waypoint {ctx.iteration}: {outcome.error.reason_code}" if outcome.error else "waypoint: no route"
            ctx = replace(ctx, rejections=(*ctx.rejections, note))
        elif not _within_budget(ctx, cand):
            ctx = replace(ctx, rejections=(*ctx.rejections, _detour_note(ctx, cand)))
        else:
            reference = ctx.reference
            if reference is not None and cand.camera_count < reference.camera_count:
                if cand.camera_count == 0:
                    return _finish(replace(ctx, best=cand), cand, STRATEGY_WAYPOINTS)
                # A new best route gets a fresh look at every cluster on it.
                ctx = replace(ctx, best=cand, tried_clusters=frozenset())
        if ctx.iteration < ctx.iteration_budget:
            return _move(ctx, SearchState.WAYPOINT_INSERTION)
        return _move(ctx, SearchState.FALLBACK)

    if state is SearchState.FALLBACK:
        assert ctx.baseline is not None
        if ctx.best is not None and ctx.best.camera_count < ctx.baseline.camera_count:
            return _finish(ctx, ctx.best, ctx.best.route.strategy)
        return _finish(ctx, ctx.baseline, STRATEGY_FALLBACK_BASELINE)

    return ctx


class RouteSearch:
    """Drives the search state machine against a routing adapter.

    Each state's engine call happens here; all decisions happen in
    `transition`. Engine calls are sequential since every iteration plans
    against the previous route.
    """

    def __init__(
        self,
        adapter: RouteAdapter,
        *,
        cameras: Sequence[Camera],
        zones: ZoneSet,
        config: AvoidanceConfig,
        waypoint_strategy: WaypointStrategy = perpendicular_offset,
    ) -> None:
        self.adapter = adapter
        self.cameras = tuple(cameras)
        self.zones = zones
        self.config = config
        self.waypoint_strategy = waypoint_strategy

    def detect(self, route: RouteResult) -> tuple[CameraOnRoute, ...]:
        return tuple(
            find_cameras_on_route(
                self.cameras,
                route.geometry,
                self.config.camera_detection_radius_m,
                self.config.use_directional_zones,
                fov_degrees=self.config.fov_degrees,
                back_buffer_m=self.config.back_buffer_m,
            )
        )

    def _request(self, base: RouteRequest, waypoints: tuple[LatLon, ...], *, with_zones: bool) -> RouteRequest:
        return RouteRequest(
            origin=base.origin,
            destination=base.destination,
            waypoints=waypoints,
            costing=self.config.costing,
            zones=self.zones.zones if with_zones else (),
            arc_steps=self.config.cone_arc_steps,
        )

    async def _attempt(self, request: RouteRequest, mode: RouteMode, strategy: str) -> StepOutcome:
        try:
            route = await self.adapter.route(request, mode)
        except (RoutingEngineUnavailable, NoRouteFound) as e:
            return StepOutcome(error=e)
        route = route.relabel(strategy)
        return StepOutcome(candidate=Candidate(route=route, cameras=self.detect(route)))

    async def _execute(self, ctx: SearchContext, base: RouteRequest) -> StepOutcome:
        state = ctx.state
        if state is SearchState.BASELINE:
            return await self._attempt(
                self._request(base, ctx.user_waypoints, with_zones=False), RouteMode.PLAIN, STRATEGY_BASELINE
            )
        if state is SearchState.BLOCK_ATTEMPT:
            return await self._attempt(
                self._request(base, ctx.user_waypoints, with_zones=True), RouteMode.BLOCK, STRATEGY_BLOCK
            )
        if state is SearchState.PENALTY_ATTEMPT:
            return await self._attempt(
                self._request(base, ctx.user_waypoints, with_zones=True), RouteMode.PENALTY, STRATEGY_PENALTY
            )
        if state is SearchState.WAYPOINT_INSERTION:
            reference = ctx.reference
            assert reference is not None
            geometry = reference.route.geometry
            proposal = self.waypoint_strategy(
                geometry, reference.cameras, self.cameras, self.config, ctx.tried_clusters
            )
            if proposal is None:
                return StepOutcome()
            waypoints = insert_waypoint(ctx.waypoints, proposal.point, geometry, proposal.route_index)
            outcome = await self._attempt(
                self._request(base, waypoints, with_zones=True), RouteMode.PENALTY, STRATEGY_WAYPOINTS
            )
            return replace(outcome, proposal=proposal)
        return StepOutcome()

    async def run(self, request: RouteRequest) -> SearchResult:
        """Run the search to completion.

        Raises the baseline's engine error when no baseline route exists.
        Cancellation of the calling task propagates out of the in-flight
        engine call and stops the search.
        """
        ctx = SearchContext(
            state=SearchState.BASELINE,
            config=self.config,
            user_waypoints=tuple(request.waypoints),
        )
        while ctx.state is not SearchState.DONE:
            outcome = await self._execute(ctx, request)
            previous = ctx.state
            ctx = transition(ctx, outcome)
            log_event(
                "search_transition",
                from_state=previous.value,
                to_state=ctx.state.value,
                iteration=ctx.iteration,
                attempts=ctx.attempts,
                camera_count=outcome.candidate.camera_count if outcome.candidate else None,
                error=outcome.error.reason_code if outcome.error else None,
            )

        if ctx.failure is not None:
            raise ctx.failure
        assert ctx.baseline is not None and ctx.result is not None and ctx.strategy is not None
        return SearchResult(
            baseline=ctx.baseline,
            avoidance=ctx.result,
            strategy=ctx.strategy,
            attempts=ctx.attempts,
            transitions=ctx.transitions,
            zone_stats=self.zones.stats,
            rejections=ctx.rejections,
        )
