from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from camera_router.metrics_store import MetricsStore, metrics_snapshot, record_request, reset_metrics


def test_store_aggregates_per_endpoint() -> None:
    store = MetricsStore()
    store.record("route", duration_ms=10.0, strategy="block")
    store.record("route", duration_ms=30.0, strategy="penalty")
    store.record("route", duration_ms=5.0, error=True, reason_code="no_route_found")
    store.record("route_custom", duration_ms=-4.0)

    snap = store.snapshot()
    assert snap["total_requests"] == 4
    assert snap["total_errors"] == 1
    assert snap["endpoint_count"] == 2

    route = snap["endpoints"]["route"]
    assert route["request_count"] == 3
    assert route["error_count"] == 1
    assert route["total_duration_ms"] == 45.0
    assert route["avg_duration_ms"] == 15.0
    assert route["max_duration_ms"] == 30.0
    # negative durations are clamped
    assert snap["endpoints"]["route_custom"]["total_duration_ms"] == 0.0

    assert snap["strategies"] == {"block": 1, "penalty": 1}
    assert snap["error_reasons"] == {"no_route_found": 1}


def test_blank_endpoint_name_is_bucketed() -> None:
    store = MetricsStore()
    store.record("   ", duration_ms=1.0)
    assert list(store.snapshot()["endpoints"]) == ["unknown"]


def test_store_is_safe_under_concurrent_updates() -> None:
    store = MetricsStore()
    with ThreadPoolExecutor(max_workers=8) as pool:
        for _ in range(400):
            pool.submit(store.record, "route", duration_ms=1.0, strategy="waypoints")
    snap = store.snapshot()
    assert snap["endpoints"]["route"]["request_count"] == 400
    assert snap["strategies"] == {"waypoints": 400}


def test_module_level_helpers_share_one_store() -> None:
    reset_metrics()
    record_request("route", duration_ms=2.5, strategy="baseline")
    snap = metrics_snapshot()
    assert snap["total_requests"] == 1
    assert snap["strategies"] == {"baseline": 1}

    reset_metrics()
    snap = metrics_snapshot()
    assert snap["total_requests"] == 0
    assert snap["endpoints"] == {}
    assert snap["strategies"] == {}
