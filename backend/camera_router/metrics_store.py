from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from threading import Lock


@dataclass
class EndpointStats:
    request_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0

    def as_dict(self) -> dict[str, float | int]:
        avg = self.total_duration_ms / self.request_count if self.request_count else 0.0
        return {
            "request_count": self.request_count,
            "error_count": self.error_count,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "avg_duration_ms": round(avg, 3),
            "max_duration_ms": round(self.max_duration_ms, 3),
        }


class MetricsStore:
    """In-process request counters, safe to update from concurrent handlers."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._created_at = datetime.now(UTC).isoformat()
        self._endpoints: dict[str, EndpointStats] = {}
        self._strategies: Counter[str] = Counter()
        self._error_reasons: Counter[str] = Counter()

    def record(
        self,
        endpoint: str,
        *,
        duration_ms: float,
        error: bool = False,
        strategy: str | None = None,
        reason_code: str | None = None,
    ) -> None:
        name = endpoint.strip() or "unknown"
        d_ms = max(float(duration_ms), 0.0)

        with self._lock:
            stats = self._endpoints.setdefault(name, EndpointStats())
            stats.request_count += 1
            if error:
                stats.error_count += 1
            stats.total_duration_ms += d_ms
            stats.max_duration_ms = max(stats.max_duration_ms, d_ms)
            if strategy:
                self._strategies[strategy] += 1
            if reason_code:
                self._error_reasons[reason_code] += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            endpoints = {name: self._endpoints[name].as_dict() for name in sorted(self._endpoints)}
            return {
                "created_at": self._created_at,
                "total_requests": sum(s.request_count for s in self._endpoints.values()),
                "total_errors": sum(s.error_count for s in self._endpoints.values()),
                "endpoint_count": len(endpoints),
                "endpoints": endpoints,
                "strategies": dict(sorted(self._strategies.items())),
                "error_reasons": dict(sorted(self._error_reasons.items())),
            }

    def reset(self) -> None:
        with self._lock:
            self._created_at = datetime.now(UTC).isoformat()
            self._endpoints.clear()
            self._strategies.clear()
            self._error_reasons.clear()


METRICS = MetricsStore()


def record_request(
    endpoint: str,
    *,
    duration_ms: float,
    error: bool = False,
    strategy: str | None = None,
    reason_code: str | None = None,
) -> None:
    METRICS.record(endpoint, duration_ms=duration_ms, error=error, strategy=strategy, reason_code=reason_code)


def metrics_snapshot() -> dict[str, object]:
    return METRICS.snapshot()


def reset_metrics() -> None:
    METRICS.reset()
