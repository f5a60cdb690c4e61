from __future__ import annotations

import argparse
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Sequence

import httpx


def _utc_now_compact() -> str:
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")


def parse_latlon(text: str) -> dict[str, float]:
    """Parse `"lat,lon"` into a request coordinate."""
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"expected 'lat,lon', got {text!r}")
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"non-numeric coordinate {text!r}") from e
    return {"lat": lat, "lon": lon}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Request a camera-avoiding route from a running backend and save the result."
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--input-json", default=None)
    group.add_argument("--origin", type=parse_latlon, default=None)
    parser.add_argument("--destination", type=parse_latlon, default=None)
    parser.add_argument("--waypoint", type=parse_latlon, action="append", default=[])
    parser.add_argument("--backend-url", default="http://localhost:8000")
    parser.add_argument("--format", choices=("deflock", "full"), default="full")
    parser.add_argument("--max-detour-percent", type=float, default=None)
    parser.add_argument("--camera-distance-m", type=float, default=None)
    parser.add_argument("--iterative-waypoints", action="store_true")
    parser.add_argument("--custom", action="store_true", help="route through the given waypoints")
    parser.add_argument("--save-dir", default="out/headless")
    parser.add_argument("--output", default=None)
    parser.add_argument("--timeout-s", type=float, default=150.0)
    return parser


def load_payload_from_json(path: str) -> dict[str, Any]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("JSON payload must be an object")
    for key in ("origin", "destination"):
        if key not in payload:
            raise ValueError(f"JSON payload must contain '{key}'")
    return payload


def build_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.input_json:
        return load_payload_from_json(args.input_json)
    if args.destination is None:
        raise ValueError("--destination is required with --origin")

    avoidance: dict[str, Any] = {}
    if args.max_detour_percent is not None:
        avoidance["maxDetourPercent"] = args.max_detour_percent
    if args.camera_distance_m is not None:
        avoidance["cameraDistanceMeters"] = args.camera_distance_m
    if args.iterative_waypoints:
        avoidance["useIterativeWaypoints"] = True

    payload: dict[str, Any] = {
        "origin": args.origin,
        "destination": args.destination,
        "waypoints": list(args.waypoint),
        "format": args.format,
    }
    if avoidance:
        payload["avoidance"] = avoidance
    return payload


def execute_headless_route(
    payload: dict[str, Any],
    *,
    backend_url: str,
    save_dir: str,
    custom: bool = False,
    output_path: str | None = None,
    timeout_s: float = 150.0,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    base = backend_url.rstrip("/")
    endpoint = "/api/v1/route/custom" if custom else "/api/v1/route"
    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout_s)

    try:
        resp = client.post(f"{base}{endpoint}", json=payload)
        data = resp.json()
        ok = resp.status_code == 200 and bool(data.get("ok"))

        out_file = Path(output_path) if output_path else Path(save_dir) / f"route_{_utc_now_compact()}.json"
        out_file.parent.mkdir(parents=True, exist_ok=True)
        out_file.write_text(json.dumps(data, indent=2), encoding="utf-8")

        summary: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "endpoint": endpoint,
            "status_code": resp.status_code,
            "ok": ok,
            "output_file": str(out_file),
        }
        if not ok:
            summary["error"] = data.get("error")
            summary["reason_code"] = data.get("reason_code")
            return summary

        result = data.get("result", {})
        if "strategy" in result:
            summary["strategy"] = result["strategy"]
            summary["cameras_avoided"] = result.get("cameras_avoided")
        elif "avoidance_route" in result:
            summary["strategy"] = result["avoidance_route"]["strategy"]
            summary["cameras_avoided"] = result["improvement"]["cameras_avoided"]
        else:
            summary["cameras_on_route"] = len(result.get("cameras_on_route", []))
        return summary
    finally:
        if own_client and client is not None:
            client.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    payload = build_payload(args)
    summary = execute_headless_route(
        payload,
        backend_url=args.backend_url,
        save_dir=args.save_dir,
        custom=args.custom,
        output_path=args.output,
        timeout_s=args.timeout_s,
    )
    print(json.dumps(summary, indent=2))
    return 0 if summary["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
