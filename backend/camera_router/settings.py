from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_routing_engine_base_url() -> str:
    # In docker-compose, GraphHopper is reachable by service name "graphhopper".
    return "http://graphhopper:8989" if running_in_docker() else "http://localhost:8989"


def _default_camera_data_path() -> str:
    return str(Path(__file__).resolve().parents[1] / "data" / "cameras-us.json")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping config out of code for easy extension."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    routing_engine_base_url: str = Field(
        default_factory=_default_routing_engine_base_url,
        alias="ROUTING_ENGINE_BASE_URL",
    )
    routing_engine_profile: str = Field(default="car", alias="ROUTING_ENGINE_PROFILE")
    routing_engine_timeout_s: float = Field(default=30.0, ge=1.0, le=300.0, alias="ROUTING_ENGINE_TIMEOUT_S")
    routing_engine_connect_timeout_s: float = Field(
        default=5.0,
        ge=0.5,
        le=60.0,
        alias="ROUTING_ENGINE_CONNECT_TIMEOUT_S",
    )
    # Retries cover transient network/5xx failures only; "no path" is never retried.
    routing_engine_max_retries: int = Field(default=3, ge=1, le=10, alias="ROUTING_ENGINE_MAX_RETRIES")
    routing_engine_backoff_base_s: float = Field(default=0.25, ge=0.0, alias="ROUTING_ENGINE_BACKOFF_BASE_S")
    routing_engine_backoff_max_s: float = Field(default=2.0, ge=0.0, alias="ROUTING_ENGINE_BACKOFF_MAX_S")

    camera_data_path: str = Field(default_factory=_default_camera_data_path, alias="CAMERA_DATA_PATH")
    camera_grid_cell_degrees: float = Field(default=0.1, gt=0.0, le=10.0, alias="CAMERA_GRID_CELL_DEGREES")

    max_route_distance_m: float = Field(default=482_803.0, gt=0.0, alias="MAX_ROUTE_DISTANCE_M")
    route_compute_timeout_s: float = Field(default=120.0, ge=1.0, alias="ROUTE_COMPUTE_TIMEOUT_S")

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
    )
    out_dir: str = Field(default="out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _clamp_backoff(self) -> "Settings":
        if self.routing_engine_backoff_max_s < self.routing_engine_backoff_base_s:
            self.routing_engine_backoff_max_s = self.routing_engine_backoff_base_s
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_origins.split(",") if item.strip()]


settings = Settings()
