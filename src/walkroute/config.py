"""Application configuration and settings management."""

from typing import Any

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="WALKROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "WalkRoute API"
    api_prefix: str = "/api"
    osrm_base_url: str = Field(
        default="https://router.project-osrm.org",
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: str = Field(
        default="foot",
        description="OSRM profile used for walking directions.",
    )
    directions_timeout_seconds: float = Field(default=10.0, gt=0.0)
    directions_max_attempts: int = Field(default=3, ge=1)
    directions_backoff_seconds: float = Field(default=0.5, ge=0.0)
    max_concurrent_requests: int = Field(
        default=3,
        ge=1,
        description="Upper bound on simultaneous directions requests per optimization.",
    )
    cache_ttl_seconds: float = Field(default=300.0, gt=0.0)
    min_stops: int = Field(default=3, ge=2)
    max_stops: int = Field(default=15, ge=2)
    walking_speed_mps: float = Field(default=1.4, gt=0.0)
    max_optimization_iterations: int = Field(default=100, ge=0)
    optimize_timeout_seconds: float = Field(default=60.0, gt=0.0)
    turn_threshold_degrees: float = Field(default=20.0, ge=0.0, le=180.0)
    elevation_gain_ratio: float = Field(
        default=0.01,
        ge=0.0,
        description="Estimated metres climbed per metre walked on a routed segment.",
    )
    connectivity_check: bool = Field(
        default=True,
        description="Probe the network before calling the directions provider.",
    )
    connectivity_check_url: str | None = Field(
        default=None,
        description="URL probed for reachability. Defaults to the OSRM base URL.",
    )
    connectivity_timeout_seconds: float = Field(default=3.0, gt=0.0)
    connectivity_cache_seconds: float = Field(default=5.0, ge=0.0)
    region_span_multiplier: float = Field(default=1.3, gt=0.0)
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @field_validator("osrm_base_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


settings = Settings()
