"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="PLANNER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Planning Inbox Engine"
    api_prefix: str = "/api"
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Travel-time / distance capability
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_timeout_seconds: float = Field(default=60.0, gt=0.0)
    osrm_health_timeout_seconds: float = Field(default=5.0, gt=0.0)
    osrm_max_retries: int = Field(default=3, ge=0)
    osrm_backoff_seconds: float = Field(default=1.0, ge=0.0)
    max_parallel_matrix_requests: int = Field(default=15, ge=1)
    matrix_max_retries: int = Field(
        default=2,
        ge=0,
        description="Engine-level retries of a failed matrix query before reporting matrix_unavailable.",
    )
    matrix_backoff_seconds: float = Field(default=0.5, ge=0.0)
    haversine_road_coefficient: float = Field(default=1.3, gt=0.0)
    haversine_speed_kmh: float = Field(default=40.0, gt=0.0)

    # Workday and service defaults
    default_workday_start: str = Field(default="08:00", pattern=r"^\d{1,2}:\d{2}$")
    default_workday_end: str = Field(default="17:00", pattern=r"^\d{1,2}:\d{2}$")
    default_service_duration_minutes: int = Field(default=60, gt=0)
    default_buffer_percent: float = Field(default=10.0, ge=0.0, le=100.0)
    default_buffer_fixed_minutes: float = Field(default=0.0, ge=0.0, le=120.0)

    # Insertion heuristics
    tight_slack_minutes: float = Field(default=15.0, ge=0.0)
    arrival_rounding_minutes: int = Field(
        default=0,
        ge=0,
        description="Round estimated arrivals up to this grid (e.g. 15 for quarter hours). 0 disables rounding.",
    )
    return_to_depot: bool = True

    # Inbox / revisions
    due_soon_days: int = Field(default=7, ge=0)
    default_snooze_offset_days: Literal[1, 7, 14, 30] = 7

    # Multi-crew comparison
    min_crew_savings_minutes: float = Field(default=10.0, ge=0.0)
    min_crew_savings_km: float = Field(default=5.0, ge=0.0)
    crew_savings_km_weight: float = Field(default=2.0, ge=0.0)

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


settings = Settings()
