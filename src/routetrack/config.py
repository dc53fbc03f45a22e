"""Application configuration and settings management."""

from datetime import time
from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="RT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Route Progress Tracker API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for tracking records and static data.")
    warehouses_file: Path = Field(
        default=Path("data/warehouses.xlsx"),
        description="Warehouse registry workbook used when the database is not available.",
    )
    timezone: str = Field(
        default="America/Los_Angeles",
        description="Local time zone for planned stop times, the operating window and calendar days.",
    )

    # Geofencing and intermediate stop detection
    geofence_radius_meters: float = Field(default=160.934, gt=0.0, description="Warehouse geofence radius (0.1 mile).")
    stationary_speed_threshold: float = Field(default=5.0, ge=0.0)
    intermediate_stop_move_meters: float = Field(default=50.0, ge=0.0)

    # Polling
    poll_interval_seconds: float = Field(default=30.0, gt=0.0)
    tracking_start_hour: int = Field(default=5, ge=0, le=23)
    tracking_end_hour: int = Field(default=23, ge=0, le=23)
    polling_workers: int = Field(default=8, ge=1)
    auto_start_polling: bool = False

    # Schedule recalculation
    operating_window_start: time = Field(default=time(7, 0))
    operating_window_end: time = Field(default=time(20, 0))
    base_dwell_minutes: int = Field(default=30, ge=0)
    fallback_travel_minutes: int = Field(default=15, ge=1)
    default_speed_limit_mph: int = Field(default=55, ge=1)
    same_location_travel_minutes: int = Field(default=5, ge=0)
    recalculation_workers: int = Field(default=4, ge=1)

    max_gps_log_entries: int = Field(default=1000, ge=1)

    # Travel-time estimator (Google Directions)
    google_maps_api_key: Optional[str] = Field(default=None, description="API key for the Directions service.")
    google_maps_base_url: str = Field(default="https://maps.googleapis.com/maps/api")
    estimator_timeout_seconds: float = Field(default=10.0, gt=0.0)
    estimator_max_retries: int = Field(default=2, ge=0)
    estimator_backoff_seconds: float = Field(default=0.5, ge=0.0)

    # GPS provider (Trak-4)
    gps_api_base_url: str = Field(default="https://api-v3.trak-4.com")
    gps_api_key: Optional[str] = None
    gps_timeout_seconds: float = Field(default=15.0, gt=0.0)

    store_backend: Literal["file", "supabase"] = Field(
        default="file",
        description="Durable key-value store used for route progress and recalculated schedules.",
    )

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", "warehouses_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("operating_window_start", "operating_window_end", mode="before")
    @classmethod
    def _parse_clock_time(cls, value: Any) -> Any:
        """Accept "HH:MM" strings from the environment."""
        if isinstance(value, str) and value.count(":") == 1:
            hours, minutes = value.strip().split(":")
            return time(int(hours), int(minutes))
        return value

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
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

    @model_validator(mode="after")
    def _check_tracking_window(self) -> "Settings":
        if self.tracking_start_hour >= self.tracking_end_hour:
            raise ValueError("tracking_start_hour must be earlier than tracking_end_hour.")
        if self.operating_window_start >= self.operating_window_end:
            raise ValueError("operating_window_start must be earlier than operating_window_end.")
        return self


settings = Settings()
