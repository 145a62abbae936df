from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./trackgen.db"
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Segmentation defaults; per-user values on User override these
    time_threshold_minutes: int = 60
    distance_threshold_meters: int = 500

    # Parallel generation
    chunk_size_hours: int = 24
    chunk_buffer_hours: int = 6
    session_ttl_seconds: int = 24 * 3600
    boundary_delay_per_chunk_seconds: int = 30
    boundary_min_delay_seconds: int = 300

    # Boundary resolution
    boundary_lookback_minutes: int = 60
    boundary_time_window_minutes: int = 30
    boundary_max_gap_minutes: int = 60

    # Realtime path
    debounce_delay_seconds: int = 45
    debounce_ttl_seconds: int = 120
    realtime_lookback_hours: int = 6
    realtime_grace_period_minutes: Optional[int] = None  # None: finalize immediately
    incomplete_grace_period_minutes: int = 5

    daily_generation_hour: int = 2

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
