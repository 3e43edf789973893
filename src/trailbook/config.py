from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./trailbook.db"
    user_id: str = "local"  # single-user deployment; multi-user: swap for auth claim

    telegram_bot_token: str = ""
    telegram_allowed_user_id: Optional[int] = None
    prompt_timeout_seconds: Optional[float] = 3600.0

    # Track recorder heuristics
    gps_gap_seconds: float = 30.0
    gap_speed_factor: float = 1.5
    long_gap_seconds: float = 60.0
    vehicle_fallback_accuracy_m: float = 200.0
    vehicle_fallback_after_seconds: float = 60.0
    max_route_points: int = 1000
    recent_route_points: int = 100
    stale_after_seconds: float = 60.0
    degraded_after_seconds: float = 30.0
    liveness_check_interval_seconds: int = 10
    poor_signal_factor: float = 3.0
    poor_signal_quiet_seconds: float = 300.0
    signal_restored_after_seconds: float = 60.0
    initial_fix_timeout_seconds: float = 15.0
    degraded_fix_max_age_ms: int = 60_000
    degraded_fix_max_accuracy_m: float = 1000.0

    # Trip heuristics
    default_home_radius_km: float = 2.0
    trip_max_age_days: int = 90
    trip_match_window_days: int = 7
    trip_match_radius_km: float = 100.0
    detection_lookback_days: int = 30
    cluster_radius_km: float = 50.0
    cluster_tight_span_days: int = 7
    cluster_tight_window_days: int = 7
    cluster_loose_window_days: int = 14
    stale_day_trip_days: int = 14
    merge_radius_km: float = 100.0
    detection_hour: int = 20

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
