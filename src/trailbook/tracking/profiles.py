"""
Per-activity-type GPS tuning.

Two parameter sets are selected by activity type:
  - accuracy threshold: worst reported accuracy accepted into the route
  - movement thresholds: jitter floor, glitch ceiling, plausible top speed

Slow foot activities get strict accuracy and small jump ceilings; vehicle-like
"other" gets the loosest values. Unknown types fall back to "other".

The gap/fallback heuristics live in TrackingTuning. They are empirical, so
they are plain fields (fed from Settings) rather than constants.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Union

from trailbook.models.activity import ActivityType


@dataclass(frozen=True)
class MovementThresholds:
    min_distance_m: float   # below this a fix is stationary noise
    max_jump_m: float       # instant jump above this is a GPS glitch
    max_speed_kmh: float    # plausible top speed for the activity


ACCURACY_THRESHOLDS_M: Dict[ActivityType, float] = {
    ActivityType.WALK: 30.0,
    ActivityType.HIKE: 30.0,
    ActivityType.CLIMB: 30.0,
    ActivityType.RUN: 50.0,
    ActivityType.BIKE: 75.0,
    ActivityType.PADDLEBOARD: 75.0,
    ActivityType.OTHER: 100.0,
}

MOVEMENT_THRESHOLDS: Dict[ActivityType, MovementThresholds] = {
    ActivityType.WALK: MovementThresholds(0.5, 100.0, 10.0),
    ActivityType.HIKE: MovementThresholds(0.5, 100.0, 15.0),
    ActivityType.CLIMB: MovementThresholds(0.5, 100.0, 15.0),
    ActivityType.RUN: MovementThresholds(1.0, 200.0, 30.0),
    ActivityType.PADDLEBOARD: MovementThresholds(1.0, 150.0, 25.0),
    ActivityType.BIKE: MovementThresholds(2.0, 500.0, 80.0),
    ActivityType.OTHER: MovementThresholds(5.0, 10_000.0, 200.0),
}


def _coerce(activity_type: Union[ActivityType, str]) -> ActivityType:
    try:
        return ActivityType(activity_type)
    except ValueError:
        return ActivityType.OTHER


def accuracy_threshold(activity_type: Union[ActivityType, str]) -> float:
    return ACCURACY_THRESHOLDS_M[_coerce(activity_type)]


def movement_thresholds(activity_type: Union[ActivityType, str]) -> MovementThresholds:
    return MOVEMENT_THRESHOLDS[_coerce(activity_type)]


@dataclass(frozen=True)
class TrackingTuning:
    """Recorder heuristics that are not per-activity-type."""

    gap_seconds: float = 30.0             # elapsed time beyond which a fix is a GPS gap
    gap_speed_factor: float = 1.5         # gap accepted if speed <= factor * max_speed
    long_gap_seconds: float = 60.0        # long gaps always accepted for long_gap_types
    long_gap_types: FrozenSet[ActivityType] = frozenset({ActivityType.BIKE, ActivityType.OTHER})

    fallback_types: FrozenSet[ActivityType] = frozenset({ActivityType.OTHER})
    fallback_accuracy_m: float = 200.0
    fallback_after_seconds: float = 60.0

    max_route_points: int = 1000
    recent_route_points: int = 100

    stale_after_seconds: float = 60.0
    degraded_after_seconds: float = 30.0

    poor_signal_factor: float = 3.0
    poor_signal_quiet_seconds: float = 300.0
    signal_restored_after_seconds: float = 60.0

    initial_fix_timeout_seconds: float = 15.0
    degraded_fix_max_age_ms: int = 60_000
    degraded_fix_max_accuracy_m: float = 1000.0

    # Subscription request passed to the location service
    watch_interval_ms: int = 2000
    watch_distance_m: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "TrackingTuning":
        return cls(
            gap_seconds=settings.gps_gap_seconds,
            gap_speed_factor=settings.gap_speed_factor,
            long_gap_seconds=settings.long_gap_seconds,
            fallback_accuracy_m=settings.vehicle_fallback_accuracy_m,
            fallback_after_seconds=settings.vehicle_fallback_after_seconds,
            max_route_points=settings.max_route_points,
            recent_route_points=settings.recent_route_points,
            stale_after_seconds=settings.stale_after_seconds,
            degraded_after_seconds=settings.degraded_after_seconds,
            poor_signal_factor=settings.poor_signal_factor,
            poor_signal_quiet_seconds=settings.poor_signal_quiet_seconds,
            signal_restored_after_seconds=settings.signal_restored_after_seconds,
            initial_fix_timeout_seconds=settings.initial_fix_timeout_seconds,
            degraded_fix_max_age_ms=settings.degraded_fix_max_age_ms,
            degraded_fix_max_accuracy_m=settings.degraded_fix_max_accuracy_m,
        )
