"""
Route accumulation: per-fix acceptance, distance/speed totals, memory bound.

RouteBuilder.add_fix() is synchronous and runs to completion per fix. It is
the whole filtering pipeline; the recorder only decides *whether* a fix is
offered (tracking vs paused) and surfaces the outcome.

Acceptance, in order (first match wins):
  1. accuracy worse than the activity threshold → LOW_ACCURACY
     (vehicle fallback: up to fallback_accuracy_m once fallback_after_seconds
     have passed since the last accepted point)
  2. empty route → FIRST
  3. movement below min_distance_m → STATIONARY
  4. time gap > gap_seconds: accept if implied speed <= factor * max_speed,
     or if the type tolerates long gaps and the gap > long_gap_seconds;
     otherwise IMPLAUSIBLE_GAP
  5. continuous tracking: jump > max_jump_m → JUMP; else ACCEPTED, updating
     live/max speed when the implied speed is plausible
"""
import logging
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from trailbook.geo import haversine_m, implied_speed_kmh
from trailbook.models.activity import ActivityType
from trailbook.tracking.fixes import LocationFix
from trailbook.tracking.profiles import (
    TrackingTuning,
    accuracy_threshold,
    movement_thresholds,
)

logger = logging.getLogger(__name__)


class FixDecision(str, Enum):
    FIRST = "first"
    ACCEPTED = "accepted"
    GAP_ACCEPTED = "gap_accepted"
    LOW_ACCURACY = "low_accuracy"
    STATIONARY = "stationary"
    IMPLAUSIBLE_GAP = "implausible_gap"
    JUMP = "jump"

    @property
    def accepted(self) -> bool:
        return self in _ACCEPTED


_ACCEPTED = frozenset({FixDecision.FIRST, FixDecision.ACCEPTED, FixDecision.GAP_ACCEPTED})


def downsample_route(
    points: Sequence[LocationFix],
    max_points: int = 1000,
    keep_recent: int = 100,
) -> List[LocationFix]:
    """
    Bound a route to at most ``max_points``.

    Keeps the first point, the most recent ``keep_recent`` points verbatim, and
    a uniform stride over the middle section. Routes already within the bound
    are returned unchanged (as a new list).
    """
    if len(points) <= max_points:
        return list(points)

    keep_recent = max(1, min(keep_recent, max_points - 2))
    first = points[0]
    recent = list(points[-keep_recent:])
    middle = points[1:-keep_recent]
    budget = max_points - keep_recent - 1
    stride = math.ceil(len(middle) / budget)
    sampled = list(middle[::stride])
    return [first] + sampled + recent


class RouteBuilder:
    """
    Accumulates accepted fixes for one activity.

    Attributes:
        points: accepted fixes in arrival order (downsampled past the bound).
        distance_m: running total of accepted segment distances.
        current_speed_kmh / max_speed_kmh: live and peak speed.
    """

    def __init__(
        self,
        activity_type: Union[ActivityType, str],
        tuning: Optional[TrackingTuning] = None,
    ):
        try:
            self.activity_type = ActivityType(activity_type)
        except ValueError:
            self.activity_type = ActivityType.OTHER
        self.tuning = tuning or TrackingTuning()
        self.accuracy_threshold_m = accuracy_threshold(self.activity_type)
        self.thresholds = movement_thresholds(self.activity_type)

        self.points: List[LocationFix] = []
        self.distance_m = 0.0
        self.current_speed_kmh = 0.0
        self.max_speed_kmh = 0.0

    @property
    def last_point(self) -> Optional[LocationFix]:
        return self.points[-1] if self.points else None

    def passes_accuracy(self, fix: LocationFix) -> bool:
        """Step 1 of acceptance, including the vehicle fallback."""
        if fix.accuracy_m is None or fix.accuracy_m <= self.accuracy_threshold_m:
            return True
        if self.activity_type not in self.tuning.fallback_types:
            return False
        if fix.accuracy_m > self.tuning.fallback_accuracy_m:
            return False
        last = self.last_point
        if last is None:
            return True
        elapsed_s = (fix.timestamp_ms - last.timestamp_ms) / 1000.0
        return elapsed_s >= self.tuning.fallback_after_seconds

    def add_fix(self, fix: LocationFix) -> FixDecision:
        """Run the acceptance algorithm for one fix and apply it if accepted."""
        if not self.passes_accuracy(fix):
            return FixDecision.LOW_ACCURACY

        last = self.last_point
        if last is None:
            self._append(fix, 0.0)
            return FixDecision.FIRST

        distance = haversine_m(last.latitude, last.longitude, fix.latitude, fix.longitude)
        elapsed_s = (fix.timestamp_ms - last.timestamp_ms) / 1000.0

        if distance < self.thresholds.min_distance_m:
            return FixDecision.STATIONARY

        speed = implied_speed_kmh(distance, elapsed_s)

        if elapsed_s > self.tuning.gap_seconds:
            plausible = speed <= self.thresholds.max_speed_kmh * self.tuning.gap_speed_factor
            long_gap = (
                self.activity_type in self.tuning.long_gap_types
                and elapsed_s > self.tuning.long_gap_seconds
            )
            if not (plausible or long_gap):
                logger.debug("Dropping fix after %.0fs gap at %.1f km/h", elapsed_s, speed)
                return FixDecision.IMPLAUSIBLE_GAP
            self._append(fix, distance)
            return FixDecision.GAP_ACCEPTED

        if distance > self.thresholds.max_jump_m:
            logger.debug("Dropping %.0fm GPS jump", distance)
            return FixDecision.JUMP

        if elapsed_s > 0 and speed < self.thresholds.max_speed_kmh:
            self._record_speed(speed)
        self._append(fix, distance)
        return FixDecision.ACCEPTED

    def route_points(self) -> List[Dict[str, Any]]:
        return [p.to_route_point() for p in self.points]

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _record_speed(self, speed_kmh: float) -> None:
        self.current_speed_kmh = speed_kmh
        if speed_kmh > self.max_speed_kmh:
            self.max_speed_kmh = speed_kmh

    def _append(self, fix: LocationFix, segment_m: float) -> None:
        self.points.append(fix)
        self.distance_m += segment_m

        # Device-reported speed beats the two-point estimate when present
        if fix.speed_ms is not None and fix.speed_ms >= 0:
            reported = fix.speed_ms * 3.6
            if reported < self.thresholds.max_speed_kmh:
                self._record_speed(reported)

        if len(self.points) > self.tuning.max_route_points:
            self.points = downsample_route(
                self.points,
                max_points=self.tuning.max_route_points,
                keep_recent=self.tuning.recent_route_points,
            )
