"""
Single-item trip matching.

An item is a trip candidate unless it sits inside the user's home radius.
A trip matches when all of:
  - it is not too old: |now - end_date| <= max_trip_age_days
  - the item date lies within the trip range widened by ±window_days
  - the item is within radius_km of at least one located trip item, or the
    trip has no located items yet, or the item itself has no location
Candidates keep encounter order; the caller takes the first.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from trailbook.geo import GeoPoint, are_nearby, distance_km
from trailbook.models.profile import UserProfile
from trailbook.trips.dates import within_window
from trailbook.trips.items import TrackedItem, TripSnapshot


@dataclass(frozen=True)
class MatchRules:
    max_trip_age_days: int = 90
    window_days: int = 7
    radius_km: float = 100.0
    default_home_radius_km: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "MatchRules":
        return cls(
            max_trip_age_days=settings.trip_max_age_days,
            window_days=settings.trip_match_window_days,
            radius_km=settings.trip_match_radius_km,
            default_home_radius_km=settings.default_home_radius_km,
        )


def is_near_home(
    location: Optional[GeoPoint],
    profile: Optional[UserProfile],
    default_radius_km: float = 2.0,
) -> bool:
    """True when the user has a home set and ``location`` is within its radius."""
    if location is None or profile is None:
        return False
    if profile.home_latitude is None or profile.home_longitude is None:
        return False
    radius = default_radius_km if profile.home_radius_km is None else profile.home_radius_km
    home = GeoPoint(profile.home_latitude, profile.home_longitude)
    return distance_km(location, home) <= radius


def trip_matches(
    item: TrackedItem,
    snapshot: TripSnapshot,
    now: datetime,
    rules: MatchRules = MatchRules(),
) -> bool:
    trip = snapshot.trip
    if abs(now - trip.end_date) > timedelta(days=rules.max_trip_age_days):
        return False
    if not within_window(item.date, trip.start_date, trip.end_date, rules.window_days):
        return False

    if item.location is None:
        return True
    located = snapshot.located_points()
    if not located:
        return True
    return any(are_nearby(item.location, p, rules.radius_km) for p in located)


def find_candidate_trips(
    item: TrackedItem,
    snapshots: Sequence[TripSnapshot],
    now: datetime,
    rules: MatchRules = MatchRules(),
) -> List[TripSnapshot]:
    return [s for s in snapshots if trip_matches(item, s, now, rules)]
