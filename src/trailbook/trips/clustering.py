"""
Cluster discovery: group unassigned items that look like an unorganized trip.

Items are visited in date order and greedily attached to the first cluster
that accepts them:
  - date: inside the cluster's span widened by tight_window_days while the
    cluster spans <= tight_span_days, else by loose_window_days
  - place: within radius_km of some located cluster item, or (for an item
    without a location) the cluster has no located items either
Anything else opens a new cluster. Singletons are dropped, and so are
single-day clusters whose latest item is older than stale_single_day_days.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from trailbook.geo import GeoPoint, are_nearby
from trailbook.trips.dates import span_days, within_window
from trailbook.trips.items import ItemKey, ItemType, TrackedItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterRules:
    lookback_days: int = 30
    radius_km: float = 50.0
    tight_span_days: int = 7
    tight_window_days: int = 7
    loose_window_days: int = 14
    min_items: int = 2
    stale_single_day_days: int = 14

    @classmethod
    def from_settings(cls, settings) -> "ClusterRules":
        return cls(
            lookback_days=settings.detection_lookback_days,
            radius_km=settings.cluster_radius_km,
            tight_span_days=settings.cluster_tight_span_days,
            tight_window_days=settings.cluster_tight_window_days,
            loose_window_days=settings.cluster_loose_window_days,
            stale_single_day_days=settings.stale_day_trip_days,
        )


@dataclass
class TripCluster:
    items: List[TrackedItem] = field(default_factory=list)

    @property
    def start_date(self) -> datetime:
        return min(i.date for i in self.items)

    @property
    def end_date(self) -> datetime:
        return max(i.date for i in self.items)

    @property
    def span_days(self) -> int:
        return span_days(self.start_date, self.end_date)

    @property
    def counts(self) -> Dict[str, int]:
        counts = Counter(i.item_type.value for i in self.items)
        return {t.value: counts.get(t.value, 0) for t in ItemType}

    @property
    def total_distance_m(self) -> float:
        return sum(i.distance_m for i in self.items if i.item_type is ItemType.ACTIVITY)

    @property
    def keys(self) -> List[ItemKey]:
        return [i.key for i in self.items]

    @property
    def suggested_name(self) -> str:
        return suggest_name(self.start_date, self.end_date)

    def located_points(self) -> List[GeoPoint]:
        return [i.location for i in self.items if i.location is not None]

    def accepts(self, item: TrackedItem, rules: ClusterRules) -> bool:
        window = (
            rules.tight_window_days
            if self.span_days <= rules.tight_span_days
            else rules.loose_window_days
        )
        if not within_window(item.date, self.start_date, self.end_date, window):
            return False

        located = self.located_points()
        if item.location is None:
            return not located
        return any(are_nearby(item.location, p, rules.radius_km) for p in located)


def format_day(value: datetime) -> str:
    """Jun 1, 2024"""
    return f"{value:%b} {value.day}, {value.year}"


def suggest_name(start: datetime, end: datetime) -> str:
    days = span_days(start, end)
    if days <= 1:
        return f"Day Trip — {format_day(start)}"
    if days <= 3:
        return f"Weekend Trip — {format_day(start)}"
    return f"Trip {format_day(start)} – {format_day(end)}"


def group_items(items: Iterable[TrackedItem], rules: ClusterRules = ClusterRules()) -> List[TripCluster]:
    """Greedy grouping in date order. Returns every cluster, singletons included."""
    clusters: List[TripCluster] = []
    for item in sorted(items, key=lambda i: i.date):
        for cluster in clusters:
            if cluster.accepts(item, rules):
                cluster.items.append(item)
                break
        else:
            clusters.append(TripCluster(items=[item]))
    return clusters


def is_stale_day_trip(cluster: TripCluster, now: datetime, rules: ClusterRules) -> bool:
    if cluster.span_days > 1:
        return False
    return now - cluster.end_date > timedelta(days=rules.stale_single_day_days)


def build_clusters(
    items: Iterable[TrackedItem],
    now: datetime,
    rules: ClusterRules = ClusterRules(),
) -> List[TripCluster]:
    """Group items, then keep only clusters worth proposing as a trip."""
    grouped = group_items(items, rules)
    clusters = [
        c for c in grouped
        if len(c.items) >= rules.min_items and not is_stale_day_trip(c, now, rules)
    ]
    logger.info("Clustered items into %d groups, %d proposed", len(grouped), len(clusters))
    return clusters
