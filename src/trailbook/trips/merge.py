"""
Trip merging rules.

Two trips can be joined when their date ranges overlap and, if both have
located items, at least one cross-trip pair of items lies within radius_km.
"""
from typing import List, Sequence, Tuple

from trailbook.geo import are_nearby
from trailbook.models.trip import TripItem
from trailbook.trips.dates import anchor
from trailbook.trips.items import TripSnapshot


def ranges_overlap(a: TripSnapshot, b: TripSnapshot) -> bool:
    return (
        anchor(a.trip.start_date) <= anchor(b.trip.end_date)
        and anchor(b.trip.start_date) <= anchor(a.trip.end_date)
    )


def can_trips_be_joined(a: TripSnapshot, b: TripSnapshot, radius_km: float = 100.0) -> bool:
    if not ranges_overlap(a, b):
        return False
    points_a = a.located_points()
    points_b = b.located_points()
    if not points_a or not points_b:
        return True
    return any(are_nearby(p, q, radius_km) for p in points_a for q in points_b)


def items_to_copy(source: TripSnapshot, destination: TripSnapshot) -> List[TripItem]:
    """Source items whose (type, id) is not in the destination yet, in source order."""
    present = destination.item_keys
    return [i for i in source.items if (i.item_type, i.item_id) not in present]


def suggested_merges(
    snapshots: Sequence[TripSnapshot],
    user_id: str,
    radius_km: float = 100.0,
) -> List[Tuple[TripSnapshot, TripSnapshot]]:
    """
    Pairs (own auto-generated trip, shared trip) that look like the same trip.

    A shared trip is one the user is tagged on but did not create.
    """
    own_auto = [s for s in snapshots if s.trip.created_by == user_id and s.trip.auto_generated]
    shared = [s for s in snapshots if s.trip.created_by != user_id and user_id in s.tagged]
    return [
        (mine, theirs)
        for mine in own_auto
        for theirs in shared
        if can_trips_be_joined(mine, theirs, radius_km)
    ]
