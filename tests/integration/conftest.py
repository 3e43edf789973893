"""Factories for seeding activities and spots through the store."""
from datetime import datetime

import pytest

from trailbook.models.activity import Activity
from trailbook.models.spot import SavedSpot

INTERLAKEN = (46.686, 7.863)
GRINDELWALD = (46.624, 8.041)     # ~15 km from Interlaken


@pytest.fixture(name="add_activity")
def add_activity_fixture(store):
    def _add(when: datetime, loc=INTERLAKEN, name=None, distance_m=5000.0, user_id="local"):
        route = []
        if loc is not None:
            route = [{"latitude": loc[0], "longitude": loc[1], "timestamp": when.timestamp() * 1000}]
        return store.save_activity(Activity(
            user_id=user_id,
            activity_type="hike",
            name=name or f"Hike {when:%b %d}",
            activity_date=when,
            start_time=when,
            end_time=when,
            duration_seconds=3600,
            distance_meters=distance_m,
            route=route,
        ))
    return _add


@pytest.fixture(name="add_spot")
def add_spot_fixture(store):
    def _add(when: datetime, loc=INTERLAKEN, name=None, user_id="local"):
        return store.save_spot(SavedSpot(
            user_id=user_id,
            name=name or f"Spot {when:%b %d}",
            latitude=loc[0],
            longitude=loc[1],
            location_date=when,
            category="viewpoint",
        ))
    return _add
