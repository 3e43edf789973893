"""Trip routes: browsing, item removal, merge suggestions and a cluster preview."""
from datetime import datetime
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from trailbook.config import get_settings
from trailbook.db.engine import get_engine
from trailbook.models.trip import Trip, TripItem
from trailbook.trips.detection import TripDetectionService
from trailbook.trips.items import TripSnapshot
from trailbook.trips.service import TripService
from trailbook.trips.store import TripStore

router = APIRouter()


class TripDetail(BaseModel):
    trip: Trip
    items: List[TripItem]
    tagged: List[str]


class MergeSuggestion(BaseModel):
    trip_id: int
    trip_name: str
    shared_trip_id: int
    shared_trip_name: str


class ClusterItemRead(BaseModel):
    item_type: str
    item_id: int
    name: str
    date: datetime


class ClusterRead(BaseModel):
    name: str
    start_date: datetime
    end_date: datetime
    span_days: int
    counts: Dict[str, int]
    total_distance_m: float
    items: List[ClusterItemRead]


def get_store() -> TripStore:
    """FastAPI dependency; overridden in tests."""
    return TripStore(get_engine())


def _detail(snapshot: TripSnapshot) -> TripDetail:
    return TripDetail(trip=snapshot.trip, items=snapshot.items, tagged=snapshot.tagged)


@router.get("/", response_model=List[TripDetail])
def list_trips(store: TripStore = Depends(get_store)):
    """Trips the user created or is tagged on, newest first."""
    return [_detail(s) for s in store.list_trip_snapshots(get_settings().user_id)]


@router.get("/merge-suggestions", response_model=List[MergeSuggestion])
def merge_suggestions(store: TripStore = Depends(get_store)):
    """Own auto-generated trips that look like a trip shared with the user."""
    service = TripService.from_settings(store, None, get_settings())
    return [
        MergeSuggestion(
            trip_id=mine.trip.id,
            trip_name=mine.trip.name,
            shared_trip_id=theirs.trip.id,
            shared_trip_name=theirs.trip.name,
        )
        for mine, theirs in service.suggested_merges()
    ]


@router.get("/clusters", response_model=List[ClusterRead])
def preview_clusters(store: TripStore = Depends(get_store)):
    """Clusters a detection run would propose right now. Nothing is written."""
    detection = TripDetectionService.from_settings(store, None, get_settings())
    return [
        ClusterRead(
            name=c.suggested_name,
            start_date=c.start_date,
            end_date=c.end_date,
            span_days=c.span_days,
            counts=c.counts,
            total_distance_m=c.total_distance_m,
            items=[
                ClusterItemRead(item_type=i.item_type.value, item_id=i.item_id, name=i.name, date=i.date)
                for i in c.items
            ],
        )
        for c in detection.discover_clusters()
    ]


@router.get("/{trip_id}", response_model=TripDetail)
def get_trip(trip_id: int, store: TripStore = Depends(get_store)):
    snapshot = store.get_snapshot(trip_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Trip not found")
    return _detail(snapshot)


@router.delete("/{trip_id}/items/{trip_item_id}", response_model=Trip)
async def remove_trip_item(trip_id: int, trip_item_id: int, store: TripStore = Depends(get_store)):
    """Remove one item; the trip range shrinks to the remaining items unless locked."""
    item = store.get_trip_item(trip_item_id)
    if item is None or item.trip_id != trip_id:
        raise HTTPException(status_code=404, detail="Trip item not found")
    service = TripService.from_settings(store, None, get_settings())
    await service.remove_from_trip(trip_id, item.item_type, item.item_id)
    return store.get_trip(trip_id)
