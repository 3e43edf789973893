"""
Item representations used by the trip engine.

  - ActivityPayload / SpotPayload: the tagged union stored in TripItem.data.
    ``kind`` is the discriminator, so parsing never probes optional fields.
  - TrackedItem: one activity or spot reduced to what matching and
    clustering need (key, date, location, distance).
  - TripSnapshot: a Trip with its items and tags, loaded together.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter

from trailbook.geo import GeoPoint
from trailbook.models.activity import Activity
from trailbook.models.spot import SavedSpot
from trailbook.models.trip import Trip, TripItem


class ItemType(str, Enum):
    ACTIVITY = "activity"
    SPOT = "spot"


ItemKey = Tuple[str, int]  # (ItemType value, underlying id)


class ActivityPayload(BaseModel):
    kind: Literal["activity"] = "activity"
    id: int
    name: str
    activity_type: str
    activity_date: datetime
    duration_seconds: int = 0
    distance_meters: float = 0.0
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class SpotPayload(BaseModel):
    kind: Literal["spot"] = "spot"
    id: int
    name: str
    category: str
    location_date: datetime
    latitude: float
    longitude: float
    description: Optional[str] = None
    rating: Optional[int] = None
    photos: List[str] = Field(default_factory=list)


ItemPayload = Annotated[Union[ActivityPayload, SpotPayload], Field(discriminator="kind")]
_payload_adapter = TypeAdapter(ItemPayload)


def parse_payload(data: Dict[str, Any]) -> Union[ActivityPayload, SpotPayload]:
    return _payload_adapter.validate_python(data)


def activity_payload(activity: Activity) -> ActivityPayload:
    start = activity.route[0] if activity.route else None
    return ActivityPayload(
        id=activity.id,
        name=activity.name,
        activity_type=activity.activity_type,
        activity_date=activity.activity_date,
        duration_seconds=activity.duration_seconds,
        distance_meters=activity.distance_meters,
        start_latitude=start["latitude"] if start else None,
        start_longitude=start["longitude"] if start else None,
        notes=activity.notes,
        photos=list(activity.photos or []),
    )


def spot_payload(spot: SavedSpot) -> SpotPayload:
    return SpotPayload(
        id=spot.id,
        name=spot.name,
        category=spot.category,
        location_date=spot.location_date,
        latitude=spot.latitude,
        longitude=spot.longitude,
        description=spot.description,
        rating=spot.rating,
        photos=list(spot.photos or []),
    )


@dataclass(frozen=True)
class TrackedItem:
    """An activity or spot as seen by matching and clustering."""

    item_type: ItemType
    item_id: int
    name: str
    date: datetime
    location: Optional[GeoPoint]
    distance_m: float
    payload: Union[ActivityPayload, SpotPayload]

    @property
    def key(self) -> ItemKey:
        return (self.item_type.value, self.item_id)


def tracked_from_payload(payload: Union[ActivityPayload, SpotPayload]) -> TrackedItem:
    if isinstance(payload, ActivityPayload):
        location = None
        if payload.start_latitude is not None and payload.start_longitude is not None:
            location = GeoPoint(payload.start_latitude, payload.start_longitude)
        return TrackedItem(
            item_type=ItemType.ACTIVITY,
            item_id=payload.id,
            name=payload.name,
            date=payload.activity_date,
            location=location,
            distance_m=payload.distance_meters,
            payload=payload,
        )
    if isinstance(payload, SpotPayload):
        return TrackedItem(
            item_type=ItemType.SPOT,
            item_id=payload.id,
            name=payload.name,
            date=payload.location_date,
            location=GeoPoint(payload.latitude, payload.longitude),
            distance_m=0.0,
            payload=payload,
        )
    raise TypeError(f"Unsupported payload: {type(payload).__name__}")


def track_activity(activity: Activity) -> TrackedItem:
    return tracked_from_payload(activity_payload(activity))


def track_spot(spot: SavedSpot) -> TrackedItem:
    return tracked_from_payload(spot_payload(spot))


def track_record(item_type: Union[ItemType, str], record) -> TrackedItem:
    """Dispatch on item type for callers holding an Activity or SavedSpot row."""
    if ItemType(item_type) is ItemType.ACTIVITY:
        return track_activity(record)
    return track_spot(record)


def track_trip_item(trip_item: TripItem) -> TrackedItem:
    return tracked_from_payload(parse_payload(trip_item.data))


@dataclass
class TripSnapshot:
    """A trip loaded with its items and collaborator tags."""

    trip: Trip
    items: List[TripItem] = field(default_factory=list)
    tagged: List[str] = field(default_factory=list)

    @property
    def tracked(self) -> List[TrackedItem]:
        return [track_trip_item(i) for i in self.items]

    @property
    def item_keys(self) -> set:
        return {(i.item_type, i.item_id) for i in self.items}

    def located_points(self) -> List[GeoPoint]:
        return [t.location for t in self.tracked if t.location is not None]
