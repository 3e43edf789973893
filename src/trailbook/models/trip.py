"""Trip models: trips, their items, collaborator tags, and rejection records."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class Trip(SQLModel, table=True):
    """
    A named date range grouping activities and spots.

    start_date <= end_date always. Unless dates_locked is set, the range
    follows the min/max date of the trip's items as they are added/removed.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    start_date: datetime
    end_date: datetime
    created_by: str = Field(index=True)

    auto_generated: bool = False
    dates_locked: bool = False
    cover_photo: Optional[str] = None

    # Ids of trips whose items were merged into this one
    merged_from: List[int] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)


class TripTag(SQLModel, table=True):
    """A collaborator tagged on a trip."""

    __table_args__ = (UniqueConstraint("trip_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    trip_id: int = Field(foreign_key="trip.id", index=True)
    user_id: str = Field(index=True)


class TripItem(SQLModel, table=True):
    """
    One activity or spot inside a trip.

    ``data`` is a denormalized copy of the underlying record taken when the
    item was added; parse it with trailbook.trips.items.parse_payload.
    """

    __table_args__ = (UniqueConstraint("trip_id", "item_type", "item_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    trip_id: int = Field(foreign_key="trip.id", index=True)
    item_type: str  # "activity" | "spot"
    item_id: int = Field(index=True)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    added_by: Optional[str] = None
    added_at: datetime = Field(default_factory=datetime.utcnow)


class TripItemRejection(SQLModel, table=True):
    """The user declined auto-grouping for this item; suppresses future suggestions."""

    __table_args__ = (UniqueConstraint("user_id", "item_id", "item_type"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    item_id: int
    item_type: str
    trip_id: Optional[int] = None  # set when a specific trip was declined
    rejected_at: datetime = Field(default_factory=datetime.utcnow)
