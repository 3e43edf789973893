"""Activity data model: one row per recorded or manually entered activity."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from trailbook.errors import InvalidInputError


class ActivityType(str, Enum):
    BIKE = "bike"
    RUN = "run"
    WALK = "walk"
    HIKE = "hike"
    PADDLEBOARD = "paddleboard"
    CLIMB = "climb"
    OTHER = "other"


class Activity(SQLModel, table=True):
    """A finished activity. Route points are stored inline as a JSON list."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(default="local", index=True)
    activity_type: str  # ActivityType value
    name: str

    activity_date: datetime = Field(index=True)
    start_time: datetime
    end_time: datetime
    duration_seconds: int = 0
    distance_meters: float = 0.0

    # [{"latitude", "longitude", "timestamp", "accuracy", "altitude"}, ...] in recording order
    route: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    average_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0

    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_manual_entry: bool = False

    created_at: datetime = Field(default_factory=datetime.utcnow)


def build_manual_activity(
    *,
    user_id: str,
    name: Optional[str] = None,
    activity_type: str = ActivityType.OTHER.value,
    activity_date: Optional[datetime] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    duration_seconds: int = 0,
    distance_meters: float = 0.0,
    route: Optional[List[Dict[str, Any]]] = None,
    notes: Optional[str] = None,
    photos: Optional[List[str]] = None,
) -> Activity:
    """
    Build an Activity typed in by the user rather than recorded.

    Missing times default to now; average speed is derived from distance and
    duration so manual and recorded activities report the same fields.
    """
    try:
        kind = ActivityType(activity_type)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown activity type: {activity_type}") from exc

    now = datetime.utcnow()
    avg_speed = 0.0
    if distance_meters > 0 and duration_seconds > 0:
        avg_speed = (distance_meters / 1000.0) / (duration_seconds / 3600.0)

    return Activity(
        user_id=user_id,
        activity_type=kind.value,
        name=name or "Manual activity",
        activity_date=activity_date or start_time or now,
        start_time=start_time or now,
        end_time=end_time or now,
        duration_seconds=duration_seconds,
        distance_meters=distance_meters,
        route=list(route or []),
        average_speed_kmh=avg_speed,
        max_speed_kmh=0.0,
        notes=notes,
        photos=list(photos or []),
        is_manual_entry=True,
    )
