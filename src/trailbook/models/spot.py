"""Saved spot model: a place the user visited and chose to keep."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class SavedSpot(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(default="local", index=True)
    name: str
    latitude: float
    longitude: float

    # When the place was visited, distinct from created_at (when it was saved)
    location_date: datetime = Field(index=True)
    category: str = "other"

    description: Optional[str] = None
    photos: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    rating: Optional[int] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
