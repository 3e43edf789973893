"""Per-user preferences consulted by the trip engine."""
from typing import Optional

from sqlmodel import Field, SQLModel


class UserProfile(SQLModel, table=True):
    user_id: str = Field(primary_key=True)

    # Items within home_radius_km of home are routine, never trip suggestions
    home_latitude: Optional[float] = None
    home_longitude: Optional[float] = None
    home_radius_km: Optional[float] = None  # None -> settings.default_home_radius_km
