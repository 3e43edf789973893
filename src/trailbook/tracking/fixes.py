"""
LocationFix dataclass and conversion from raw location-service dicts.

LocationFix is the in-memory representation the recorder consumes. It is a
plain dataclass; only accepted fixes are kept, serialized with to_route_point().
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from trailbook.geo import GeoPoint


@dataclass(frozen=True)
class LocationFix:
    """One raw reading from the device location service."""

    latitude: float
    longitude: float
    timestamp_ms: int                   # epoch milliseconds
    accuracy_m: Optional[float] = None  # reported horizontal accuracy
    altitude_m: Optional[float] = None
    speed_ms: Optional[float] = None    # instantaneous speed, m/s

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    def to_route_point(self) -> Dict[str, Any]:
        """Serialize for Activity.route (JSON column)."""
        point: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp_ms,
        }
        if self.accuracy_m is not None:
            point["accuracy"] = self.accuracy_m
        if self.altitude_m is not None:
            point["altitude"] = self.altitude_m
        return point


def fix_from_dict(raw: Dict[str, Any]) -> LocationFix:
    """
    Build a LocationFix from a location-service payload.

    Accepts either a flat dict or the ``{"coords": {...}, "timestamp": ...}``
    shape most mobile location APIs emit. Negative speeds mean "unknown".
    """
    coords = raw.get("coords", raw)
    speed = coords.get("speed")
    if speed is not None and speed < 0:
        speed = None
    return LocationFix(
        latitude=float(coords["latitude"]),
        longitude=float(coords["longitude"]),
        timestamp_ms=int(raw.get("timestamp", coords.get("timestamp", 0))),
        accuracy_m=coords.get("accuracy"),
        altitude_m=coords.get("altitude"),
        speed_ms=speed,
    )
