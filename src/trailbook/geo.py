"""Great-circle distance helpers shared by the recorder and the trip engine."""
import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Haversine distance in meters between two lat/lon points (degrees).
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude) / 1000.0


def are_nearby(
    a: Optional[GeoPoint],
    b: Optional[GeoPoint],
    threshold_km: float = 50.0,
) -> bool:
    """True when both points exist and lie within ``threshold_km`` (inclusive)."""
    if a is None or b is None:
        return False
    return distance_km(a, b) <= threshold_km


def implied_speed_kmh(distance_m: float, elapsed_s: float) -> float:
    """Average speed over a segment; 0 when no time has passed."""
    if elapsed_s <= 0:
        return 0.0
    return (distance_m / 1000.0) / (elapsed_s / 3600.0)
