# utils/geofence.py

from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt

EARTH_RADIUS_METERS = 6371000


# WGS84 degrees; device fixes are trusted as-is, no range validation
@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    R = EARTH_RADIUS_METERS
    φ1, φ2 = radians(lat1), radians(lat2)
    Δφ = radians(lat2 - lat1)
    Δλ = radians(lng2 - lng1)

    a = sin(Δφ/2)**2 + cos(φ1) * cos(φ2) * sin(Δλ/2)**2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return R * c


def distance_meters(a: Coordinate, b: Coordinate) -> int:
    """Great-circle distance between two coordinates, rounded to whole meters.

    The rounded value is both what gets stored on the attendance record and
    what the radius comparison uses.
    """
    return round(haversine_dist(a.latitude, a.longitude, b.latitude, b.longitude))


def is_within_radius(user: Coordinate, center: Coordinate, radius_m: float) -> bool:
    # Round THEN compare: a point whose rounded distance equals the radius is inside
    return distance_meters(user, center) <= radius_m
