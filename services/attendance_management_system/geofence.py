# services/attendance_management_system/geofence.py
import math
from typing import Optional

EARTH_RADIUS_METERS = 6371000


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Haversine great-circle distance in meters.
    Inputs are not validated; callers check ranges before calling.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (math.sin(d_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    # Rounding can push `a` a hair outside [0, 1] for antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def within_geofence(
    student_lat: float,
    student_lon: float,
    anchor_lat: Optional[float],
    anchor_lon: Optional[float],
    radius_meters: float,
) -> bool:
    # Rooms without GPS metadata accept any location
    if anchor_lat is None or anchor_lon is None:
        return True
    return distance_meters(student_lat, student_lon, anchor_lat, anchor_lon) <= radius_meters
