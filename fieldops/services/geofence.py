"""
Geofence validation service.
Uses Haversine formula to calculate distance between points.
"""
import math
from typing import Optional, Dict
from ..config import settings


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    # Earth radius in meters
    R = 6371000

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def validate_location(
    point_lat: float,
    point_lng: float,
    target_lat: Optional[float],
    target_lng: Optional[float],
    accuracy_m: Optional[float] = None,
    radius_m: Optional[float] = None,
) -> Dict:
    """
    Compare a reading against a job-site target.

    The allowed radius is widened by the reported accuracy so a coarse fix
    next to the site is not flagged. Returns {valid, distance_m, message, accuracy_risk};
    valid is None when there is no target to compare against.
    """
    if target_lat is None or target_lng is None:
        return {
            "valid": None,
            "distance_m": None,
            "message": "No site location to validate against",
            "accuracy_risk": None,
        }

    allowed = float(radius_m or settings.geo_radius_m_default)
    effective_radius = allowed + float(accuracy_m or 0)
    distance = haversine_distance(point_lat, point_lng, float(target_lat), float(target_lng))
    valid = distance <= effective_radius
    accuracy_risk = accuracy_m is not None and accuracy_m > settings.gps_accuracy_risk_m

    if valid:
        message = "Location verified successfully"
    else:
        message = f"Location is {round(distance - effective_radius)}m outside the allowed area"

    return {
        "valid": valid,
        "distance_m": round(distance, 1),
        "message": message,
        "accuracy_risk": accuracy_risk,
    }
