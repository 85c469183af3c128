"""
Purpose: Great-circle distance helpers for route statistics.
What it does:
- haversine_km between two (lat, lng) points
- route_distance_km over an ordered waypoint list (legs without coordinates are skipped)
- estimate_minutes from a distance and an average city speed

Rule: Statistics only. No routing provider calls, no stop re-ordering.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

LatLng = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0


def haversine_km(point_a: LatLng, point_b: LatLng) -> float:
    lat1, lng1 = map(math.radians, point_a)
    lat2, lng2 = map(math.radians, point_b)

    delta_lat = lat2 - lat1
    delta_lng = lng2 - lng1
    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lng / 2) ** 2

    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def route_distance_km(waypoints: Sequence) -> float:
    """
    Sums the legs between consecutive waypoints that both carry coordinates.
    Accepts anything with a `coordinates` attribute returning (lat, lng) or None.
    """
    total = 0.0
    previous: Optional[LatLng] = None

    for waypoint in waypoints:
        current = waypoint.coordinates
        if current is None:
            continue
        if previous is not None:
            total += haversine_km(previous, current)
        previous = current

    return total


def estimate_minutes(distance_km: float, average_speed_kmh: float = 30.0) -> int:
    if average_speed_kmh <= 0:
        raise ValueError("average_speed_kmh must be > 0")
    return round(distance_km / average_speed_kmh * 60)
