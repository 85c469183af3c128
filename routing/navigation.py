"""
Purpose: Turn-by-turn navigation hand-off.
What it does:
Renders an ordered waypoint list into a single external directions URL
(Google Maps "dir" API shape). First waypoint is the origin, last is the
destination, everything in between becomes `waypoints=` joined by "|".
Waypoints without coordinates fall back to their address.

Rule: Builds a URL only. Opening it is the caller's (fire-and-forget) concern.
"""

from __future__ import annotations

from typing import Dict, Sequence
from urllib.parse import quote, urlencode

from .waypoints import Waypoint

GOOGLE_MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/"


def _location_param(waypoint: Waypoint) -> str:
    coordinates = waypoint.coordinates
    if coordinates is not None:
        return f"{coordinates[0]},{coordinates[1]}"
    return waypoint.address or waypoint.name


def build_navigation_url(
    waypoints: Sequence[Waypoint],
    base_url: str = GOOGLE_MAPS_DIRECTIONS_URL,
    travel_mode: str = "driving",
) -> str:
    """
    Returns "" when there are fewer than two waypoints (nothing to navigate).
    """
    if len(waypoints) < 2:
        return ""

    params: Dict[str, str] = {
        "api": "1",
        "origin": _location_param(waypoints[0]),
        "destination": _location_param(waypoints[-1]),
    }

    middle = waypoints[1:-1]
    if middle:
        params["waypoints"] = "|".join(_location_param(waypoint) for waypoint in middle)

    params["travelmode"] = travel_mode

    return f"{base_url}?{urlencode(params, quote_via=quote, safe=',')}"
