#Marks routing as a package.
#Re-exports the zone classifier, the waypoint builder and the navigation URL
#builder so other modules import from routing without knowing internal file names.
#No business logic.

from .zones import Zone, classify, DEFAULT_ZONE
from .waypoints import Place, Waypoint, WaypointType, build_waypoints, reconcile_waypoints
from .navigation import build_navigation_url
from .distance import haversine_km, route_distance_km, estimate_minutes

__all__ = [
    "Zone",
    "classify",
    "DEFAULT_ZONE",
    "Place",
    "Waypoint",
    "WaypointType",
    "build_waypoints",
    "reconcile_waypoints",
    "build_navigation_url",
    "haversine_km",
    "route_distance_km",
    "estimate_minutes",
]
