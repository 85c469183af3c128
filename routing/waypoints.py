"""
Purpose: Ordered stop list for one driver round.
What it does:
- build_waypoints: origin -> passenger stops (assignment order) -> destination
    PICKUP:  [start=origin, pickup x N, end=venue]
    DROPOFF: [start=venue, dropoff x N, end=last passenger's home]
- toggle_visited / all_stops_visited for the driver's confirmation flow
- reconcile_waypoints merges a rebuilt list into the current one without
  losing already-visited stops (coordinator edits mid-route)

Rule: Pure and deterministic. `visited` only flips through toggle_visited,
never from location.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rides.models import LatLng, PassengerSnapshot, RideDirection


class WaypointType(str, Enum):
    START = "start"
    PICKUP = "pickup"
    DROPOFF = "dropoff"
    END = "end"


@dataclass(frozen=True)
class Place:
    """
    A fixed origin or destination (venue, driver's current position, driver's home).
    """
    name: str
    address: Optional[str] = None
    location: Optional[LatLng] = None


@dataclass(frozen=True)
class Waypoint:
    name: str
    type: WaypointType
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    student_id: Optional[str] = None
    visited: bool = False

    @property
    def coordinates(self) -> Optional[LatLng]:
        if self.lat is None or self.lng is None:
            return None
        return (self.lat, self.lng)

    @property
    def is_stop(self) -> bool:
        return self.type in (WaypointType.PICKUP, WaypointType.DROPOFF)

    @property
    def key(self) -> Tuple[WaypointType, Optional[str]]:
        return (self.type, self.student_id)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "lat": self.lat,
            "lng": self.lng,
            "address": self.address,
            "student_id": self.student_id,
            "visited": self.visited,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> Waypoint:
        return cls(
            name=doc["name"],
            type=WaypointType(doc["type"]),
            lat=doc.get("lat"),
            lng=doc.get("lng"),
            address=doc.get("address"),
            student_id=doc.get("student_id"),
            visited=bool(doc.get("visited", False)),
        )


def _from_place(place: Place, waypoint_type: WaypointType) -> Waypoint:
    lat, lng = place.location if place.location else (None, None)
    return Waypoint(name=place.name, type=waypoint_type, lat=lat, lng=lng, address=place.address)


def _from_passenger(passenger: PassengerSnapshot, waypoint_type: WaypointType) -> Waypoint:
    lat, lng = passenger.location if passenger.location else (None, None)
    return Waypoint(
        name=passenger.name,
        type=waypoint_type,
        lat=lat,
        lng=lng,
        address=passenger.address,
        student_id=passenger.student_id,
    )


def build_waypoints(
    origin: Place,
    passengers: Sequence[PassengerSnapshot],
    destination: Place,
    direction: RideDirection,
) -> List[Waypoint]:
    """
    Builds the ordered route for a round. Passengers are visited in the order given.

    For DROPOFF the route terminus is the last passenger's home, so that passenger
    appears both as the final dropoff and as the END waypoint. `destination` is only
    used for DROPOFF when there are no passengers.
    """
    if direction == RideDirection.PICKUP:
        waypoints = [_from_place(origin, WaypointType.START)]
        waypoints.extend(_from_passenger(passenger, WaypointType.PICKUP) for passenger in passengers)
        waypoints.append(_from_place(destination, WaypointType.END))
        return waypoints

    waypoints = [_from_place(origin, WaypointType.START)]
    waypoints.extend(_from_passenger(passenger, WaypointType.DROPOFF) for passenger in passengers)

    if passengers:
        waypoints.append(_from_passenger(passengers[-1], WaypointType.END))
    else:
        waypoints.append(_from_place(destination, WaypointType.END))

    return waypoints


def toggle_visited(waypoints: Sequence[Waypoint], index: int) -> List[Waypoint]:
    if index < 0 or index >= len(waypoints):
        raise IndexError(f"No waypoint at index {index}")

    updated = list(waypoints)
    updated[index] = replace(updated[index], visited=not updated[index].visited)
    return updated


def all_stops_visited(waypoints: Sequence[Waypoint]) -> bool:
    """
    True when every pickup/dropoff has been confirmed. START and END are not counted.
    """
    return all(waypoint.visited for waypoint in waypoints if waypoint.is_stop)


def reconcile_waypoints(current: Sequence[Waypoint], rebuilt: Sequence[Waypoint]) -> List[Waypoint]:
    """
    Merges a freshly built route into the one the driver is working through.

    - stops present in both keep their `visited` flag
    - new stops arrive unvisited, in the rebuilt order
    - visited stops whose passenger was removed are kept, right after START
    """
    visited_keys = {waypoint.key for waypoint in current if waypoint.visited}
    rebuilt_keys = {waypoint.key for waypoint in rebuilt}

    merged = [
        replace(waypoint, visited=True) if waypoint.key in visited_keys else waypoint
        for waypoint in rebuilt
    ]

    retained = [
        waypoint for waypoint in current
        if waypoint.visited and waypoint.is_stop and waypoint.key not in rebuilt_keys
    ]
    if not retained or not merged:
        return merged

    return merged[:1] + retained + merged[1:]
