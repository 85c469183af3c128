"""
Purpose: Core data models for the drivers domain.
What it does:
Defines the structure of a Driver, the Vehicle they are bound to for a shift,
and the ActiveRound a driver persists once they accept a round of passengers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from rides.models import LatLng, RideDirection, dt_from_doc, dt_to_doc, latlng_from_doc
from routing.waypoints import Waypoint


class DriverStatus(str, Enum):
    """
    AVAILABLE drivers with a bound vehicle are the dispatch pool.
    ACTIVE is implicit while a round is in progress (never matched).
    """
    AVAILABLE = "available"
    ACTIVE = "active"
    OFFLINE = "offline"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in-use"
    MAINTENANCE = "maintenance"


@dataclass(frozen=True)
class ActiveRound:
    """
    The round a driver accepted, persisted on the driver document so a client
    can rehydrate after a reload. `waypoints` holds the last saved visit progress.
    """
    round_id: str
    direction: RideDirection
    ride_ids: Tuple[str, ...]
    waypoints: Tuple[Waypoint, ...]
    vehicle_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    distance_km: float = 0.0
    passengers: int = 0

    def to_doc(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "direction": self.direction.value,
            "ride_ids": list(self.ride_ids),
            "waypoints": [waypoint.to_doc() for waypoint in self.waypoints],
            "vehicle_id": self.vehicle_id,
            "started_at": dt_to_doc(self.started_at),
            "completed_at": dt_to_doc(self.completed_at),
            "distance_km": self.distance_km,
            "passengers": self.passengers,
        }

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> Optional[ActiveRound]:
        if not doc:
            return None
        return cls(
            round_id=doc["round_id"],
            direction=RideDirection(doc["direction"]),
            ride_ids=tuple(doc.get("ride_ids") or ()),
            waypoints=tuple(Waypoint.from_doc(waypoint) for waypoint in doc.get("waypoints") or ()),
            vehicle_id=doc["vehicle_id"],
            started_at=dt_from_doc(doc["started_at"]),
            completed_at=dt_from_doc(doc.get("completed_at")),
            distance_km=float(doc.get("distance_km") or 0.0),
            passengers=int(doc.get("passengers") or 0),
        )


@dataclass(frozen=True)
class Driver:
    """
    A stateless representation of a driver document at a specific point in time.
    Vehicle fields mirror the currently bound vehicle and are cleared on release.
    """
    id: str
    name: str
    status: DriverStatus = DriverStatus.OFFLINE

    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    address: Optional[str] = None
    location: Optional[LatLng] = None
    home_location: Optional[LatLng] = None

    current_vehicle_id: Optional[str] = None
    vehicle_name: Optional[str] = None
    vehicle_color: Optional[str] = None
    plate_number: Optional[str] = None
    capacity: int = 0

    active_round: Optional[ActiveRound] = None

    rides_completed_today: int = 0
    total_students_today: int = 0
    total_distance_today: float = 0.0
    stats_date: Optional[str] = None

    @classmethod
    def new(
        cls,
        driver_id: str,
        name: str,
        status: str | DriverStatus = DriverStatus.OFFLINE,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        location: Optional[LatLng] = None,
        home_location: Optional[LatLng] = None,
    ) -> Driver:
        if isinstance(status, str):
            status = DriverStatus(status)

        return cls(
            id=driver_id,
            name=name,
            status=status,
            phone=phone,
            address=address,
            location=location,
            home_location=home_location,
        )

    @property
    def has_vehicle(self) -> bool:
        return bool(self.current_vehicle_id)

    @property
    def is_dispatchable(self) -> bool:
        return self.status == DriverStatus.AVAILABLE and self.has_vehicle

    def to_doc(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
            "address": self.address,
            "location": list(self.location) if self.location else None,
            "home_location": list(self.home_location) if self.home_location else None,
            "current_vehicle_id": self.current_vehicle_id,
            "vehicle_name": self.vehicle_name,
            "vehicle_color": self.vehicle_color,
            "plate_number": self.plate_number,
            "capacity": self.capacity,
            "active_round": self.active_round.to_doc() if self.active_round else None,
            "rides_completed_today": self.rides_completed_today,
            "total_students_today": self.total_students_today,
            "total_distance_today": self.total_distance_today,
            "stats_date": self.stats_date,
        }

    @classmethod
    def from_doc(cls, doc_id: str, doc: Dict[str, Any]) -> Driver:
        return cls(
            id=doc_id,
            name=doc.get("name") or "Driver",
            status=DriverStatus(doc.get("status", DriverStatus.OFFLINE.value)),
            phone=doc.get("phone"),
            avatar_url=doc.get("avatar_url"),
            address=doc.get("address"),
            location=latlng_from_doc(doc.get("location")),
            home_location=latlng_from_doc(doc.get("home_location")),
            current_vehicle_id=doc.get("current_vehicle_id"),
            vehicle_name=doc.get("vehicle_name"),
            vehicle_color=doc.get("vehicle_color"),
            plate_number=doc.get("plate_number"),
            capacity=int(doc.get("capacity") or 0),
            active_round=ActiveRound.from_doc(doc.get("active_round")),
            rides_completed_today=int(doc.get("rides_completed_today") or 0),
            total_students_today=int(doc.get("total_students_today") or 0),
            total_distance_today=float(doc.get("total_distance_today") or 0.0),
            stats_date=doc.get("stats_date"),
        )


@dataclass(frozen=True)
class Vehicle:
    id: str
    name: str
    capacity: int
    color: Optional[str] = None
    plate_number: Optional[str] = None
    status: VehicleStatus = VehicleStatus.AVAILABLE
    current_driver_id: Optional[str] = None
    current_driver_name: Optional[str] = None

    @classmethod
    def new(
        cls,
        vehicle_id: str,
        name: str,
        capacity: int,
        color: Optional[str] = None,
        plate_number: Optional[str] = None,
    ) -> Vehicle:
        if capacity < 1:
            raise ValueError(f"Vehicle {vehicle_id} capacity must be >= 1, got {capacity}")

        return cls(id=vehicle_id, name=name, capacity=capacity, color=color, plate_number=plate_number)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "capacity": self.capacity,
            "color": self.color,
            "plate_number": self.plate_number,
            "status": self.status.value,
            "current_driver_id": self.current_driver_id,
            "current_driver_name": self.current_driver_name,
        }

    @classmethod
    def from_doc(cls, doc_id: str, doc: Dict[str, Any]) -> Vehicle:
        return cls(
            id=doc_id,
            name=doc.get("name") or "Vehicle",
            capacity=int(doc.get("capacity") or 0),
            color=doc.get("color"),
            plate_number=doc.get("plate_number"),
            status=VehicleStatus(doc.get("status", VehicleStatus.AVAILABLE.value)),
            current_driver_id=doc.get("current_driver_id"),
            current_driver_name=doc.get("current_driver_name"),
        )
