"""
Purpose: Domain models for the ride requests capability.
What it does:
- Defines the persisted RideRequest record and its lifecycle status enum
- Defines the immutable snapshots denormalised onto a ride at assignment time:
    - PassengerSnapshot (student identity + display fields + optional coordinates)
    - DriverSnapshot (driver identity + bound vehicle fields + capacity)
- Converts to/from plain store documents (datetimes as ISO strings)

Rule: No store access, no transition logic. Models only.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from drivers.models import Driver

LatLng = Tuple[float, float]


class RideStatus(str, Enum):
    REQUESTED = "requested"
    ASSIGNED = "assigned"
    DRIVER_EN_ROUTE = "driver_en_route"
    ARRIVING = "arriving"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})
NON_TERMINAL_STATUSES = frozenset(set(RideStatus) - TERMINAL_STATUSES)

# Statuses that count against a driver's capacity for the outbound round.
IN_FLIGHT_STATUSES = frozenset({RideStatus.ASSIGNED, RideStatus.DRIVER_EN_ROUTE, RideStatus.ARRIVING})

# `driver` is set if and only if the status is one of these.
DRIVER_BOUND_STATUSES = IN_FLIGHT_STATUSES | {RideStatus.COMPLETED}


class RideDirection(str, Enum):
    """
    PICKUP is the outbound round (home -> venue), DROPOFF the return round (venue -> home).
    """
    PICKUP = "pickup"
    DROPOFF = "dropoff"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dt_to_doc(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def dt_from_doc(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def latlng_from_doc(value: Any) -> Optional[LatLng]:
    if value is None:
        return None
    return (float(value[0]), float(value[1]))


@dataclass(frozen=True)
class PassengerSnapshot:
    """
    A student's display fields captured when the request was submitted.
    """
    student_id: str
    name: str
    address: str
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[LatLng] = None

    def to_doc(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "name": self.name,
            "address": self.address,
            "avatar_url": self.avatar_url,
            "phone": self.phone,
            "location": list(self.location) if self.location else None,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> PassengerSnapshot:
        return cls(
            student_id=doc["student_id"],
            name=doc.get("name") or "Student",
            address=doc.get("address") or "",
            avatar_url=doc.get("avatar_url"),
            phone=doc.get("phone"),
            location=latlng_from_doc(doc.get("location")),
        )


@dataclass(frozen=True)
class DriverSnapshot:
    """
    The driver and vehicle fields copied onto a ride when it is assigned.
    Never re-read live driver fields through a snapshot; take a new one instead.
    """
    driver_id: str
    name: str
    vehicle_id: str
    capacity: int
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    vehicle_name: Optional[str] = None
    vehicle_color: Optional[str] = None
    plate_number: Optional[str] = None
    captured_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_driver(cls, driver: "Driver", now: Optional[datetime] = None) -> DriverSnapshot:
        if not driver.current_vehicle_id:
            raise ValueError(f"Driver {driver.id} has no bound vehicle to snapshot")

        return cls(
            driver_id=driver.id,
            name=driver.name,
            vehicle_id=driver.current_vehicle_id,
            capacity=driver.capacity,
            phone=driver.phone,
            avatar_url=driver.avatar_url,
            vehicle_name=driver.vehicle_name,
            vehicle_color=driver.vehicle_color,
            plate_number=driver.plate_number,
            captured_at=now or utc_now(),
        )

    def to_doc(self) -> Dict[str, Any]:
        return {
            "driver_id": self.driver_id,
            "name": self.name,
            "vehicle_id": self.vehicle_id,
            "capacity": self.capacity,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
            "vehicle_name": self.vehicle_name,
            "vehicle_color": self.vehicle_color,
            "plate_number": self.plate_number,
            "captured_at": dt_to_doc(self.captured_at),
        }

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> Optional[DriverSnapshot]:
        if not doc:
            return None
        return cls(
            driver_id=doc["driver_id"],
            name=doc.get("name") or "Driver",
            vehicle_id=doc["vehicle_id"],
            capacity=int(doc.get("capacity") or 0),
            phone=doc.get("phone"),
            avatar_url=doc.get("avatar_url"),
            vehicle_name=doc.get("vehicle_name"),
            vehicle_color=doc.get("vehicle_color"),
            plate_number=doc.get("plate_number"),
            captured_at=dt_from_doc(doc.get("captured_at")) or utc_now(),
        )


@dataclass(frozen=True)
class RideRequest:
    """
    One student's ride for one event. The same record carries both the outbound
    round (`driver`) and, once `ready_to_leave` is set, the return round (`return_driver`).
    Records are never deleted; they end in COMPLETED or CANCELLED.
    """
    id: str
    student: PassengerSnapshot
    time_slot: str
    event_date: str
    created_at: datetime
    status: RideStatus = RideStatus.REQUESTED
    driver: Optional[DriverSnapshot] = None
    return_driver: Optional[DriverSnapshot] = None
    ready_to_leave: bool = False
    peers: List[PassengerSnapshot] = field(default_factory=list)
    notes: str = ""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    return_started_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None

    @staticmethod
    def new(
        student: PassengerSnapshot,
        time_slot: str,
        event_date: Optional[str] = None,
        notes: str = "",
        now: Optional[datetime] = None,
    ) -> RideRequest:
        now = now or utc_now()
        return RideRequest(
            id=str(uuid.uuid4()),
            student=student,
            time_slot=time_slot,
            event_date=event_date or now.date().isoformat(),
            created_at=now,
            notes=notes,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def needs_return_driver(self) -> bool:
        return self.ready_to_leave and self.return_driver is None and self.status == RideStatus.COMPLETED

    @property
    def return_in_flight(self) -> bool:
        return self.return_driver is not None and self.returned_at is None

    def with_status(self, status: RideStatus) -> RideRequest:
        return replace(self, status=status)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "student": self.student.to_doc(),
            "time_slot": self.time_slot,
            "event_date": self.event_date,
            "created_at": dt_to_doc(self.created_at),
            "status": self.status.value,
            "driver": self.driver.to_doc() if self.driver else None,
            "return_driver": self.return_driver.to_doc() if self.return_driver else None,
            "ready_to_leave": self.ready_to_leave,
            "peers": [peer.to_doc() for peer in self.peers],
            "notes": self.notes,
            "started_at": dt_to_doc(self.started_at),
            "completed_at": dt_to_doc(self.completed_at),
            "return_started_at": dt_to_doc(self.return_started_at),
            "returned_at": dt_to_doc(self.returned_at),
        }

    @classmethod
    def from_doc(cls, doc_id: str, doc: Dict[str, Any]) -> RideRequest:
        return cls(
            id=doc_id,
            student=PassengerSnapshot.from_doc(doc["student"]),
            time_slot=doc.get("time_slot") or "",
            event_date=doc.get("event_date") or "",
            created_at=dt_from_doc(doc.get("created_at")) or utc_now(),
            status=RideStatus(doc.get("status", RideStatus.REQUESTED.value)),
            driver=DriverSnapshot.from_doc(doc.get("driver")),
            return_driver=DriverSnapshot.from_doc(doc.get("return_driver")),
            ready_to_leave=bool(doc.get("ready_to_leave", False)),
            peers=[PassengerSnapshot.from_doc(peer) for peer in doc.get("peers") or []],
            notes=doc.get("notes") or "",
            started_at=dt_from_doc(doc.get("started_at")),
            completed_at=dt_from_doc(doc.get("completed_at")),
            return_started_at=dt_from_doc(doc.get("return_started_at")),
            returned_at=dt_from_doc(doc.get("returned_at")),
        )
