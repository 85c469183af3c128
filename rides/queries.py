"""
Purpose: Named live-query predicates and typed loaders over the document store.
What it does:
- Predicates (plain document -> bool) shared by subscribe() and query():
    pending requests, rides waiting for a return driver, in-flight rides,
    dispatchable drivers
- Loaders that turn DocumentSnapshots into RideRequest / Driver / Vehicle models
- Stable ordering: requests oldest-first (created_at, then id)

Rule: Read-only. Nothing here writes to the store.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from drivers.models import Driver, DriverStatus, Vehicle
from rides.models import IN_FLIGHT_STATUSES, RideRequest, RideStatus
from rides.store import DocumentStore, DocumentSnapshot, Predicate

RIDES = "rides"
DRIVERS = "drivers"
VEHICLES = "vehicles"

_IN_FLIGHT_VALUES = frozenset(status.value for status in IN_FLIGHT_STATUSES)


# --- Predicates ---

def is_pending_request(doc: Dict[str, Any]) -> bool:
    return doc.get("status") == RideStatus.REQUESTED.value and not doc.get("driver")


def needs_return_driver(doc: Dict[str, Any]) -> bool:
    return (
        bool(doc.get("ready_to_leave"))
        and not doc.get("return_driver")
        and doc.get("status") == RideStatus.COMPLETED.value
    )


def is_in_flight(doc: Dict[str, Any]) -> bool:
    return doc.get("status") in _IN_FLIGHT_VALUES


def is_return_in_flight(doc: Dict[str, Any]) -> bool:
    return bool(doc.get("return_driver")) and not doc.get("returned_at")


def is_available_driver(doc: Dict[str, Any]) -> bool:
    return doc.get("status") == DriverStatus.AVAILABLE.value and bool(doc.get("current_vehicle_id"))


def assigned_to(driver_id: str) -> Predicate:
    def predicate(doc: Dict[str, Any]) -> bool:
        return is_in_flight(doc) and (doc.get("driver") or {}).get("driver_id") == driver_id
    return predicate


def returning_with(driver_id: str) -> Predicate:
    def predicate(doc: Dict[str, Any]) -> bool:
        return is_return_in_flight(doc) and (doc.get("return_driver") or {}).get("driver_id") == driver_id
    return predicate


# --- Loaders ---

def oldest_first(rides: List[RideRequest]) -> List[RideRequest]:
    return sorted(rides, key=lambda ride: (ride.created_at, ride.id))


def rides_from_snapshots(snapshots: List[DocumentSnapshot]) -> List[RideRequest]:
    return oldest_first([RideRequest.from_doc(snap.id, snap.data) for snap in snapshots])


def drivers_from_snapshots(snapshots: List[DocumentSnapshot]) -> List[Driver]:
    # Pool order is stable (by id) so tier "first driver" picks are deterministic.
    return sorted((Driver.from_doc(snap.id, snap.data) for snap in snapshots), key=lambda driver: driver.id)


def load_rides(store: DocumentStore, predicate: Optional[Predicate] = None) -> List[RideRequest]:
    return rides_from_snapshots(store.query(RIDES, predicate))


def load_drivers(store: DocumentStore, predicate: Optional[Predicate] = None) -> List[Driver]:
    return drivers_from_snapshots(store.query(DRIVERS, predicate))


def get_ride(store: DocumentStore, ride_id: str) -> RideRequest:
    snap = store.get(RIDES, ride_id)
    return RideRequest.from_doc(snap.id, snap.data)


def get_driver(store: DocumentStore, driver_id: str) -> Driver:
    snap = store.get(DRIVERS, driver_id)
    return Driver.from_doc(snap.id, snap.data)


def get_vehicle(store: DocumentStore, vehicle_id: str) -> Vehicle:
    snap = store.get(VEHICLES, vehicle_id)
    return Vehicle.from_doc(snap.id, snap.data)
