"""
Purpose: Driver <-> vehicle pairing for a shift.
What it does:
- bind_vehicle: driver takes a vehicle; both records updated in one batch
  (switching cars releases the previous one in the same batch; passengers
  already held move to the new car only if they fit its seats)
- release_vehicle: driver signs off; both records cleared, driver offline
- set_driver_availability: available <-> offline for a driver holding a vehicle

Rule: Driver.current_vehicle_id and Vehicle.current_driver_id are one logical
record. They are never written separately.
"""

from __future__ import annotations

import logging

from dataclasses import replace
from typing import List, Optional

from dispatch.candidate_filter import CapacityExceededError
from dispatch.state_machines.driver_state import DriverStateException
from dispatch.state_machines.ride_state import RideLifecycle, Transition
from notifications.notifier import Notifier
from rides.models import DriverSnapshot, RideStatus
from rides.queries import DRIVERS, RIDES, VEHICLES, assigned_to, get_driver, get_vehicle, load_rides, returning_with
from rides.store import DocumentStore, WriteBatch
from .models import Driver, DriverStatus, Vehicle, VehicleStatus

logger = logging.getLogger(__name__)


def _round_in_progress(driver: Driver) -> bool:
    return driver.active_round is not None and driver.active_round.completed_at is None


def _stage_vehicle_release(batch: WriteBatch, vehicle_id: str, driver_id: str) -> None:
    batch.update(
        VEHICLES,
        vehicle_id,
        {"status": VehicleStatus.AVAILABLE.value, "current_driver_id": None, "current_driver_name": None},
        expected={"current_driver_id": driver_id},
    )


def _moved_to(snapshot: DriverSnapshot, vehicle: Vehicle) -> DriverSnapshot:
    return replace(
        snapshot,
        vehicle_id=vehicle.id,
        vehicle_name=vehicle.name,
        vehicle_color=vehicle.color,
        plate_number=vehicle.plate_number,
        capacity=vehicle.capacity,
    )


def _stage_held_rides_move(store: DocumentStore, batch: WriteBatch, driver: Driver, vehicle: Vehicle) -> None:
    """
    Rides the driver already holds move with the driver to the new vehicle,
    provided they fit. Outbound and return seats are counted separately.
    """
    outbound = load_rides(store, assigned_to(driver.id))
    returning = load_rides(store, returning_with(driver.id))

    for leg, held in (("outbound", outbound), ("return", returning)):
        if len(held) > vehicle.capacity:
            raise CapacityExceededError(
                f"Driver {driver.id} holds {len(held)} {leg} passenger(s), "
                f"vehicle {vehicle.id} seats {vehicle.capacity}"
            )

    for ride in outbound:
        batch.update(
            RIDES,
            ride.id,
            {"driver": _moved_to(ride.driver, vehicle).to_doc()},
            expected={"status": ride.status.value},
        )
    for ride in returning:
        batch.update(
            RIDES,
            ride.id,
            {"return_driver": _moved_to(ride.return_driver, vehicle).to_doc()},
            expected={"returned_at": None},
        )


def bind_vehicle(store: DocumentStore, driver_id: str, vehicle_id: str) -> Driver:
    """
    Binds a vehicle to a driver and marks the driver available.
    Switching cars is rejected (CapacityExceededError) when the passengers the
    driver already holds do not fit the new one; otherwise they move along.
    """
    with store.transaction():
        driver = get_driver(store, driver_id)
        vehicle = get_vehicle(store, vehicle_id)

        if _round_in_progress(driver):
            raise DriverStateException(f"Driver {driver.id} cannot change vehicle during an active round")

        if vehicle.status == VehicleStatus.MAINTENANCE:
            raise DriverStateException(f"Vehicle {vehicle.id} is under maintenance")

        if vehicle.current_driver_id and vehicle.current_driver_id != driver.id:
            raise DriverStateException(f"Vehicle {vehicle.id} is in use by {vehicle.current_driver_name or vehicle.current_driver_id}")

        batch = store.batch()

        if driver.current_vehicle_id and driver.current_vehicle_id != vehicle.id:
            _stage_held_rides_move(store, batch, driver, vehicle)
            _stage_vehicle_release(batch, driver.current_vehicle_id, driver.id)

        batch.update(
            VEHICLES,
            vehicle.id,
            {"status": VehicleStatus.IN_USE.value, "current_driver_id": driver.id, "current_driver_name": driver.name},
            expected={"current_driver_id": vehicle.current_driver_id},
        )
        batch.update(
            DRIVERS,
            driver.id,
            {
                "current_vehicle_id": vehicle.id,
                "vehicle_name": vehicle.name,
                "vehicle_color": vehicle.color,
                "plate_number": vehicle.plate_number,
                "capacity": vehicle.capacity,
                "status": DriverStatus.AVAILABLE.value,
            },
            expected={"current_vehicle_id": driver.current_vehicle_id},
        )
        batch.commit()

    logger.info("Driver %s bound to vehicle %s", driver.id, vehicle.id)
    return get_driver(store, driver_id)


def _plan_hand_back(lifecycle: RideLifecycle, driver_id: str) -> List[Transition]:
    """Rides held by a driver who leaves the pool go back to it (not yet started ones only)."""
    outbound = [
        lifecycle.plan_unassign(ride)
        for ride in load_rides(lifecycle.store, assigned_to(driver_id))
        if ride.status == RideStatus.ASSIGNED
    ]
    returning = [
        lifecycle.plan_clear_return(ride)
        for ride in load_rides(lifecycle.store, returning_with(driver_id))
        if ride.return_started_at is None
    ]
    return outbound + returning


def release_vehicle(store: DocumentStore, driver_id: str, notifier: Optional[Notifier] = None) -> Driver:
    """
    Clears the pairing and takes the driver offline. Rejected mid-round.
    Rides assigned but not started are handed back to the dispatch pool.
    """
    lifecycle = RideLifecycle(store, notifier)

    with store.transaction():
        driver = get_driver(store, driver_id)

        if _round_in_progress(driver):
            raise DriverStateException(f"Driver {driver.id} must complete the active round before releasing the vehicle")

        transitions = _plan_hand_back(lifecycle, driver.id)

        batch = store.batch()
        for transition in transitions:
            transition.stage(batch)

        if driver.current_vehicle_id:
            _stage_vehicle_release(batch, driver.current_vehicle_id, driver.id)

        batch.update(
            DRIVERS,
            driver.id,
            {
                "current_vehicle_id": None,
                "vehicle_name": None,
                "vehicle_color": None,
                "plate_number": None,
                "capacity": 0,
                "status": DriverStatus.OFFLINE.value,
                "active_round": None,
            },
            expected={"current_vehicle_id": driver.current_vehicle_id},
        )
        batch.commit()

    lifecycle.send_notifications(transitions)
    logger.info("Driver %s released vehicle %s (%d ride(s) handed back)", driver.id, driver.current_vehicle_id, len(transitions))
    return get_driver(store, driver_id)


def set_driver_availability(
    store: DocumentStore,
    driver_id: str,
    available: bool,
    notifier: Optional[Notifier] = None,
) -> Driver:
    lifecycle = RideLifecycle(store, notifier)
    transitions: List[Transition] = []

    with store.transaction():
        driver = get_driver(store, driver_id)

        if _round_in_progress(driver):
            raise DriverStateException(f"Driver {driver.id} is in an active round")
        if available and not driver.has_vehicle:
            raise DriverStateException(f"Driver {driver.id} has no vehicle bound")

        status = DriverStatus.AVAILABLE if available else DriverStatus.OFFLINE
        if not available:
            transitions = _plan_hand_back(lifecycle, driver.id)

        batch = store.batch()
        for transition in transitions:
            transition.stage(batch)
        batch.update(DRIVERS, driver.id, {"status": status.value}, expected={"status": driver.status.value})
        batch.commit()

    lifecycle.send_notifications(transitions)
    logger.info("Driver %s is now %s", driver.id, status.value)
    return get_driver(store, driver_id)
