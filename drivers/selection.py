"""
Purpose: Driver pool and per-pass load derivation for dispatch.
What it does:
Filters the dispatchable driver pool and rebuilds, from scratch, the load/zone
bookkeeping a dispatch pass starts from:
- outbound: in-flight rides per driver, zone = zone of the latest in-flight pickup
- return: rides whose return leg is still open, per return driver

Rule: Counters are derived every pass, never carried over between passes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from rides.models import RideRequest
from routing.zones import Zone, classify
from .models import Driver, DriverStatus


@dataclass
class PassState:
    """
    Load and zone bookkeeping for exactly one dispatch pass.
    The matcher mutates it in place after each hit.
    """
    driver_load: Dict[str, int] = field(default_factory=dict)
    driver_zone: Dict[str, Zone] = field(default_factory=dict)

    def load_of(self, driver_id: str) -> int:
        return self.driver_load.get(driver_id, 0)

    def record(self, driver_id: str, zone: Zone) -> None:
        self.driver_zone[driver_id] = zone
        self.driver_load[driver_id] = self.load_of(driver_id) + 1


def filter_eligible_drivers(drivers: Iterable[Driver]) -> List[Driver]:
    """
    Returns only drivers who are available and hold a bound vehicle.
    A driver without a vehicle can never be matched.
    """
    eligible = []

    for driver in drivers:
        if driver.status != DriverStatus.AVAILABLE:
            continue

        if not driver.has_vehicle:
            continue

        eligible.append(driver)

    return eligible


def derive_pass_state(in_flight_rides: Iterable[RideRequest]) -> PassState:
    """
    Starting load/zone per driver from the outbound rides already bound to them.
    Rides are expected oldest-first; the most recent pickup sets the driver's zone.
    """
    state = PassState()

    for ride in in_flight_rides:
        if ride.driver is None:
            continue
        state.record(ride.driver.driver_id, classify(ride.student.address))

    return state


def derive_return_load(return_rides: Iterable[RideRequest]) -> Dict[str, int]:
    """Open return legs per return driver (return_driver set, not yet returned)."""
    load: Dict[str, int] = {}

    for ride in return_rides:
        if not ride.return_in_flight:
            continue
        driver_id = ride.return_driver.driver_id
        load[driver_id] = load.get(driver_id, 0) + 1

    return load
