"""
Purpose: The driver's client-held workflow state machine.
What it does:

dashboard --assign_me--> preview --accept--> active --complete--> completed
preview --release--> dashboard
completed --assign_next--> preview
completed --done_for_today--> dashboard

Mapping to the persisted ride lifecycle (the store always wins on reload):
- preview   : no ride status change yet (rides are still `assigned`)
- active    : rides `driver_en_route` / `arriving`, or a return leg started
- completed : every ride in the round `completed` (or returned)
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Sequence

from drivers.models import Driver
from rides.models import RideDirection, RideRequest, RideStatus


class DriverStateException(Exception):
    """Raised when an invalid driver transition is attempted."""
    pass


class UnvisitedWaypointsError(DriverStateException):
    """
    Soft block: the round still has unvisited stops.
    Retry with an explicit confirmation to complete anyway.
    """

    def __init__(self, unvisited: int):
        super().__init__(f"{unvisited} stop(s) not yet visited; confirm to complete anyway")
        self.unvisited = unvisited


class WorkflowState(str, Enum):
    DASHBOARD = "dashboard"
    PREVIEW = "preview"
    ACTIVE = "active"
    COMPLETED = "completed"


ALLOWED_TRANSITIONS: Dict[WorkflowState, frozenset] = {
    WorkflowState.DASHBOARD: frozenset({WorkflowState.PREVIEW}),
    WorkflowState.PREVIEW: frozenset({WorkflowState.ACTIVE, WorkflowState.DASHBOARD}),
    WorkflowState.ACTIVE: frozenset({WorkflowState.COMPLETED}),
    WorkflowState.COMPLETED: frozenset({WorkflowState.PREVIEW, WorkflowState.DASHBOARD}),
}


def validate_transition(current: WorkflowState, target: WorkflowState) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise DriverStateException(f"Cannot go from {current.value} to {target.value}")


def ensure_dispatchable(driver: Driver) -> None:
    """A driver asking for work must be available and hold a vehicle."""
    if not driver.has_vehicle:
        raise DriverStateException(f"Driver {driver.id} has no vehicle bound")
    if not driver.is_dispatchable:
        raise DriverStateException(f"Driver {driver.id} is {driver.status.value}, not available")


def _ride_finished(ride: RideRequest, direction: RideDirection) -> bool:
    if direction == RideDirection.DROPOFF:
        return ride.returned_at is not None
    return ride.status in (RideStatus.COMPLETED, RideStatus.CANCELLED)


def rehydrate_state(driver: Driver, rides: Sequence[RideRequest]) -> WorkflowState:
    """
    Workflow state after a reload, derived only from the driver's active round
    and the persisted status of its rides.
    """
    active_round = driver.active_round
    if active_round is None:
        return WorkflowState.DASHBOARD

    if active_round.completed_at is not None:
        return WorkflowState.COMPLETED

    round_rides = [ride for ride in rides if ride.id in active_round.ride_ids]
    if round_rides and all(_ride_finished(ride, active_round.direction) for ride in round_rides):
        return WorkflowState.COMPLETED

    # Round accepted but nothing left to drive (every passenger removed): show the summary.
    if not round_rides:
        return WorkflowState.COMPLETED

    return WorkflowState.ACTIVE
