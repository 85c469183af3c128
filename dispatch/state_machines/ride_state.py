"""
Purpose: The authoritative ride lifecycle.
What it does:

requested --assign--> assigned --start--> driver_en_route --arrive--> arriving --complete--> [completed]
assigned --unassign--> requested          (demotion, clears the driver snapshot)
driver_en_route --complete--> [completed] (rounds may finish without an arrival announcement)
any non-terminal --cancel--> [cancelled]

The return leg rides on a completed record without changing its status:
mark_ready_to_leave -> assign_return -> start_return -> complete_return
(ready_to_leave, return_driver, return_started_at, returned_at)

Every transition is validated first (RideStateException, nothing written) and then
written as one conditional update on the status it was validated against, so a
concurrent writer turns into a WriteConflict instead of a lost update.

Transitions can be planned one by one and committed together in one batch
(bulk assign, a driver accepting a whole round).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from drivers.models import Driver
from notifications.notifier import NotificationType, Notifier, NullNotifier, notify_safely
from rides.models import (
    DriverSnapshot,
    PassengerSnapshot,
    RideRequest,
    RideStatus,
    TERMINAL_STATUSES,
    dt_to_doc,
    utc_now,
)
from rides.queries import RIDES, get_ride
from rides.store import DocumentStore, WriteBatch

logger = logging.getLogger(__name__)


class RideStateException(Exception):
    """Raised when an invalid ride transition is attempted."""
    pass


ALLOWED_TRANSITIONS: Dict[RideStatus, frozenset] = {
    RideStatus.REQUESTED: frozenset({RideStatus.ASSIGNED, RideStatus.CANCELLED}),
    RideStatus.ASSIGNED: frozenset({RideStatus.DRIVER_EN_ROUTE, RideStatus.REQUESTED, RideStatus.CANCELLED}),
    RideStatus.DRIVER_EN_ROUTE: frozenset({RideStatus.ARRIVING, RideStatus.COMPLETED, RideStatus.CANCELLED}),
    RideStatus.ARRIVING: frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED}),
    RideStatus.COMPLETED: frozenset(),
    RideStatus.CANCELLED: frozenset(),
}


def validate_transition(ride: RideRequest, target: RideStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[ride.status]:
        raise RideStateException(f"Cannot transition ride {ride.id} from {ride.status.value} to {target.value}")


Notification = Tuple[NotificationType, str, Dict[str, Any]]


@dataclass(frozen=True)
class Transition:
    """
    One validated, not yet written, update of one ride document.
    `expected` holds the fields the write is conditional on.
    """
    ride: RideRequest
    patch: Dict[str, Any]
    expected: Dict[str, Any]
    notifications: Tuple[Notification, ...] = ()

    def stage(self, batch: WriteBatch) -> None:
        batch.update(RIDES, self.ride.id, self.patch, self.expected)


def _snapshot(driver: Union[Driver, DriverSnapshot], now: datetime) -> DriverSnapshot:
    if isinstance(driver, DriverSnapshot):
        return driver
    try:
        return DriverSnapshot.from_driver(driver, now)
    except ValueError as e:
        raise RideStateException(str(e)) from e


def _ride_payload(ride: RideRequest, **extra: Any) -> Dict[str, Any]:
    payload = {"ride_id": ride.id, "student_name": ride.student.name, "time_slot": ride.time_slot}
    payload.update(extra)
    return payload


class RideLifecycle:
    """
    Performs lifecycle transitions against the document store.
    """

    def __init__(self, store: DocumentStore, notifier: Optional[Notifier] = None):
        self.store = store
        self.notifier = notifier or NullNotifier()

    # --- Creation ---

    def create(
        self,
        student: PassengerSnapshot,
        time_slot: str,
        event_date: Optional[str] = None,
        notes: str = "",
        now: Optional[datetime] = None,
    ) -> RideRequest:
        if not student.address:
            raise RideStateException(f"Student {student.student_id} has no pickup address")

        ride = RideRequest.new(student, time_slot, event_date=event_date, notes=notes, now=now)
        self.store.create(RIDES, ride.to_doc(), ride.id)
        logger.info("Ride %s requested by %s for %s", ride.id, student.student_id, time_slot)
        return ride

    # --- Planning (validation only, no writes) ---

    def plan_assign(self, ride: RideRequest, driver: Union[Driver, DriverSnapshot], now: Optional[datetime] = None) -> Transition:
        if ride.status != RideStatus.REQUESTED or ride.driver is not None:
            raise RideStateException(f"Ride {ride.id} is already {ride.status.value}")
        validate_transition(ride, RideStatus.ASSIGNED)

        snapshot = _snapshot(driver, now or utc_now())
        return Transition(
            ride=ride,
            patch={"status": RideStatus.ASSIGNED.value, "driver": snapshot.to_doc()},
            expected={"status": RideStatus.REQUESTED.value, "driver": None},
            notifications=(
                (NotificationType.DRIVER_ASSIGNED, ride.student.student_id, _ride_payload(ride, driver_name=snapshot.name)),
                (NotificationType.STUDENTS_ASSIGNED, snapshot.driver_id, _ride_payload(ride)),
            ),
        )

    def plan_unassign(self, ride: RideRequest) -> Transition:
        validate_transition(ride, RideStatus.REQUESTED)
        notifications = [(NotificationType.UNASSIGNED_STUDENTS, ride.student.student_id, _ride_payload(ride))]
        if ride.driver is not None:
            notifications.append((NotificationType.UNASSIGNED_STUDENTS, ride.driver.driver_id, _ride_payload(ride)))

        return Transition(
            ride=ride,
            patch={"status": RideStatus.REQUESTED.value, "driver": None},
            expected={"status": RideStatus.ASSIGNED.value},
            notifications=tuple(notifications),
        )

    def plan_start(
        self,
        ride: RideRequest,
        peers: Sequence[PassengerSnapshot] = (),
        now: Optional[datetime] = None,
    ) -> Transition:
        validate_transition(ride, RideStatus.DRIVER_EN_ROUTE)
        return Transition(
            ride=ride,
            patch={
                "status": RideStatus.DRIVER_EN_ROUTE.value,
                "started_at": dt_to_doc(now or utc_now()),
                "peers": [peer.to_doc() for peer in peers if peer.student_id != ride.student.student_id],
            },
            expected={"status": RideStatus.ASSIGNED.value},
            notifications=((NotificationType.RIDE_STARTING, ride.student.student_id, _ride_payload(ride)),),
        )

    def plan_arrive(self, ride: RideRequest) -> Transition:
        validate_transition(ride, RideStatus.ARRIVING)
        return Transition(
            ride=ride,
            patch={"status": RideStatus.ARRIVING.value},
            expected={"status": RideStatus.DRIVER_EN_ROUTE.value},
            notifications=((NotificationType.RIDE_STARTING, ride.student.student_id, _ride_payload(ride, arriving=True)),),
        )

    def plan_complete(self, ride: RideRequest, now: Optional[datetime] = None) -> Transition:
        validate_transition(ride, RideStatus.COMPLETED)
        return Transition(
            ride=ride,
            patch={"status": RideStatus.COMPLETED.value, "completed_at": dt_to_doc(now or utc_now())},
            expected={"status": ride.status.value},
            notifications=((NotificationType.RIDE_COMPLETED, ride.student.student_id, _ride_payload(ride)),),
        )

    def plan_cancel(self, ride: RideRequest) -> Transition:
        if ride.status in TERMINAL_STATUSES:
            raise RideStateException(f"Ride {ride.id} is already {ride.status.value}")
        validate_transition(ride, RideStatus.CANCELLED)

        notifications: Tuple[Notification, ...] = ()
        if ride.driver is not None:
            notifications = ((NotificationType.UNASSIGNED_STUDENTS, ride.driver.driver_id, _ride_payload(ride, cancelled=True)),)

        return Transition(
            ride=ride,
            patch={"status": RideStatus.CANCELLED.value, "driver": None},
            expected={"status": ride.status.value},
            notifications=notifications,
        )

    def plan_mark_ready_to_leave(self, ride: RideRequest) -> Optional[Transition]:
        """None when the flag is already set (pressing twice is harmless)."""
        if ride.status != RideStatus.COMPLETED:
            raise RideStateException(f"Ride {ride.id} must be completed before the return leg, is {ride.status.value}")
        if ride.ready_to_leave:
            return None

        return Transition(
            ride=ride,
            patch={"ready_to_leave": True},
            expected={"status": RideStatus.COMPLETED.value, "ready_to_leave": False},
        )

    def plan_assign_return(self, ride: RideRequest, driver: Union[Driver, DriverSnapshot], now: Optional[datetime] = None) -> Transition:
        if not ride.needs_return_driver:
            raise RideStateException(f"Ride {ride.id} is not waiting for a return driver")

        snapshot = _snapshot(driver, now or utc_now())
        return Transition(
            ride=ride,
            patch={"return_driver": snapshot.to_doc()},
            expected={"status": RideStatus.COMPLETED.value, "ready_to_leave": True, "return_driver": None},
            notifications=(
                (NotificationType.DRIVER_ASSIGNED, ride.student.student_id, _ride_payload(ride, driver_name=snapshot.name, leg="return")),
                (NotificationType.STUDENTS_ASSIGNED, snapshot.driver_id, _ride_payload(ride, leg="return")),
            ),
        )

    def plan_clear_return(self, ride: RideRequest) -> Transition:
        if ride.return_driver is None or ride.return_started_at is not None:
            raise RideStateException(f"Ride {ride.id} has no pending return driver to clear")

        return Transition(
            ride=ride,
            patch={"return_driver": None},
            expected={"status": RideStatus.COMPLETED.value, "return_started_at": None},
            notifications=((NotificationType.UNASSIGNED_STUDENTS, ride.student.student_id, _ride_payload(ride, leg="return")),),
        )

    def plan_start_return(self, ride: RideRequest, now: Optional[datetime] = None) -> Transition:
        if ride.return_driver is None or ride.return_started_at is not None:
            raise RideStateException(f"Ride {ride.id} return leg cannot start")

        return Transition(
            ride=ride,
            patch={"return_started_at": dt_to_doc(now or utc_now())},
            expected={"status": RideStatus.COMPLETED.value, "return_started_at": None},
            notifications=((NotificationType.RIDE_STARTING, ride.student.student_id, _ride_payload(ride, leg="return")),),
        )

    def plan_complete_return(self, ride: RideRequest, now: Optional[datetime] = None) -> Transition:
        if ride.return_started_at is None or ride.returned_at is not None:
            raise RideStateException(f"Ride {ride.id} return leg is not in progress")

        return Transition(
            ride=ride,
            patch={"returned_at": dt_to_doc(now or utc_now())},
            expected={"status": RideStatus.COMPLETED.value, "returned_at": None},
            notifications=((NotificationType.RIDE_COMPLETED, ride.student.student_id, _ride_payload(ride, leg="return")),),
        )

    # --- Writing ---

    def commit(
        self,
        transitions: Sequence[Transition],
        extra_writes: Optional[Callable[[WriteBatch], None]] = None,
    ) -> List[RideRequest]:
        """
        Writes every transition (plus any extra writes) in one batch, all-or-nothing,
        then sends their notifications. Returns the rides as stored afterwards.
        """
        batch = self.store.batch()
        for transition in transitions:
            transition.stage(batch)
        if extra_writes is not None:
            extra_writes(batch)
        batch.commit()

        self.send_notifications(transitions)
        return [get_ride(self.store, transition.ride.id) for transition in transitions]

    def send_notifications(self, transitions: Sequence[Transition]) -> None:
        for transition in transitions:
            for notification_type, recipient_id, payload in transition.notifications:
                notify_safely(self.notifier, notification_type, recipient_id, payload)

    def _apply(self, transition: Optional[Transition], ride: RideRequest) -> RideRequest:
        if transition is None:
            return ride
        return self.commit([transition])[0]

    # --- One-call transitions ---

    def assign(self, ride_id: str, driver: Union[Driver, DriverSnapshot]) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_assign(ride, driver), ride)

    def unassign(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_unassign(ride), ride)

    def start(self, ride_id: str, peers: Sequence[PassengerSnapshot] = ()) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_start(ride, peers), ride)

    def arrive(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_arrive(ride), ride)

    def complete(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_complete(ride), ride)

    def cancel(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_cancel(ride), ride)

    def mark_ready_to_leave(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_mark_ready_to_leave(ride), ride)

    def assign_return_driver(self, ride_id: str, driver: Union[Driver, DriverSnapshot]) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_assign_return(ride, driver), ride)

    def clear_return_driver(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_clear_return(ride), ride)

    def start_return(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_start_return(ride), ride)

    def complete_return(self, ride_id: str) -> RideRequest:
        ride = get_ride(self.store, ride_id)
        return self._apply(self.plan_complete_return(ride), ride)
