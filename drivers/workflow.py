"""
Purpose: One driver's working session (the client-held workflow).
What it does:
Coordinates the round a driver works through:

assign_me   -> preview   collect the passengers dispatched to me, build the route (no writes)
accept      -> active    start every ride + persist the active round, one batch
release     -> dashboard hand the previewed passengers back to the pool
complete    -> completed complete every passenger + daily counters, one batch
assign_next -> preview   loop back for the next round
done_for_today -> dashboard  release the vehicle, go offline

While active, waypoint toggles stay local until save_progress(); refresh()
folds coordinator edits (students added/removed mid-route) into the route
without losing visited stops.

Rule: the local state only moves after the write it depends on succeeded.
On reload, rehydrate() rebuilds everything from the store.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import List, Optional

from dispatch.state_machines.driver_state import (
    DriverStateException,
    UnvisitedWaypointsError,
    WorkflowState,
    ensure_dispatchable,
    rehydrate_state,
    validate_transition,
)
from dispatch.state_machines.ride_state import RideLifecycle, Transition
from notifications.notifier import Notifier
from rides.models import IN_FLIGHT_STATUSES, RideDirection, RideRequest, RideStatus, utc_now
from rides.queries import DRIVERS, assigned_to, get_driver, get_ride, load_rides, returning_with
from rides.store import DocumentNotFound, DocumentStore
from routing.distance import estimate_minutes, route_distance_km
from routing.navigation import build_navigation_url
from routing.waypoints import (
    Place,
    Waypoint,
    all_stops_visited,
    build_waypoints,
    reconcile_waypoints,
    toggle_visited,
)
from .fleet import bind_vehicle, release_vehicle
from .models import ActiveRound, Driver, DriverStatus
from .policy import DispatchPolicy, default_dispatch_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundSummary:
    direction: RideDirection
    passengers: int
    distance_km: float
    minutes: int


class DriverAssignmentWorkflow:
    def __init__(
        self,
        store: DocumentStore,
        driver_id: str,
        lifecycle: Optional[RideLifecycle] = None,
        policy: Optional[DispatchPolicy] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.driver_id = driver_id
        self.notifier = notifier
        self.lifecycle = lifecycle or RideLifecycle(store, notifier)
        self.policy = policy or default_dispatch_policy()

        self.state = WorkflowState.DASHBOARD
        self.direction: Optional[RideDirection] = None
        self.rides: List[RideRequest] = []
        self.waypoints: List[Waypoint] = []
        self.active_round: Optional[ActiveRound] = None
        self.summary: Optional[RoundSummary] = None

    # --- Derived views ---

    @property
    def driver(self) -> Driver:
        return get_driver(self.store, self.driver_id)

    @property
    def navigation_url(self) -> str:
        return build_navigation_url(self.waypoints, self.policy.navigation_base_url, self.policy.travel_mode)

    @property
    def estimated_minutes(self) -> int:
        return estimate_minutes(route_distance_km(self.waypoints), self.policy.average_speed_kmh)

    def _require(self, *states: WorkflowState) -> None:
        if self.state not in states:
            raise DriverStateException(f"Not allowed while {self.state.value}")

    def _route(self, driver: Driver, direction: RideDirection, rides: List[RideRequest]) -> List[Waypoint]:
        passengers = [ride.student for ride in rides]
        here = Place(name=driver.name, address=driver.address, location=driver.location or driver.home_location)
        home = Place(name=driver.name, address=driver.address, location=driver.home_location or driver.location)

        if direction == RideDirection.PICKUP:
            return build_waypoints(here, passengers, self.policy.venue, direction)
        return build_waypoints(self.policy.venue, passengers, home, direction)

    def _round_rides(self, direction: RideDirection) -> List[RideRequest]:
        if direction == RideDirection.PICKUP:
            return load_rides(self.store, assigned_to(self.driver_id))
        return load_rides(self.store, returning_with(self.driver_id))

    # --- dashboard / completed -> preview ---

    def assign_me(self, vehicle_id: Optional[str] = None, direction: Optional[RideDirection] = None) -> List[Waypoint]:
        """
        Collects the passengers dispatched to this driver and previews the route.
        Outbound passengers come first; return passengers once nobody is left to pick up.
        `direction` (usually ride_context(now).direction) limits the round to one leg.
        """
        validate_transition(self.state, WorkflowState.PREVIEW)

        driver = self.driver
        if vehicle_id and driver.current_vehicle_id != vehicle_id:
            driver = bind_vehicle(self.store, self.driver_id, vehicle_id)
        ensure_dispatchable(driver)

        outbound, returning = [], []
        if direction in (None, RideDirection.PICKUP):
            outbound = [ride for ride in self._round_rides(RideDirection.PICKUP) if ride.status == RideStatus.ASSIGNED]
        if direction in (None, RideDirection.DROPOFF):
            returning = [ride for ride in self._round_rides(RideDirection.DROPOFF) if ride.return_started_at is None]

        if outbound:
            direction, rides = RideDirection.PICKUP, outbound
        elif returning:
            direction, rides = RideDirection.DROPOFF, returning
        else:
            leg = f" {direction.value}" if direction else ""
            raise DriverStateException(f"No{leg} passengers assigned to driver {self.driver_id} yet")

        self.direction = direction
        self.rides = rides
        self.waypoints = self._route(driver, direction, rides)
        self.active_round = None
        self.summary = None
        self.state = WorkflowState.PREVIEW

        logger.info("Driver %s previewing %d %s passenger(s)", self.driver_id, len(rides), direction.value)
        return self.waypoints

    def assign_next(self, vehicle_id: Optional[str] = None, direction: Optional[RideDirection] = None) -> List[Waypoint]:
        self._require(WorkflowState.COMPLETED)
        return self.assign_me(vehicle_id, direction)

    # --- preview -> active / dashboard ---

    def _start_transitions(self, rides: List[RideRequest]) -> List[Transition]:
        peers = [ride.student for ride in rides]
        if self.direction == RideDirection.PICKUP:
            return [self.lifecycle.plan_start(ride, peers) for ride in rides]
        return [self.lifecycle.plan_start_return(ride) for ride in rides]

    def accept(self) -> ActiveRound:
        validate_transition(self.state, WorkflowState.ACTIVE)

        driver = self.driver
        ensure_dispatchable(driver)
        rides = [get_ride(self.store, ride.id) for ride in self.rides]
        transitions = self._start_transitions(rides)

        active_round = ActiveRound(
            round_id=str(uuid.uuid4()),
            direction=self.direction,
            ride_ids=tuple(ride.id for ride in rides),
            waypoints=tuple(self.waypoints),
            vehicle_id=driver.current_vehicle_id,
            started_at=utc_now(),
            distance_km=route_distance_km(self.waypoints),
        )

        def activate_driver(batch) -> None:
            batch.update(
                DRIVERS,
                self.driver_id,
                {"status": DriverStatus.ACTIVE.value, "active_round": active_round.to_doc()},
                expected={"status": DriverStatus.AVAILABLE.value},
            )

        self.rides = self.lifecycle.commit(transitions, activate_driver)
        self.active_round = active_round
        self.state = WorkflowState.ACTIVE

        logger.info("Driver %s started round %s with %d passenger(s)", self.driver_id, active_round.round_id, len(rides))
        return active_round

    def release(self) -> None:
        """
        Declines the previewed round. The driver stays available; the passengers
        go back to the dispatch pool.
        """
        self._require(WorkflowState.PREVIEW)

        transitions: List[Transition] = []
        for ride in self.rides:
            try:
                fresh = get_ride(self.store, ride.id)
            except DocumentNotFound:
                continue
            if self.direction == RideDirection.PICKUP:
                if fresh.status == RideStatus.ASSIGNED and fresh.driver and fresh.driver.driver_id == self.driver_id:
                    transitions.append(self.lifecycle.plan_unassign(fresh))
            elif fresh.return_driver and fresh.return_driver.driver_id == self.driver_id and fresh.return_started_at is None:
                transitions.append(self.lifecycle.plan_clear_return(fresh))

        self.lifecycle.commit(transitions)
        self._reset()
        logger.info("Driver %s released %d previewed passenger(s)", self.driver_id, len(transitions))

    # --- active ---

    def toggle_waypoint(self, index: int) -> Waypoint:
        """Local only; call save_progress() to persist."""
        self._require(WorkflowState.ACTIVE)
        self.waypoints = toggle_visited(self.waypoints, index)
        return self.waypoints[index]

    def save_progress(self) -> None:
        self._require(WorkflowState.ACTIVE)
        updated = replace(self.active_round, waypoints=tuple(self.waypoints))
        self.store.mutate(
            DRIVERS,
            self.driver_id,
            {"active_round": updated.to_doc()},
            expected={"status": DriverStatus.ACTIVE.value},
        )
        self.active_round = updated

    def announce_arrival(self, student_id: str) -> RideRequest:
        self._require(WorkflowState.ACTIVE)
        if self.direction != RideDirection.PICKUP:
            raise DriverStateException("Arrival is only announced on the pickup round")

        ride = next((ride for ride in self.rides if ride.student.student_id == student_id), None)
        if ride is None:
            raise DriverStateException(f"Student {student_id} is not in this round")

        updated = self.lifecycle.arrive(ride.id)
        self.rides = [updated if item.id == updated.id else item for item in self.rides]
        return updated

    def refresh(self) -> List[Waypoint]:
        """
        Folds coordinator edits into the active round: newly assigned passengers
        are started and appended, removed ones drop out, visited stops stay visited.
        """
        self._require(WorkflowState.ACTIVE)

        driver = self.driver
        current = self._round_rides(self.direction)
        if self.direction == RideDirection.PICKUP:
            current = [ride for ride in current if ride.status in IN_FLIGHT_STATUSES]

        known = {ride.id for ride in self.rides}
        kept = [ride for ride in current if ride.id in known]
        order = {ride_id: position for position, ride_id in enumerate(self.active_round.ride_ids)}
        kept.sort(key=lambda ride: order.get(ride.id, len(order)))
        added = [ride for ride in current if ride.id not in known]

        if self.direction == RideDirection.PICKUP:
            added = [ride for ride in added if ride.status == RideStatus.ASSIGNED]
        else:
            added = [ride for ride in added if ride.return_started_at is None]

        rides = kept + added
        transitions = self._start_transitions(added)
        waypoints = reconcile_waypoints(self.waypoints, self._route(driver, self.direction, rides))

        updated = replace(
            self.active_round,
            ride_ids=tuple(ride.id for ride in rides),
            waypoints=tuple(waypoints),
            distance_km=route_distance_km(waypoints),
        )

        def save_round(batch) -> None:
            batch.update(
                DRIVERS,
                self.driver_id,
                {"active_round": updated.to_doc()},
                expected={"status": DriverStatus.ACTIVE.value},
            )

        started = self.lifecycle.commit(transitions, save_round)
        started_by_id = {ride.id: ride for ride in started}

        self.rides = [started_by_id.get(ride.id, ride) for ride in rides]
        self.waypoints = waypoints
        self.active_round = updated

        if added or len(kept) != len(known):
            logger.info(
                "Driver %s round updated: %d added, %d removed",
                self.driver_id, len(added), len(known) - len(kept),
            )
        return self.waypoints

    # --- active -> completed ---

    def complete(self, confirm: bool = False) -> RoundSummary:
        """
        Completes every passenger of the round and updates the daily counters.
        With unvisited stops this raises UnvisitedWaypointsError unless `confirm`.
        """
        validate_transition(self.state, WorkflowState.COMPLETED)

        unvisited = sum(1 for waypoint in self.waypoints if waypoint.is_stop and not waypoint.visited)
        if self.policy.confirm_unvisited_on_complete and not all_stops_visited(self.waypoints) and not confirm:
            raise UnvisitedWaypointsError(unvisited)

        driver = self.driver
        now = utc_now()
        transitions: List[Transition] = []
        for ride in self.rides:
            fresh = get_ride(self.store, ride.id)
            if self.direction == RideDirection.PICKUP:
                if fresh.status in (RideStatus.DRIVER_EN_ROUTE, RideStatus.ARRIVING):
                    transitions.append(self.lifecycle.plan_complete(fresh, now))
            elif fresh.return_started_at is not None and fresh.returned_at is None:
                transitions.append(self.lifecycle.plan_complete_return(fresh, now))

        distance = route_distance_km(self.waypoints)
        passengers = len(transitions)

        today = now.date().isoformat()
        same_day = driver.stats_date == today
        rides_done = driver.rides_completed_today if same_day else 0
        students = driver.total_students_today if same_day else 0
        total_distance = driver.total_distance_today if same_day else 0.0

        finished = replace(
            self.active_round,
            waypoints=tuple(self.waypoints),
            completed_at=now,
            distance_km=distance,
            passengers=passengers,
        )

        def finish_round(batch) -> None:
            batch.update(
                DRIVERS,
                self.driver_id,
                {
                    "status": DriverStatus.AVAILABLE.value,
                    "active_round": finished.to_doc(),
                    "rides_completed_today": rides_done + (1 if passengers else 0),
                    "total_students_today": students + passengers,
                    "total_distance_today": round(total_distance + distance, 3),
                    "stats_date": today,
                },
                expected={"status": DriverStatus.ACTIVE.value},
            )

        self.rides = self.lifecycle.commit(transitions, finish_round)
        self.active_round = finished
        self.summary = RoundSummary(
            direction=self.direction,
            passengers=passengers,
            distance_km=distance,
            minutes=estimate_minutes(distance, self.policy.average_speed_kmh),
        )
        self.state = WorkflowState.COMPLETED

        logger.info("Driver %s completed round %s: %d passenger(s), %.1f km", self.driver_id, finished.round_id, passengers, distance)
        return self.summary

    # --- completed -> dashboard ---

    def done_for_today(self) -> Driver:
        """Signs off: vehicle released, driver offline."""
        self._require(WorkflowState.COMPLETED, WorkflowState.DASHBOARD)
        driver = release_vehicle(self.store, self.driver_id, self.notifier)
        self._reset()
        return driver

    # --- reload ---

    def rehydrate(self) -> WorkflowState:
        """
        Rebuilds local state strictly from the store: the driver's active round
        and the persisted status of its rides.
        """
        driver = self.driver
        active_round = driver.active_round
        rides: List[RideRequest] = []
        if active_round is not None:
            for ride_id in active_round.ride_ids:
                try:
                    rides.append(get_ride(self.store, ride_id))
                except DocumentNotFound:
                    logger.warning("Ride %s of round %s no longer exists", ride_id, active_round.round_id)

        state = rehydrate_state(driver, rides)
        self._reset()
        self.state = state

        if state == WorkflowState.DASHBOARD:
            return state

        self.direction = active_round.direction
        self.rides = rides
        self.waypoints = list(active_round.waypoints)
        self.active_round = active_round

        if state == WorkflowState.COMPLETED:
            self.summary = RoundSummary(
                direction=active_round.direction,
                passengers=active_round.passengers,
                distance_km=active_round.distance_km,
                minutes=estimate_minutes(active_round.distance_km, self.policy.average_speed_kmh),
            )
        return state

    def _reset(self) -> None:
        self.state = WorkflowState.DASHBOARD
        self.direction = None
        self.rides = []
        self.waypoints = []
        self.active_round = None
        self.summary = None
