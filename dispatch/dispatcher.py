"""
Purpose: Orchestrator / reactive dispatch loop (the "glue").
What it does:
Subscribes to five live queries for the life of a coordinator session:
- pending ride requests            -> outbound pass
- completed rides ready to leave   -> return pass
- dispatchable drivers             -> both passes (a driver came online / got a car)
- in-flight outbound rides         -> outbound pass (seats freed by cancel/complete)
- in-flight return legs            -> return pass (seats freed when a leg ends)

Each change notification queues a pass on a single worker thread. A pass:
1. takes a fresh snapshot of pending items, available drivers and in-flight load
2. runs the matcher over every pending item, oldest first, updating the pass
   bookkeeping synchronously after each hit
3. commits each hit inside a store transaction that re-reads the driver's load
   and writes conditionally (ride still pending, driver still available)

Failures are isolated per item: logged, counted, left for the next pass.
A request with no eligible driver stays `requested`; nothing is dropped.
"""

from __future__ import annotations

import logging
import queue
import random
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from drivers.models import Driver, DriverStatus
from drivers.policy import DispatchPolicy, default_dispatch_policy
from drivers.selection import derive_pass_state, derive_return_load, filter_eligible_drivers
from notifications.notifier import Notifier
from rides.models import RideRequest
from rides.queries import (
    DRIVERS,
    RIDES,
    assigned_to,
    get_driver,
    is_available_driver,
    is_in_flight,
    is_pending_request,
    is_return_in_flight,
    load_drivers,
    load_rides,
    needs_return_driver,
    returning_with,
)
from rides.store import DocumentStore, StoreError
from routing.zones import classify
from .candidate_filter import CapacityExceededError, ensure_capacity
from .matcher import match, pick_return_driver
from .state_machines.driver_state import DriverStateException, ensure_dispatchable
from .state_machines.ride_state import RideLifecycle, RideStateException

logger = logging.getLogger(__name__)

OUTBOUND = "outbound"
RETURN = "return"
_STOP = object()

# Per-item failures a pass survives; anything else is a bug and is logged by the worker.
ITEM_ERRORS = (StoreError, RideStateException, DriverStateException, CapacityExceededError)


@dataclass
class DispatchReport:
    """What one pass did. `assigned` holds (ride_id, driver_id) pairs."""
    assigned: List[Tuple[str, str]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def mutations(self) -> int:
        return len(self.assigned)


class Dispatcher:
    """
    Reactive matcher for one coordinator session. Passes never overlap.
    """

    def __init__(
        self,
        store: DocumentStore,
        lifecycle: Optional[RideLifecycle] = None,
        policy: Optional[DispatchPolicy] = None,
        rng: Optional[random.Random] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle or RideLifecycle(store, notifier)
        self.policy = policy or default_dispatch_policy()
        self.rng = rng or random.Random()

        self._pass_lock = threading.Lock()
        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._subscriptions = []

    # --- Session ---

    def start(self) -> None:
        if self._worker is not None:
            return

        self._worker = threading.Thread(target=self._run_worker, name="dispatch-loop", daemon=True)
        self._worker.start()

        self._subscriptions = [
            self.store.subscribe(RIDES, is_pending_request, self._on_change(OUTBOUND)),
            self.store.subscribe(RIDES, needs_return_driver, self._on_change(RETURN)),
            self.store.subscribe(DRIVERS, is_available_driver, self._on_change(OUTBOUND, RETURN)),
            # Seats free up when a held ride leaves these sets, down to none at all.
            self.store.subscribe(RIDES, is_in_flight, self._on_change(OUTBOUND, when_empty=True)),
            self.store.subscribe(RIDES, is_return_in_flight, self._on_change(RETURN, when_empty=True)),
        ]
        logger.info("Dispatch loop started")

    def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

        if self._worker is not None:
            self._queue.put(_STOP)
            self._worker.join()
            self._worker = None
            logger.info("Dispatch loop stopped")

    def wait_idle(self) -> None:
        """Blocks until every queued pass (including passes they triggered) has run."""
        self._queue.join()

    def _on_change(self, *kinds: str, when_empty: bool = False):
        def callback(snapshot) -> None:
            if not snapshot and not when_empty:
                return
            for kind in kinds:
                self._queue.put(kind)
        return callback

    def _run_worker(self) -> None:
        while True:
            kind = self._queue.get()
            try:
                if kind is _STOP:
                    return
                if kind == OUTBOUND:
                    self.run_outbound_pass()
                else:
                    self.run_return_pass()
            except Exception:
                # The loop must outlive any single bad pass.
                logger.exception("Dispatch %s pass crashed", kind)
            finally:
                self._queue.task_done()

    # --- Passes ---

    def run_pass(self) -> Tuple[DispatchReport, DispatchReport]:
        return self.run_outbound_pass(), self.run_return_pass()

    def run_outbound_pass(self) -> DispatchReport:
        with self._pass_lock:
            report = DispatchReport()

            try:
                pending = load_rides(self.store, is_pending_request)
            except StoreError as e:
                logger.warning(f"Could not load pending requests, pass skipped: {e}")
                return report

            if not pending:
                return report

            pool = self._load_pool()
            if not pool:
                report.skipped = [ride.id for ride in pending]
                logger.info("No available drivers; %d request(s) stay pending", len(pending))
                return report

            try:
                state = derive_pass_state(load_rides(self.store, is_in_flight))
            except StoreError as e:
                logger.warning(f"Could not load in-flight rides, pass skipped: {e}")
                report.skipped = [ride.id for ride in pending]
                return report

            for ride in pending:
                zone = classify(ride.student.address)
                driver = match(ride, pool, state, self.policy, zone)
                if driver is None:
                    report.skipped.append(ride.id)
                    continue

                try:
                    self._commit_outbound(ride, driver)
                except ITEM_ERRORS as e:
                    logger.warning(f"Assignment of ride {ride.id} to {driver.id} failed: {e}")
                    report.failed.append(ride.id)
                    continue

                report.assigned.append((ride.id, driver.id))
                logger.info("Auto-assigned ride %s (%s) to %s", ride.id, zone.value, driver.name)

            return report

    def run_return_pass(self) -> DispatchReport:
        with self._pass_lock:
            report = DispatchReport()

            try:
                waiting = load_rides(self.store, needs_return_driver)
            except StoreError as e:
                logger.warning(f"Could not load rides waiting to return, pass skipped: {e}")
                return report

            if not waiting:
                return report

            pool = self._load_pool()
            if not pool:
                report.skipped = [ride.id for ride in waiting]
                return report

            try:
                return_load = derive_return_load(load_rides(self.store, is_return_in_flight))
            except StoreError as e:
                logger.warning(f"Could not load return legs, pass skipped: {e}")
                report.skipped = [ride.id for ride in waiting]
                return report

            for ride in waiting:
                driver = pick_return_driver(pool, return_load, self.rng, self.policy)
                if driver is None:
                    report.skipped.append(ride.id)
                    continue

                try:
                    self._commit_return(ride, driver)
                except ITEM_ERRORS as e:
                    logger.warning(f"Return assignment of ride {ride.id} to {driver.id} failed: {e}")
                    report.failed.append(ride.id)
                    continue

                report.assigned.append((ride.id, driver.id))
                logger.info("Auto-assigned return ride %s to driver %s", ride.id, driver.name)

            return report

    def _load_pool(self) -> List[Driver]:
        try:
            return filter_eligible_drivers(load_drivers(self.store, is_available_driver))
        except StoreError as e:
            logger.warning(f"Could not load available drivers: {e}")
            return []

    # --- Commits ---

    def _commit_outbound(self, ride: RideRequest, driver: Driver) -> None:
        with self.store.transaction():
            fresh = get_driver(self.store, driver.id)
            ensure_dispatchable(fresh)
            fresh_load = len(self.store.query(RIDES, assigned_to(fresh.id)))
            ensure_capacity(fresh, fresh_load, self.policy)

            transition = self.lifecycle.plan_assign(ride, fresh)
            self._write(transition, fresh)

        self.lifecycle.send_notifications([transition])

    def _commit_return(self, ride: RideRequest, driver: Driver) -> None:
        with self.store.transaction():
            fresh = get_driver(self.store, driver.id)
            ensure_dispatchable(fresh)
            fresh_load = len(self.store.query(RIDES, returning_with(fresh.id)))
            ensure_capacity(fresh, fresh_load, self.policy)

            transition = self.lifecycle.plan_assign_return(ride, fresh)
            self._write(transition, fresh)

        self.lifecycle.send_notifications([transition])

    def _write(self, transition, driver: Driver) -> None:
        batch = self.store.batch()
        transition.stage(batch)
        # Guard: the driver must still be available with the same vehicle when the write lands.
        batch.update(
            DRIVERS,
            driver.id,
            {},
            expected={"status": DriverStatus.AVAILABLE.value, "current_vehicle_id": driver.current_vehicle_id},
        )
        batch.commit()
