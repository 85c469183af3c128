"""
Purpose: Coordinator manual and bulk overrides.
What it does:
Lets the coordinator assign/unassign rides directly, bypassing the matcher's
tiering but never the lifecycle rules or the capacity gate the matcher uses:
- assign / bulk_assign (all-or-nothing, capacity counted for the whole batch)
- unassign / bulk_unassign (per-ride outcome)
- assign_return (same capacity gate, counted on open return legs)

Rule: Validation happens before any write; a rejected override changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from drivers.models import Driver, DriverStatus
from drivers.policy import DispatchPolicy, default_dispatch_policy
from notifications.notifier import Notifier
from rides.models import RideRequest
from rides.queries import RIDES, assigned_to, get_driver, get_ride, returning_with
from rides.store import DocumentStore, StoreError
from .candidate_filter import ensure_capacity
from .state_machines.driver_state import DriverStateException
from .state_machines.ride_state import RideLifecycle, RideStateException

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class CoordinatorOverrides:
    def __init__(
        self,
        store: DocumentStore,
        lifecycle: Optional[RideLifecycle] = None,
        policy: Optional[DispatchPolicy] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle or RideLifecycle(store, notifier)
        self.policy = policy or default_dispatch_policy()

    def _assignable_driver(self, driver_id: str) -> Driver:
        driver = get_driver(self.store, driver_id)
        if not driver.has_vehicle:
            raise DriverStateException(f"Driver {driver.id} has no vehicle bound")
        if driver.status == DriverStatus.OFFLINE:
            raise DriverStateException(f"Driver {driver.id} is offline")
        return driver

    def assign(self, ride_id: str, driver_id: str) -> RideRequest:
        return self.bulk_assign([ride_id], driver_id)[0]

    def bulk_assign(self, ride_ids: Sequence[str], driver_id: str) -> List[RideRequest]:
        """
        Assigns every ride to one driver in a single batch, or none of them.
        """
        if len(set(ride_ids)) != len(ride_ids):
            raise RideStateException("The same ride appears twice in one bulk assignment")

        with self.store.transaction():
            driver = self._assignable_driver(driver_id)
            load = len(self.store.query(RIDES, assigned_to(driver.id)))
            ensure_capacity(driver, load, self.policy, additional=len(ride_ids))

            transitions = [self.lifecycle.plan_assign(get_ride(self.store, ride_id), driver) for ride_id in ride_ids]
            batch = self.store.batch()
            for transition in transitions:
                transition.stage(batch)
            batch.commit()

        self.lifecycle.send_notifications(transitions)
        logger.info("Manually assigned %d ride(s) to %s", len(transitions), driver.name)
        return [get_ride(self.store, ride_id) for ride_id in ride_ids]

    def unassign(self, ride_id: str) -> RideRequest:
        ride = self.lifecycle.unassign(ride_id)
        logger.info("Manually unassigned ride %s", ride_id)
        return ride

    def bulk_unassign(self, ride_ids: Sequence[str]) -> BulkResult:
        """Demotes each ride independently; one failure does not stop the rest."""
        result = BulkResult()
        for ride_id in ride_ids:
            try:
                self.lifecycle.unassign(ride_id)
                result.succeeded.append(ride_id)
            except (StoreError, RideStateException) as e:
                logger.warning(f"Unassign of ride {ride_id} failed: {e}")
                result.failed[ride_id] = str(e)
        return result

    def assign_return(self, ride_id: str, driver_id: str) -> RideRequest:
        with self.store.transaction():
            driver = self._assignable_driver(driver_id)
            load = len(self.store.query(RIDES, returning_with(driver.id)))
            ensure_capacity(driver, load, self.policy)

            transition = self.lifecycle.plan_assign_return(get_ride(self.store, ride_id), driver)
            batch = self.store.batch()
            transition.stage(batch)
            batch.commit()

        self.lifecycle.send_notifications([transition])
        logger.info("Manually assigned return ride %s to %s", ride_id, driver.name)
        return get_ride(self.store, ride_id)
