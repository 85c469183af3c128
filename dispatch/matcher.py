"""
Purpose: Capacity-constrained, zone-biased driver selection.
What it does:
Given one pending request's zone, the driver pool and the pass bookkeeping,
picks a driver with a tiered strategy (first hit wins):

1. Zone affinity: a driver already covering this zone with a free seat
2. Idle driver: a driver with no passengers yet
3. Any driver with a free seat
4. Nobody: the request stays pending for the next pass

A hit is recorded in the PassState immediately, before anything is persisted,
so N requests in one pass can never overfill a driver.

The return leg draws at random among drivers whose return load is under capacity.
"""

from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence

from drivers.models import Driver
from drivers.policy import DispatchPolicy, default_dispatch_policy
from drivers.selection import PassState
from rides.models import RideRequest
from routing.zones import Zone, classify
from .candidate_filter import capacity_of, has_capacity


def match(
    request: RideRequest,
    driver_pool: Sequence[Driver],
    state: PassState,
    policy: Optional[DispatchPolicy] = None,
    zone: Optional[Zone] = None,
) -> Optional[Driver]:
    """
    Returns the chosen driver (and records the hit in `state`), or None.
    `zone` defaults to the zone of the student's pickup address.
    """
    policy = policy or default_dispatch_policy()
    zone = zone or classify(request.student.address)
    chosen: Optional[Driver] = None

    # STRATEGY 1: a driver already working this zone with space
    for driver in driver_pool:
        if state.driver_zone.get(driver.id) == zone and has_capacity(driver, state.load_of(driver.id), policy):
            chosen = driver
            break

    # STRATEGY 2: a free driver, spreads load before over-filling a partial car
    if chosen is None:
        chosen = next((driver for driver in driver_pool if state.load_of(driver.id) == 0), None)

    # STRATEGY 3: anyone with a seat left
    if chosen is None:
        chosen = next(
            (driver for driver in driver_pool if has_capacity(driver, state.load_of(driver.id), policy)),
            None,
        )

    if chosen is not None:
        state.record(chosen.id, zone)

    return chosen


def return_candidates(
    driver_pool: Sequence[Driver],
    return_load: Dict[str, int],
    policy: Optional[DispatchPolicy] = None,
) -> List[Driver]:
    policy = policy or default_dispatch_policy()
    return [driver for driver in driver_pool if return_load.get(driver.id, 0) < capacity_of(driver, policy)]


def pick_return_driver(
    driver_pool: Sequence[Driver],
    return_load: Dict[str, int],
    rng: Optional[random.Random] = None,
    policy: Optional[DispatchPolicy] = None,
) -> Optional[Driver]:
    """
    Random draw among drivers with a free return seat. Increments `return_load`
    for the chosen driver.
    """
    candidates = return_candidates(driver_pool, return_load, policy)
    if not candidates:
        return None

    chosen = (rng or random).choice(candidates)
    return_load[chosen.id] = return_load.get(chosen.id, 0) + 1
    return chosen
