"""
Purpose: Which leg of the evening rides are for right now.
What it does:
- ride_context(now, policy): event day and clock -> RideContext
    before the event starts  -> pickup rides (home -> venue)
    while it runs            -> no rides
    after it ends            -> dropoff rides (venue -> home)
    any other day            -> no rides

Rule: `now` is local wall-clock time at the venue. No timezone handling here.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from drivers.policy import DispatchPolicy, default_dispatch_policy
from .models import RideDirection


@dataclass(frozen=True)
class RideContext:
    direction: Optional[RideDirection]
    display_text: str
    time_context: str

    @property
    def rides_available(self) -> bool:
        return self.direction is not None

    def to_doc(self) -> dict:
        return {
            "direction": self.direction.value if self.direction else None,
            "display_text": self.display_text,
            "time_context": self.time_context,
        }


def ride_context(now: datetime, policy: Optional[DispatchPolicy] = None) -> RideContext:
    policy = policy or default_dispatch_policy()
    venue = policy.venue_name

    if now.weekday() != policy.event_weekday:
        day = calendar.day_name[policy.event_weekday]
        return RideContext(None, "No rides available", f"Rides only available on {day}s")

    if now.hour < policy.event_start_hour:
        return RideContext(RideDirection.PICKUP, f"Home -> {venue}", f"Before {venue} starts")

    if now.hour < policy.event_end_hour:
        return RideContext(
            None,
            f"{venue} in progress",
            f"Drop-off rides available from {policy.event_end_hour}:00",
        )

    return RideContext(RideDirection.DROPOFF, f"{venue} -> Home", f"After {venue} ends")
