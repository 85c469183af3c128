"""
Purpose: Central configuration for dispatch, matching and the driver workflow.
What it does:

Stores all tunable thresholds/constants:

DEFAULT_VEHICLE_CAPACITY = 4
VENUE = Sabha Venue (42.3396, -71.0942)
AVERAGE_SPEED_KMH = 30
EVENT = Fridays 19:00 - 22:00 local (pickups before, drop-offs after)

Overrides can be read from the environment (.env supported):
VENUE_NAME, VENUE_LAT, VENUE_LNG, DEFAULT_VEHICLE_CAPACITY, NAVIGATION_BASE_URL

Rule: No dispatch logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from routing.navigation import GOOGLE_MAPS_DIRECTIONS_URL
from routing.waypoints import Place


@dataclass(frozen=True)
class DispatchPolicy:
    """
    Central configuration for matching, dispatch and round workflow.
    """

    # --- Capacity ---
    # Used when a driver snapshot carries no capacity (legacy documents).
    default_vehicle_capacity: int = 4

    # --- Venue ---
    # Outbound rounds end here, return rounds start here.
    venue_name: str = "Sabha Venue"
    venue_address: Optional[str] = "Sabha Venue"
    venue_location: Optional[Tuple[float, float]] = (42.3396, -71.0942)

    # --- Event window (local time) ---
    # Weekday uses datetime.weekday(): Monday is 0, Friday is 4.
    event_weekday: int = 4
    event_start_hour: int = 19
    event_end_hour: int = 22

    # --- Navigation hand-off ---
    navigation_base_url: str = GOOGLE_MAPS_DIRECTIONS_URL
    travel_mode: str = "driving"

    # --- Route statistics ---
    average_speed_kmh: float = 30.0

    # --- Workflow ---
    # Completing a round with unvisited stops needs an explicit override.
    confirm_unvisited_on_complete: bool = True

    @property
    def venue(self) -> Place:
        return Place(name=self.venue_name, address=self.venue_address, location=self.venue_location)

    def capacity_of(self, capacity: Optional[int]) -> int:
        return capacity if capacity and capacity > 0 else self.default_vehicle_capacity

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.default_vehicle_capacity < 1:
            raise ValueError("default_vehicle_capacity must be >= 1")

        if self.average_speed_kmh <= 0:
            raise ValueError("average_speed_kmh must be > 0")

        if not self.venue_name:
            raise ValueError("venue_name must not be empty")

        if not 0 <= self.event_weekday <= 6:
            raise ValueError("event_weekday must be 0 (Monday) .. 6 (Sunday)")

        if not 0 <= self.event_start_hour <= self.event_end_hour <= 24:
            raise ValueError("event hours must satisfy 0 <= start <= end <= 24")

        if self.venue_location is not None:
            lat, lng = self.venue_location
            if not (-90 <= lat <= 90 and -180 <= lng <= 180):
                raise ValueError(f"venue_location out of range: {self.venue_location}")


def default_dispatch_policy() -> DispatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DispatchPolicy()
    p.validate()
    return p


def policy_from_env() -> DispatchPolicy:
    """
    Builds a policy from environment variables, falling back to defaults.
    Example in .env:
    VENUE_NAME=Community Hall
    VENUE_LAT=42.3396
    VENUE_LNG=-71.0942
    """
    load_dotenv()
    defaults = DispatchPolicy()

    venue_location = defaults.venue_location
    lat, lng = os.getenv("VENUE_LAT"), os.getenv("VENUE_LNG")
    if lat and lng:
        venue_location = (float(lat), float(lng))

    venue_name = os.getenv("VENUE_NAME") or defaults.venue_name

    p = DispatchPolicy(
        default_vehicle_capacity=int(os.getenv("DEFAULT_VEHICLE_CAPACITY") or defaults.default_vehicle_capacity),
        venue_name=venue_name,
        venue_address=venue_name if os.getenv("VENUE_NAME") else defaults.venue_address,
        venue_location=venue_location,
        navigation_base_url=os.getenv("NAVIGATION_BASE_URL") or defaults.navigation_base_url,
    )
    p.validate()
    return p
