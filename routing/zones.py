"""
Purpose: Coarse geographic bucketing of free-text addresses.
What it does:
Maps an address to one of a small closed set of zone labels using
case-insensitive keyword matching. The zone is only a matching aid for the
dispatcher (and legend/display code); it is never persisted on a driver.

Rule: Pure function, no I/O. Unmatched addresses fall back to DOWNTOWN.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple


class Zone(str, Enum):
    BACK_BAY = "back_bay"
    NORTH = "north"
    WEST = "west"
    SOUTH = "south"
    DOWNTOWN = "downtown"


DEFAULT_ZONE = Zone.DOWNTOWN

# Checked top to bottom, first keyword hit wins.
ZONE_KEYWORDS: Tuple[Tuple[Zone, Tuple[str, ...]], ...] = (
    (Zone.BACK_BAY, ("back bay", "newbury", "boylston")),
    (Zone.NORTH, ("north end", "hanover", "charlestown", "east boston", "washington")),
    (Zone.WEST, ("allston", "brighton", "faneuil", "penniman", "academy")),
    (Zone.SOUTH, ("dorchester", "roxbury", "south boston", "broadway")),
)


def classify(address: Optional[str]) -> Zone:
    """
    Returns the zone for an address. Total: None or empty input maps to the default zone.
    """
    if not address:
        return DEFAULT_ZONE

    lowered = address.lower()
    for zone, keywords in ZONE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return zone

    return DEFAULT_ZONE
