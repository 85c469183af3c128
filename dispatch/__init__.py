#Expose the high-level pipeline pieces:
#Capacity gate (hard rule shared by every assignment path)
#Matcher (tiered zone/capacity heuristic)
#Dispatcher (the reactive loop, the "one call" entry point)
#Coordinator overrides (manual / bulk assignment)

from .candidate_filter import CapacityExceededError, ensure_capacity
from .matcher import match, pick_return_driver
from .dispatcher import Dispatcher, DispatchReport #the reactive loop to start for a coordinator session
from .overrides import CoordinatorOverrides

__all__ = [
    "CapacityExceededError",
    "ensure_capacity",
    "match",
    "pick_return_driver",
    "Dispatcher",
    "DispatchReport",
    "CoordinatorOverrides",
]
