#Purpose: Hard capacity gate shared by every assignment path.
#The matcher's tiers, the commit-time re-check of a dispatch pass,
#and the coordinator's manual/bulk overrides all ask the same question here:
#"does this driver still have room for N more passengers?"
#Output: a yes/no, or CapacityExceededError before anything is written.

from typing import Optional, Union

from drivers.models import Driver
from drivers.policy import DispatchPolicy, default_dispatch_policy
from rides.models import DriverSnapshot


class CapacityExceededError(Exception):
    """Raised when an assignment would put more passengers in a vehicle than it seats."""
    pass


def capacity_of(driver: Union[Driver, DriverSnapshot], policy: Optional[DispatchPolicy] = None) -> int:
    """
    Seats of the driver's current vehicle. Falls back to the policy default (4)
    when the record carries no capacity.
    """
    policy = policy or default_dispatch_policy()
    return policy.capacity_of(driver.capacity)


def driver_id_of(driver: Union[Driver, DriverSnapshot]) -> str:
    return driver.id if isinstance(driver, Driver) else driver.driver_id


def has_capacity(
    driver: Union[Driver, DriverSnapshot],
    load: int,
    policy: Optional[DispatchPolicy] = None,
    additional: int = 1,
) -> bool:
    return load + additional <= capacity_of(driver, policy)


def ensure_capacity(
    driver: Union[Driver, DriverSnapshot],
    load: int,
    policy: Optional[DispatchPolicy] = None,
    additional: int = 1,
) -> None:
    """
    Raises CapacityExceededError if `additional` more passengers do not fit.
    """
    if not has_capacity(driver, load, policy, additional):
        raise CapacityExceededError(
            f"Driver {driver_id_of(driver)} has {load}/{capacity_of(driver, policy)} seats taken, "
            f"cannot add {additional}"
        )
