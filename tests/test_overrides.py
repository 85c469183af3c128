import pytest

from dispatch.candidate_filter import CapacityExceededError
from dispatch.state_machines.driver_state import DriverStateException
from dispatch.state_machines.ride_state import RideStateException
from drivers.fleet import release_vehicle
from rides.models import RideStatus
from rides.queries import get_ride, load_rides


def test_manual_assign_bypasses_tiers_but_not_capacity(overrides, store, add_driver, request_ride):
    add_driver("a", capacity=1)
    first, second = request_ride("s1", "Newbury St", 0), request_ride("s2", "Dorchester Ave", 1)

    assigned = overrides.assign(first.id, "a")
    assert assigned.driver.driver_id == "a"

    # 1. The same capacity gate the matcher uses
    with pytest.raises(CapacityExceededError):
        overrides.assign(second.id, "a")
    assert get_ride(store, second.id).status == RideStatus.REQUESTED


def test_manual_assign_requires_a_bound_vehicle(overrides, store, add_driver, request_ride):
    add_driver("walker", bound=False)
    ride = request_ride("s1", "Newbury St")

    with pytest.raises(DriverStateException):
        overrides.assign(ride.id, "walker")
    assert get_ride(store, ride.id).driver is None


def test_manual_assign_rejects_offline_driver(overrides, store, add_driver, request_ride):
    add_driver("a")
    release_vehicle(store, "a")
    ride = request_ride("s1", "Newbury St")

    with pytest.raises(DriverStateException):
        overrides.assign(ride.id, "a")


def test_bulk_assign_is_all_or_nothing(overrides, store, add_driver, request_ride):
    add_driver("a", capacity=3)
    rides = [request_ride(f"s{i}", "Hanover St", i) for i in range(4)]

    # 1. Four passengers do not fit in three seats: nothing is written
    with pytest.raises(CapacityExceededError):
        overrides.bulk_assign([ride.id for ride in rides], "a")
    assert all(ride.status == RideStatus.REQUESTED for ride in load_rides(store))

    # 2. One already-assigned ride poisons the batch
    overrides.assign(rides[0].id, "a")
    with pytest.raises(RideStateException):
        overrides.bulk_assign([rides[0].id, rides[1].id], "a")
    assert get_ride(store, rides[1].id).status == RideStatus.REQUESTED

    # 3. A batch that fits lands in full
    assigned = overrides.bulk_assign([rides[1].id, rides[2].id], "a")
    assert [ride.driver.driver_id for ride in assigned] == ["a", "a"]


def test_bulk_assign_rejects_duplicate_ids(overrides, add_driver, request_ride):
    add_driver("a")
    ride = request_ride("s1", "Hanover St")

    with pytest.raises(RideStateException):
        overrides.bulk_assign([ride.id, ride.id], "a")


def test_bulk_unassign_reports_per_ride(overrides, store, add_driver, request_ride):
    add_driver("a")
    assigned = request_ride("s1", "Hanover St", 0)
    never_assigned = request_ride("s2", "Hanover St", 1)
    overrides.assign(assigned.id, "a")

    result = overrides.bulk_unassign([assigned.id, never_assigned.id])

    assert result.succeeded == [assigned.id]
    assert list(result.failed) == [never_assigned.id]
    assert get_ride(store, assigned.id).driver is None


def test_assign_return_uses_capacity_gate(overrides, lifecycle, store, add_driver, request_ride):
    outbound = add_driver("a", capacity=4)
    add_driver("b", capacity=1)
    rides = [request_ride(f"s{i}", "Newbury St", i) for i in range(2)]
    for ride in rides:
        lifecycle.assign(ride.id, outbound)
        lifecycle.start(ride.id)
        lifecycle.complete(ride.id)
        lifecycle.mark_ready_to_leave(ride.id)

    assert overrides.assign_return(rides[0].id, "b").return_driver.driver_id == "b"

    with pytest.raises(CapacityExceededError):
        overrides.assign_return(rides[1].id, "b")
    assert get_ride(store, rides[1].id).return_driver is None
