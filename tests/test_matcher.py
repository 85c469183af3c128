import random
from dataclasses import replace

import pytest

from dispatch.candidate_filter import CapacityExceededError, capacity_of, ensure_capacity, has_capacity
from dispatch.matcher import match, pick_return_driver
from drivers.models import Driver, DriverStatus
from drivers.selection import PassState, derive_pass_state, filter_eligible_drivers
from rides.models import DriverSnapshot, PassengerSnapshot, RideRequest, RideStatus
from routing.zones import Zone


def make_driver(driver_id, capacity=4, status=DriverStatus.AVAILABLE, vehicle=True):
    driver = Driver.new(driver_id=driver_id, name=driver_id.title(), status=status)
    if not vehicle:
        return driver
    return replace(driver, current_vehicle_id=f"car_{driver_id}", capacity=capacity)


def make_request(student_id, address):
    student = PassengerSnapshot(student_id=student_id, name=student_id, address=address)
    return RideRequest.new(student, time_slot="7:00 PM")


@pytest.fixture
def back_bay_request():
    return make_request("s_new", "300 Newbury St")


def test_zone_affinity_fills_driver_to_capacity_then_falls_through(back_bay_request):
    """
    Driver A (capacity 4) already carries 3 back bay pickups.
    The next back bay request goes to A; the one after must not.
    """
    driver_a = make_driver("a", capacity=4)
    driver_b = make_driver("b", capacity=4)
    pool = [driver_a, driver_b]
    state = PassState(driver_load={"a": 3}, driver_zone={"a": Zone.BACK_BAY})

    # 1. Zone affinity wins over the idle driver
    assert match(back_bay_request, pool, state) == driver_a
    assert state.load_of("a") == 4

    # 2. A is full; the idle driver B takes the next one
    assert match(make_request("s_next", "12 Boylston St"), pool, state) == driver_b
    assert state.load_of("a") == 4
    assert state.driver_zone["b"] == Zone.BACK_BAY


def test_full_driver_and_no_idle_driver_means_no_match(back_bay_request):
    driver_a = make_driver("a", capacity=4)
    state = PassState(driver_load={"a": 4}, driver_zone={"a": Zone.BACK_BAY})

    assert match(back_bay_request, [driver_a], state) is None
    # 1. A miss leaves the bookkeeping untouched
    assert state.driver_load == {"a": 4}


def test_idle_driver_preferred_over_partially_loaded_one_in_other_zone():
    loaded = make_driver("a")
    idle = make_driver("b")
    state = PassState(driver_load={"a": 1}, driver_zone={"a": Zone.SOUTH})

    assert match(make_request("s1", "5 Hanover St"), [loaded, idle], state) == idle


def test_any_driver_with_capacity_is_last_resort():
    driver_a = make_driver("a", capacity=3)
    driver_b = make_driver("b", capacity=3)
    state = PassState(driver_load={"a": 3, "b": 1}, driver_zone={"a": Zone.WEST, "b": Zone.SOUTH})

    assert match(make_request("s1", "5 Hanover St"), [driver_a, driver_b], state) == driver_b
    assert state.load_of("b") == 2
    assert state.driver_zone["b"] == Zone.NORTH


def test_one_pass_never_overfills_a_driver():
    driver = make_driver("a", capacity=2)
    state = PassState()
    requests = [make_request(f"s{i}", "Newbury St") for i in range(5)]

    matched = [match(request, [driver], state) for request in requests]

    assert matched[:2] == [driver, driver]
    assert matched[2:] == [None, None, None]
    assert state.load_of("a") == 2


def test_missing_capacity_falls_back_to_default_of_four(policy):
    legacy = make_driver("a", capacity=0)
    assert capacity_of(legacy, policy) == 4
    assert has_capacity(legacy, 3, policy)
    assert not has_capacity(legacy, 4, policy)


def test_ensure_capacity_counts_the_whole_batch(policy):
    snapshot = DriverSnapshot(driver_id="a", name="A", vehicle_id="car_a", capacity=4)
    ensure_capacity(snapshot, 1, policy, additional=3)

    with pytest.raises(CapacityExceededError):
        ensure_capacity(snapshot, 2, policy, additional=3)


def test_filter_eligible_drivers_requires_available_status_and_vehicle():
    pool = filter_eligible_drivers([
        make_driver("ok"),
        make_driver("offline", status=DriverStatus.OFFLINE),
        make_driver("active", status=DriverStatus.ACTIVE),
        make_driver("walking", vehicle=False),
    ])
    assert [driver.id for driver in pool] == ["ok"]


def test_derive_pass_state_counts_load_and_takes_latest_zone():
    snapshot = DriverSnapshot(driver_id="a", name="A", vehicle_id="car_a", capacity=4)
    rides = [
        replace(make_request("s1", "Newbury St"), status=RideStatus.ASSIGNED, driver=snapshot),
        replace(make_request("s2", "Dorchester Ave"), status=RideStatus.ASSIGNED, driver=snapshot),
    ]

    state = derive_pass_state(rides)

    assert state.driver_load == {"a": 2}
    assert state.driver_zone == {"a": Zone.SOUTH}


def test_pick_return_driver_respects_capacity():
    full = make_driver("full", capacity=1)
    open_seat = make_driver("open", capacity=2)
    return_load = {"full": 1}

    rng = random.Random(0)
    for _ in range(2):
        assert pick_return_driver([full, open_seat], return_load, rng) == open_seat

    # 1. Every seat is now taken
    assert pick_return_driver([full, open_seat], return_load, rng) is None
    assert return_load == {"full": 1, "open": 2}
