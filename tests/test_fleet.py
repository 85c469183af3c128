import pytest

from dispatch.candidate_filter import CapacityExceededError
from dispatch.state_machines.driver_state import DriverStateException
from drivers.fleet import bind_vehicle, release_vehicle, set_driver_availability
from drivers.models import DriverStatus, Vehicle, VehicleStatus
from drivers.workflow import DriverAssignmentWorkflow
from rides.models import RideStatus
from rides.queries import VEHICLES, assigned_to, get_driver, get_ride, get_vehicle, load_rides


def test_bind_release_bind_round_trip(store, add_driver):
    add_driver("a", bound=False)

    # 1. Bind: both sides of the pair are set together
    driver = bind_vehicle(store, "a", "car_a")
    vehicle = get_vehicle(store, "car_a")
    assert driver.current_vehicle_id == "car_a"
    assert driver.capacity == 4
    assert driver.status == DriverStatus.AVAILABLE
    assert vehicle.current_driver_id == "a"
    assert vehicle.status == VehicleStatus.IN_USE

    # 2. Release: both cleared, no residual driver on the vehicle
    driver = release_vehicle(store, "a")
    vehicle = get_vehicle(store, "car_a")
    assert driver.current_vehicle_id is None
    assert driver.status == DriverStatus.OFFLINE
    assert vehicle.current_driver_id is None
    assert vehicle.current_driver_name is None
    assert vehicle.status == VehicleStatus.AVAILABLE

    # 3. Bind again: identical to the first bind
    driver = bind_vehicle(store, "a", "car_a")
    assert driver.current_vehicle_id == "car_a"
    assert get_vehicle(store, "car_a").current_driver_id == "a"


def test_switching_vehicles_frees_the_previous_one(store, add_driver):
    add_driver("a", capacity=4)
    store.create(VEHICLES, Vehicle.new("van", "Ford Transit", capacity=7).to_doc(), "van")

    driver = bind_vehicle(store, "a", "van")

    assert driver.current_vehicle_id == "van"
    assert driver.capacity == 7
    assert get_vehicle(store, "car_a").current_driver_id is None
    assert get_vehicle(store, "van").current_driver_id == "a"


def test_switching_to_a_smaller_car_cannot_strand_held_passengers(store, add_driver, request_ride, lifecycle):
    add_driver("a", capacity=4)
    store.create(VEHICLES, Vehicle.new("mini", "Mini Cooper", capacity=2).to_doc(), "mini")
    for index in range(4):
        ride = request_ride(f"s{index}", "Newbury St", minute=index)
        lifecycle.assign(ride.id, get_driver(store, "a"))

    with pytest.raises(CapacityExceededError):
        bind_vehicle(store, "a", "mini")

    # 1. Nothing moved: same car, same snapshots, small car still free
    driver = get_driver(store, "a")
    held = load_rides(store, assigned_to("a"))
    assert driver.current_vehicle_id == "car_a"
    assert driver.capacity == 4
    assert get_vehicle(store, "mini").current_driver_id is None
    assert len(held) == 4
    assert all(ride.driver.vehicle_id == "car_a" for ride in held)


def test_held_passengers_move_with_the_driver_to_a_car_that_fits(store, add_driver, request_ride, lifecycle):
    add_driver("a", capacity=4)
    store.create(VEHICLES, Vehicle.new("van", "Ford Transit", capacity=7).to_doc(), "van")
    for index, address in enumerate(["Newbury St", "Boylston St"]):
        ride = request_ride(f"s{index}", address, minute=index)
        lifecycle.assign(ride.id, get_driver(store, "a"))

    bind_vehicle(store, "a", "van")

    # 1. The ride snapshots follow the driver to the new car
    held = load_rides(store, assigned_to("a"))
    assert len(held) == 2
    for ride in held:
        assert ride.driver.vehicle_id == "van"
        assert ride.driver.vehicle_name == "Ford Transit"
        assert ride.driver.capacity == 7

    # 2. The released car is free for someone else
    add_driver("b", bound=False)
    assert bind_vehicle(store, "b", "car_a").current_vehicle_id == "car_a"


def test_vehicle_held_by_another_driver_cannot_be_taken(store, add_driver):
    add_driver("a")
    add_driver("b", bound=False)

    with pytest.raises(DriverStateException):
        bind_vehicle(store, "b", "car_a")

    assert get_driver(store, "b").current_vehicle_id is None


def test_release_is_rejected_during_an_active_round(store, add_driver, request_ride, lifecycle):
    add_driver("a")
    ride = request_ride("s1", "Newbury St")
    lifecycle.assign(ride.id, get_driver(store, "a"))
    workflow = DriverAssignmentWorkflow(store, "a", lifecycle)
    workflow.assign_me()
    workflow.accept()

    with pytest.raises(DriverStateException):
        release_vehicle(store, "a")

    # 1. Nothing changed on either side
    assert get_driver(store, "a").current_vehicle_id == "car_a"
    assert get_vehicle(store, "car_a").current_driver_id == "a"


def test_release_hands_unstarted_rides_back_to_the_pool(store, add_driver, request_ride, lifecycle):
    add_driver("a")
    ride = request_ride("s1", "Newbury St")
    lifecycle.assign(ride.id, get_driver(store, "a"))

    release_vehicle(store, "a")

    returned = get_ride(store, ride.id)
    assert returned.status == RideStatus.REQUESTED
    assert returned.driver is None


def test_availability_toggle(store, add_driver):
    add_driver("a")
    add_driver("walker", bound=False)

    assert set_driver_availability(store, "a", available=False).status == DriverStatus.OFFLINE
    assert set_driver_availability(store, "a", available=True).status == DriverStatus.AVAILABLE

    with pytest.raises(DriverStateException):
        set_driver_availability(store, "walker", available=True)


def test_vehicle_capacity_must_be_positive():
    with pytest.raises(ValueError):
        Vehicle.new("bike", "Bicycle", capacity=0)
