import pytest

from dispatch.state_machines.ride_state import RideLifecycle, RideStateException
from notifications.notifier import NotificationType, Notifier
from rides.models import PassengerSnapshot, RideStatus
from rides.queries import RIDES, get_ride
from rides.store import WriteConflict


@pytest.fixture
def driver(add_driver):
    return add_driver("a", capacity=4)


@pytest.fixture
def ride(request_ride):
    return request_ride("s1", "120 Newbury St")


def test_create_starts_requested_without_driver(ride, store):
    stored = get_ride(store, ride.id)
    assert stored.status == RideStatus.REQUESTED
    assert stored.driver is None
    assert stored.ready_to_leave is False


def test_create_rejects_missing_address(lifecycle):
    with pytest.raises(RideStateException):
        lifecycle.create(PassengerSnapshot(student_id="s9", name="No Address", address=""), time_slot="7:00 PM")


def test_happy_path_through_every_status(lifecycle, ride, driver):
    assigned = lifecycle.assign(ride.id, driver)
    assert assigned.status == RideStatus.ASSIGNED
    assert assigned.driver.driver_id == "a"
    assert assigned.driver.vehicle_id == "car_a"
    assert assigned.driver.capacity == 4

    assert lifecycle.start(ride.id).status == RideStatus.DRIVER_EN_ROUTE
    assert lifecycle.arrive(ride.id).status == RideStatus.ARRIVING

    completed = lifecycle.complete(ride.id)
    assert completed.status == RideStatus.COMPLETED
    assert completed.completed_at is not None
    # 1. Completed rides keep their driver snapshot as history
    assert completed.driver.driver_id == "a"


def test_illegal_transitions_are_rejected_without_writing(lifecycle, ride, store):
    before = store.get(RIDES, ride.id).data

    with pytest.raises(RideStateException):
        lifecycle.complete(ride.id)
    with pytest.raises(RideStateException):
        lifecycle.start(ride.id)
    with pytest.raises(RideStateException):
        lifecycle.unassign(ride.id)

    assert store.get(RIDES, ride.id).data == before


def test_assigning_an_assigned_ride_is_rejected(lifecycle, ride, driver, add_driver):
    other = add_driver("b")
    lifecycle.assign(ride.id, driver)

    with pytest.raises(RideStateException):
        lifecycle.assign(ride.id, other)


def test_assign_requires_a_bound_vehicle(lifecycle, ride, add_driver):
    walker = add_driver("walker", bound=False)

    with pytest.raises(RideStateException):
        lifecycle.assign(ride.id, walker)


def test_unassign_demotes_and_clears_driver(lifecycle, ride, driver, notifier):
    lifecycle.assign(ride.id, driver)

    demoted = lifecycle.unassign(ride.id)

    assert demoted.status == RideStatus.REQUESTED
    assert demoted.driver is None
    assert [recipient for _, recipient, _ in notifier.of_type(NotificationType.UNASSIGNED_STUDENTS)] == ["s1", "a"]


def test_cancel_from_any_non_terminal_state(lifecycle, request_ride, driver):
    requested = request_ride("s2", "Roxbury")
    en_route = request_ride("s3", "Roxbury")
    lifecycle.assign(en_route.id, driver)
    lifecycle.start(en_route.id)

    for ride_id in (requested.id, en_route.id):
        cancelled = lifecycle.cancel(ride_id)
        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.driver is None

    with pytest.raises(RideStateException):
        lifecycle.cancel(requested.id)


def test_stale_transition_loses_to_concurrent_writer(lifecycle, ride, driver, store):
    """
    A transition validated against an old status must not overwrite a newer one.
    """
    assigned = lifecycle.assign(ride.id, driver)
    stale_plan = lifecycle.plan_start(assigned)
    lifecycle.cancel(ride.id)

    with pytest.raises(WriteConflict):
        lifecycle.commit([stale_plan])
    assert get_ride(store, ride.id).status == RideStatus.CANCELLED


def test_return_leg_does_not_change_status(lifecycle, ride, driver):
    lifecycle.assign(ride.id, driver)
    lifecycle.start(ride.id)

    # 1. Only completed rides may ask for a return
    with pytest.raises(RideStateException):
        lifecycle.mark_ready_to_leave(ride.id)

    lifecycle.complete(ride.id)
    ready = lifecycle.mark_ready_to_leave(ride.id)
    assert ready.ready_to_leave and ready.needs_return_driver
    # 2. Pressing twice is harmless
    assert lifecycle.mark_ready_to_leave(ride.id).ready_to_leave

    with_driver = lifecycle.assign_return_driver(ride.id, driver)
    assert with_driver.status == RideStatus.COMPLETED
    assert with_driver.return_driver.driver_id == "a"
    assert with_driver.return_in_flight

    started = lifecycle.start_return(ride.id)
    assert started.return_started_at is not None
    returned = lifecycle.complete_return(ride.id)
    assert returned.returned_at is not None
    assert not returned.return_in_flight
    assert returned.status == RideStatus.COMPLETED


def test_clear_return_driver_only_before_the_leg_starts(lifecycle, ride, driver):
    lifecycle.assign(ride.id, driver)
    lifecycle.start(ride.id)
    lifecycle.complete(ride.id)
    lifecycle.mark_ready_to_leave(ride.id)
    lifecycle.assign_return_driver(ride.id, driver)

    cleared = lifecycle.clear_return_driver(ride.id)
    assert cleared.return_driver is None
    assert cleared.needs_return_driver

    lifecycle.assign_return_driver(ride.id, driver)
    lifecycle.start_return(ride.id)
    with pytest.raises(RideStateException):
        lifecycle.clear_return_driver(ride.id)


class ExplodingNotifier(Notifier):
    def notify(self, notification_type, recipient_id, payload=None):
        raise RuntimeError("push service down")


def test_notification_failure_never_blocks_a_transition(store, ride, driver):
    lifecycle = RideLifecycle(store, ExplodingNotifier())

    assert lifecycle.assign(ride.id, driver).status == RideStatus.ASSIGNED
