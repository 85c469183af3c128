from datetime import datetime

import pytest

from dispatch.state_machines.driver_state import DriverStateException, WorkflowState
from drivers.policy import DispatchPolicy
from drivers.workflow import DriverAssignmentWorkflow
from rides.context import ride_context
from rides.models import RideDirection

# 2026-10-16 is a Friday
FRIDAY = datetime(2026, 10, 16)


def test_friday_before_the_event_is_pickup_time():
    context = ride_context(FRIDAY.replace(hour=17, minute=45))

    assert context.direction == RideDirection.PICKUP
    assert context.rides_available
    assert context.display_text == "Home -> Sabha Venue"


def test_friday_during_the_event_has_no_rides():
    # 1. Start hour is inclusive, end hour exclusive
    for hour in (19, 20, 21):
        context = ride_context(FRIDAY.replace(hour=hour, minute=30))
        assert context.direction is None
        assert context.display_text == "Sabha Venue in progress"


def test_friday_after_the_event_is_dropoff_time():
    for hour in (22, 23):
        assert ride_context(FRIDAY.replace(hour=hour)).direction == RideDirection.DROPOFF


def test_other_days_have_no_rides():
    sunday = datetime(2026, 10, 18, 17, 0)
    context = ride_context(sunday)

    assert not context.rides_available
    assert context.time_context == "Rides only available on Fridays"
    assert context.to_doc()["direction"] is None


def test_event_window_follows_the_policy():
    policy = DispatchPolicy(venue_name="Community Hall", event_weekday=6, event_start_hour=10, event_end_hour=12)
    sunday = datetime(2026, 10, 18)

    assert ride_context(sunday.replace(hour=9), policy).direction == RideDirection.PICKUP
    assert ride_context(sunday.replace(hour=11), policy).direction is None
    assert ride_context(sunday.replace(hour=12), policy).direction == RideDirection.DROPOFF
    assert ride_context(FRIDAY.replace(hour=17), policy).direction is None


def test_event_window_is_validated():
    with pytest.raises(ValueError):
        DispatchPolicy(event_weekday=7).validate()

    with pytest.raises(ValueError):
        DispatchPolicy(event_start_hour=22, event_end_hour=19).validate()


def test_assign_me_only_collects_the_leg_the_clock_allows(store, lifecycle, policy, add_driver, request_ride, dispatcher):
    add_driver("a")
    request_ride("s1", "Newbury St")
    dispatcher.run_outbound_pass()
    workflow = DriverAssignmentWorkflow(store, "a", lifecycle, policy)

    # 1. After the event only return passengers qualify; this driver has none
    late = ride_context(FRIDAY.replace(hour=22, minute=15), policy)
    with pytest.raises(DriverStateException):
        workflow.assign_me(direction=late.direction)
    assert workflow.state == WorkflowState.DASHBOARD

    # 2. Before the event the outbound passenger is collected
    early = ride_context(FRIDAY.replace(hour=18), policy)
    workflow.assign_me(direction=early.direction)
    assert workflow.direction == RideDirection.PICKUP
    assert [ride.student.student_id for ride in workflow.rides] == ["s1"]
