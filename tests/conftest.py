import random
from datetime import datetime, timedelta, timezone

import pytest

from dispatch.dispatcher import Dispatcher
from dispatch.overrides import CoordinatorOverrides
from dispatch.state_machines.ride_state import RideLifecycle
from drivers.fleet import bind_vehicle
from drivers.models import Driver, Vehicle
from drivers.policy import default_dispatch_policy
from notifications.notifier import RecordingNotifier
from rides.models import PassengerSnapshot
from rides.queries import DRIVERS, VEHICLES
from rides.store import InMemoryDocumentStore

BASE_TIME = datetime(2026, 10, 18, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def policy():
    return default_dispatch_policy()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(store, notifier):
    return RideLifecycle(store, notifier)


@pytest.fixture
def dispatcher(store, lifecycle, policy):
    d = Dispatcher(store, lifecycle, policy, rng=random.Random(7))
    yield d
    d.stop()


@pytest.fixture
def overrides(store, lifecycle, policy):
    return CoordinatorOverrides(store, lifecycle, policy)


@pytest.fixture
def add_driver(store):
    """
    Seeds a driver and (by default) binds a fresh vehicle, leaving them available.
    """
    def _add(driver_id, capacity=4, bound=True, location=(42.35, -71.08), home=(42.36, -71.06)):
        driver = Driver.new(driver_id=driver_id, name=f"Driver {driver_id}", location=location, home_location=home)
        store.create(DRIVERS, driver.to_doc(), driver.id)
        vehicle = Vehicle.new(vehicle_id=f"car_{driver_id}", name="Honda Odyssey", capacity=capacity, color="Silver")
        store.create(VEHICLES, vehicle.to_doc(), vehicle.id)
        if bound:
            return bind_vehicle(store, driver.id, vehicle.id)
        return driver
    return _add


@pytest.fixture
def request_ride(lifecycle):
    """
    Creates a ride request. `minute` orders requests (oldest first).
    """
    def _request(student_id, address, minute=0, location=None):
        student = PassengerSnapshot(student_id=student_id, name=f"Student {student_id}", address=address, location=location)
        return lifecycle.create(student, time_slot="7:00 PM", now=BASE_TIME + timedelta(minutes=minute))
    return _request
