"""
End-to-end carpool evening on the in-memory store:
requests come in -> reactive dispatcher assigns them -> each driver runs an
outbound round -> everyone is marked ready to leave -> return rounds take them home.

Reads mock_ride_requests.csv / mock_drivers.csv when present
(see generate_mock_requests.py), otherwise generates them first.
"""

import logging
import os
import random
import time
from datetime import datetime, timezone

import pandas as pd

from dispatch.dispatcher import Dispatcher
from dispatch.state_machines.driver_state import DriverStateException
from dispatch.state_machines.ride_state import RideLifecycle
from drivers.fleet import bind_vehicle
from drivers.models import Driver, Vehicle
from drivers.policy import policy_from_env
from drivers.workflow import DriverAssignmentWorkflow
from notifications.notifier import NotificationType, RecordingNotifier
from rides.models import IN_FLIGHT_STATUSES, PassengerSnapshot, RideStatus
from rides.queries import DRIVERS, VEHICLES, load_drivers, load_rides
from rides.store import InMemoryDocumentStore
from routing.zones import classify

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
REQUESTS_CSV = os.path.join(BASE_DIR, "mock_ride_requests.csv")
DRIVERS_CSV = os.path.join(BASE_DIR, "mock_drivers.csv")


def load_mock_data():
    if not (os.path.exists(REQUESTS_CSV) and os.path.exists(DRIVERS_CSV)):
        from generate_mock_requests import generate_mock_requests
        generate_mock_requests(output_file=REQUESTS_CSV, drivers_file=DRIVERS_CSV, seed=7)
    return pd.read_csv(REQUESTS_CSV), pd.read_csv(DRIVERS_CSV)


def seed_drivers(store, drivers_df):
    for row in drivers_df.itertuples(index=False):
        driver = Driver.new(
            driver_id=row.driver_id,
            name=row.name,
            location=(float(row.lat), float(row.lng)),
            home_location=(float(row.lat), float(row.lng)),
        )
        store.create(DRIVERS, driver.to_doc(), driver.id)
        vehicle = Vehicle.new(vehicle_id=row.vehicle_id, name=row.vehicle_name, capacity=int(row.capacity))
        store.create(VEHICLES, vehicle.to_doc(), vehicle.id)


def visit_all_stops(workflow):
    for index, waypoint in enumerate(workflow.waypoints):
        if waypoint.is_stop and not waypoint.visited:
            workflow.toggle_waypoint(index)


def drive_rounds(store, lifecycle, policy, notifier):
    """Every driver with passengers waiting runs exactly one round."""
    summaries = []
    for driver in load_drivers(store):
        workflow = DriverAssignmentWorkflow(store, driver.id, lifecycle, policy, notifier)
        workflow.rehydrate()
        try:
            workflow.assign_me()
        except DriverStateException:
            continue

        print(f"  {driver.id} {workflow.direction.value}: {len(workflow.rides)} passengers, ~{workflow.estimated_minutes} min")
        workflow.accept()
        visit_all_stops(workflow)
        summary = workflow.complete()
        summaries.append({"driver_id": driver.id, "round": summary.direction.value, "passengers": summary.passengers, "distance_km": summary.distance_km})
    return summaries


def run_simulation():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=== STARTING CARPOOL DISPATCH SIMULATION ===")

    # 1. Load data and build the in-memory system
    requests_df, drivers_df = load_mock_data()
    store = InMemoryDocumentStore()
    notifier = RecordingNotifier()
    policy = policy_from_env()
    lifecycle = RideLifecycle(store, notifier)
    dispatcher = Dispatcher(store, lifecycle, policy, rng=random.Random(7), notifier=notifier)
    seed_drivers(store, drivers_df)
    print(f"Loaded {len(requests_df)} requests and {len(drivers_df)} drivers.\n")

    # 2. Start the reactive loop, then let drivers come online and students request
    dispatcher.start()
    for row in drivers_df.itertuples(index=False):
        bind_vehicle(store, row.driver_id, row.vehicle_id)

    start_time = time.time()
    for row in requests_df.itertuples(index=False):
        student = PassengerSnapshot(
            student_id=row.student_id,
            name=row.name,
            address=row.address,
            location=(float(row.lat), float(row.lng)),
        )
        lifecycle.create(student, time_slot=row.time_slot, now=datetime.fromisoformat(row.created_at))
    dispatcher.wait_idle()
    print(f"Dispatcher settled in {time.time() - start_time:.2f}s.\n")

    # 3. Outbound rounds until nobody is left waiting or no round makes progress
    print("--- Outbound rounds ---")
    summaries = []
    while True:
        completed = drive_rounds(store, lifecycle, policy, notifier)
        dispatcher.wait_idle()
        summaries.extend(completed)
        if not completed:
            break

    # 4. Event over: everyone who arrived wants to go home
    for ride in load_rides(store):
        if ride.status == RideStatus.COMPLETED:
            lifecycle.mark_ready_to_leave(ride.id)
    dispatcher.wait_idle()

    print("\n--- Return rounds ---")
    while True:
        completed = drive_rounds(store, lifecycle, policy, notifier)
        dispatcher.wait_idle()
        summaries.extend(completed)
        if not completed:
            break

    dispatcher.stop()

    # 5. Report
    rides = load_rides(store)
    waiting = [ride for ride in rides if ride.status == RideStatus.REQUESTED]
    in_flight = [ride for ride in rides if ride.status in IN_FLIGHT_STATUSES]
    returned = [ride for ride in rides if ride.returned_at is not None]

    print("\n=== SIMULATION RESULTS ===")
    print(f"Requests:           {len(rides)}")
    print(f"Still waiting:      {len(waiting)}")
    print(f"Still in flight:    {len(in_flight)}")
    print(f"Taken home:         {len(returned)}")

    if summaries:
        per_driver = (
            pd.DataFrame(summaries)
            .groupby(["driver_id", "round"])
            .agg(rounds=("passengers", "size"), passengers=("passengers", "sum"), distance_km=("distance_km", "sum"))
            .round(2)
        )
        print("\nPer driver:")
        print(per_driver.to_string())

    print("\nNotifications sent:")
    for notification_type in NotificationType:
        print(f"  {notification_type.value:<22} {len(notifier.of_type(notification_type))}")

    zones = pd.Series([classify(ride.student.address).value for ride in rides]).value_counts()
    print("\nRequests per zone:")
    for zone, count in zones.items():
        print(f"  {zone}: {count}")

    print(f"\nDone at {datetime.now(timezone.utc).isoformat()}")


if __name__ == "__main__":
    run_simulation()
