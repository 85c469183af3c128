import pandas as pd
import numpy as np
from datetime import datetime, timezone, timedelta

# Neighbourhood centres with street names the zone classifier recognises.
NEIGHBOURHOODS = {
    "back_bay": ((42.3503, -71.0810), ["Newbury St", "Boylston St", "Commonwealth Ave, Back Bay"]),
    "north": ((42.3647, -71.0542), ["Hanover St", "Salem St, North End", "Bunker Hill St, Charlestown"]),
    "west": ((42.3539, -71.1337), ["Cambridge St, Allston", "Faneuil St", "Academy Hill Rd"]),
    "south": ((42.3016, -71.0676), ["Dorchester Ave", "Blue Hill Ave, Roxbury", "Broadway, South Boston"]),
    "downtown": ((42.3555, -71.0605), ["Tremont St", "Summer St", "State St"]),
}

FIRST_NAMES = ["Asha", "Ravi", "Meera", "Kiran", "Priya", "Dev", "Anika", "Rohan", "Isha", "Neel", "Tara", "Vikram"]


def generate_mock_requests(num_requests=40, num_drivers=8, output_file="mock_ride_requests.csv", drivers_file="mock_drivers.csv", seed=None):
    """
    Generates a realistic evening of carpool requests for testing dispatch.
    Students cluster around a handful of Boston neighbourhoods so that zone
    affinity has something to latch onto; drivers start spread across the same area.
    """
    rng = np.random.default_rng(seed)
    zones = list(NEIGHBOURHOODS)
    now = datetime.now(timezone.utc)

    # 1. Ride requests, heavier in back bay and downtown
    data = []
    for request_index in range(num_requests):
        zone = rng.choice(zones, p=[0.3, 0.15, 0.15, 0.15, 0.25])
        (centre_lat, centre_lng), streets = NEIGHBOURHOODS[zone]

        # Within ~1.5km of the neighbourhood centre (roughly 0.015 degrees)
        lat = centre_lat + rng.uniform(-0.015, 0.015)
        lng = centre_lng + rng.uniform(-0.015, 0.015)

        data.append({
            "student_id": f"stu_{str(request_index+1).zfill(4)}",
            "name": f"{rng.choice(FIRST_NAMES)} {chr(65 + request_index % 26)}.",
            "address": f"{rng.integers(1, 400)} {rng.choice(streets)}",
            "lat": np.round(lat, 6),
            "lng": np.round(lng, 6),
            "zone": zone,
            "time_slot": rng.choice(["6:30 PM", "7:00 PM"], p=[0.4, 0.6]),
            "created_at": (now - timedelta(minutes=int(rng.integers(0, 90)))).isoformat(),
        })

    df = pd.DataFrame(data).sort_values("created_at")
    df.to_csv(output_file, index=False)
    print(f"✅ Generated {num_requests} ride requests and saved to '{output_file}'")

    # 2. Drivers with the vehicle they will bind for the evening
    drivers = []
    for driver_index in range(num_drivers):
        (centre_lat, centre_lng), _ = NEIGHBOURHOODS[zones[driver_index % len(zones)]]
        drivers.append({
            "driver_id": f"drv_{str(driver_index+1).zfill(3)}",
            "name": f"Volunteer {driver_index+1}",
            "lat": np.round(centre_lat + rng.uniform(-0.02, 0.02), 6),
            "lng": np.round(centre_lng + rng.uniform(-0.02, 0.02), 6),
            "vehicle_id": f"veh_{str(driver_index+1).zfill(3)}",
            "vehicle_name": rng.choice(["Honda Odyssey", "Toyota Sienna", "Toyota Corolla", "Subaru Outback"]),
            # Mostly minivans, a few sedans
            "capacity": int(rng.choice([3, 4, 6], p=[0.25, 0.45, 0.3])),
        })

    pd.DataFrame(drivers).to_csv(drivers_file, index=False)
    print(f"✅ Generated {num_drivers} drivers and saved to '{drivers_file}'")

    print("\nRequests per zone:")
    for zone, count in df["zone"].value_counts().items():
        print(f"  {zone}: {count}")


if __name__ == "__main__":
    generate_mock_requests(num_requests=40, num_drivers=8)
