"""
Seed the configured record store with sample trips, fuel purchases and
missed loads.

Usage:
  STORE_BACKEND=sql python scripts/seed_sample_data.py

Everything goes through FleetOperations, so cost allocation and
auto-completion rules apply exactly as they do for API requests.
"""

from fleetops.logging import setup_logging
from fleetops.schemas.diesel import DieselRecordCreate
from fleetops.schemas.missed_loads import MissedLoadCreate
from fleetops.schemas.trips import CostEntryCreate, InvoiceUpdate, TripCreate
from fleetops.services.operations import FleetOperations
from fleetops.store.factory import get_record_store


SAMPLE_TRIPS = [
    TripCreate(
        fleet_number="6H",
        driver_name="Enock Mukonyerwa",
        client_name="Teralco",
        client_type="external",
        start_date="2025-01-01",
        end_date="2025-01-05",
        route="Johannesburg to Cape Town",
        description="Regular delivery route with machinery transport",
        base_revenue=45000,
        revenue_currency="ZAR",
        distance_km=1400,
        planned_arrival_date_time="2025-01-05T08:00:00",
        actual_arrival_date_time="2025-01-05T09:30:00",
    ),
    TripCreate(
        fleet_number="26H",
        driver_name="Jonathan Bepete",
        client_name="SPF",
        client_type="external",
        start_date="2025-01-03",
        end_date="2025-01-08",
        route="Beitbridge to Johannesburg",
        description="Cross-border freight with clearing requirements",
        base_revenue=8500,
        revenue_currency="USD",
        distance_km=580,
    ),
    TripCreate(
        fleet_number="22H",
        driver_name="Lovemore Qochiwe",
        client_name="National foods",
        client_type="internal",
        start_date="2024-12-15",
        end_date="2024-12-18",
        route="Cape Town to Johannesburg",
        description="Return trip with food products",
        base_revenue=38000,
        revenue_currency="ZAR",
        distance_km=1400,
    ),
]


def run():
    setup_logging()
    ops = FleetOperations(get_record_store())
    if ops.trips:
        print(f"Store already holds {len(ops.trips)} trips, skipping seed")
        return

    trip_ids = []
    for data in SAMPLE_TRIPS:
        result = ops.add_trip(data)
        if not result.ok:
            raise SystemExit(f"Failed to add trip {data.fleet_number}: {result.error.message}")
        trip_ids.append(result.value.id)
        print(f"Added trip {data.fleet_number} {data.route}")

    ops.add_cost_entry(trip_ids[0], CostEntryCreate(
        category="Tolls",
        sub_category="Tolls JHB to CPT",
        amount=2450,
        currency="ZAR",
        reference_number="TOLL-0001",
        date="2025-01-02",
    ))
    ops.add_cost_entry(trip_ids[1], CostEntryCreate(
        category="Border Costs",
        sub_category="Beitbridge Border Fee",
        amount=180,
        currency="USD",
        reference_number="BB-2025-014",
        date="2025-01-04",
        is_flagged=True,
        flag_reason="Amount above usual border fee",
    ))
    ops.update_invoice(trip_ids[2], InvoiceUpdate(
        invoice_number="INV-2024-001",
        invoice_date="2024-12-21",
        invoice_due_date="2025-01-20",
        invoice_submitted_by="Fleet Manager",
    ))

    ops.add_diesel_record(DieselRecordCreate(
        fleet_number="6H",
        date="2025-01-02",
        km_reading=125000,
        previous_km_reading=123560,
        litres_filled=450,
        total_cost=8325,
        fuel_station="RAM Petroleum Harare",
        driver_name="Enock Mukonyerwa",
        notes="Full tank before long trip",
        trip_id=trip_ids[0],
    ))
    ops.add_diesel_record(DieselRecordCreate(
        fleet_number="26H",
        date="2025-01-04",
        km_reading=89000,
        previous_km_reading=87670,
        litres_filled=380,
        total_cost=7296,
        fuel_station="Engen Beitbridge",
        driver_name="Jonathan Bepete",
        notes="Border crossing fill-up",
    ))

    ops.add_missed_load(MissedLoadCreate(
        customer_name="Teralco",
        load_request_date="2025-01-06",
        requested_pickup_date="2025-01-08",
        requested_delivery_date="2025-01-11",
        route="Harare to Johannesburg",
        estimated_revenue=32000,
        currency="ZAR",
        reason="no_vehicle",
        reason_description="All horses committed to cross-border loads",
        follow_up_required=True,
        recorded_by="Dispatch",
        impact="high",
    ))

    print(
        f"Seeded {len(ops.trips)} trips, {len(ops.diesel_records)} diesel records "
        f"and {len(ops.missed_loads)} missed loads"
    )


if __name__ == "__main__":
    run()
