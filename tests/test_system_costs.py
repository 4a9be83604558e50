from datetime import datetime, timezone

import pytest

from fleetops.schemas.system_costs import PerDayCosts, PerKmCosts, SystemCostRates
from fleetops.services import system_costs

from factories import make_cost, make_trip


NOW = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)
ZAR_RATES = system_costs.DEFAULT_SYSTEM_COST_RATES["ZAR"]


def test_trip_days_is_inclusive_with_minimum_one():
    assert system_costs.trip_days(make_trip()) == 5
    assert system_costs.trip_days(make_trip(start_date="2025-01-05", end_date="2025-01-05")) == 1
    assert system_costs.trip_days(make_trip(start_date="2025-01-05", end_date="2025-01-01")) == 1
    assert system_costs.trip_days(make_trip(start_date="", end_date="")) == 1


def test_generate_system_cost_entries():
    entries = system_costs.generate_system_cost_entries(make_trip(), ZAR_RATES, NOW)

    assert len(entries) == 10
    assert all(e.is_system_generated for e in entries)
    assert all(e.category == "System Costs" for e in entries)
    assert all(e.origin.kind == "system" for e in entries)
    assert all(e.currency.value == "ZAR" for e in entries)

    by_ref = {e.reference_number: e for e in entries}
    repair = by_ref["SYS-KM-REPAIR_MAINTENANCE"]
    assert repair.amount == pytest.approx(2050.0)
    assert repair.system_cost_type == "per-km"
    assert repair.sub_category == "Repair & Maintenance per KM"
    assert repair.calculation_details == "1000 km x R2.05/km"

    wages = by_ref["SYS-DAY-WAGES"]
    assert wages.amount == pytest.approx(1500.75)
    assert wages.system_cost_type == "per-day"
    assert wages.calculation_details == "5 days x R300.15/day"
    assert wages.date == "2025-01-05"


def test_per_km_lines_need_distance():
    entries = system_costs.generate_system_cost_entries(make_trip(distance_km=None), ZAR_RATES, NOW)

    assert len(entries) == 8
    assert {e.system_cost_type for e in entries} == {"per-day"}


def test_zero_rates_produce_no_entries():
    rates = SystemCostRates(
        currency="USD",
        per_km_costs=PerKmCosts(repair_maintenance=0.11),
        per_day_costs=PerDayCosts(wages=16.88),
    )

    entries = system_costs.generate_system_cost_entries(make_trip(revenue_currency="USD"), rates, NOW)

    assert [e.sub_category for e in entries] == ["Repair & Maintenance per KM", "Wages"]
    assert entries[0].amount == pytest.approx(110.0)
    assert entries[0].calculation_details == "1000 km x $0.11/km"


def test_apply_system_costs_replaces_previous_entries():
    trip = make_trip(costs=[make_cost()])

    once = system_costs.apply_system_costs(trip, ZAR_RATES, NOW)
    twice = system_costs.apply_system_costs(once, ZAR_RATES, NOW)

    assert len(twice.costs) == 11
    assert sum(1 for c in twice.costs if c.is_system_generated) == 10
    assert twice.costs[0].id == "cost-1"
