"""
System cost generation.
Per-km and per-day fixed operating costs charged to a trip from the rate
table of the trip's revenue currency.
"""
from datetime import datetime
from typing import Dict, List

from ..schemas.system_costs import PerDayCosts, PerKmCosts, SystemCostRates
from ..schemas.trips import CostEntry, Currency, SystemOrigin, Trip
from .formatting import format_currency, parse_date
from .trip_rules import new_id


SYSTEM_COSTS_CATEGORY = "System Costs"

DEFAULT_SYSTEM_COST_RATES: Dict[str, SystemCostRates] = {
    "USD": SystemCostRates(
        currency=Currency.usd,
        per_km_costs=PerKmCosts(repair_maintenance=0.11, tyre_cost=0.03),
        per_day_costs=PerDayCosts(
            git_insurance=10.21,
            short_term_insurance=7.58,
            tracking_cost=2.47,
            fleet_management_system=1.34,
            licensing=1.32,
            vid_roadworthy=0.41,
            wages=16.88,
            depreciation=321.17,
        ),
    ),
    "ZAR": SystemCostRates(
        currency=Currency.zar,
        per_km_costs=PerKmCosts(repair_maintenance=2.05, tyre_cost=0.64),
        per_day_costs=PerDayCosts(
            git_insurance=134.82,
            short_term_insurance=181.52,
            tracking_cost=49.91,
            fleet_management_system=23.02,
            licensing=23.52,
            vid_roadworthy=11.89,
            wages=300.15,
            depreciation=634.45,
        ),
    ),
}

PER_KM_LABELS = {
    "repair_maintenance": "Repair & Maintenance per KM",
    "tyre_cost": "Tyre Cost per KM",
}

PER_DAY_LABELS = {
    "git_insurance": "GIT Insurance",
    "short_term_insurance": "Short-Term Insurance",
    "tracking_cost": "Tracking Cost",
    "fleet_management_system": "Fleet Management System",
    "licensing": "Licensing",
    "vid_roadworthy": "VID / Roadworthy",
    "wages": "Wages",
    "depreciation": "Depreciation",
}


def trip_days(trip: Trip) -> int:
    """Inclusive number of days from start to end date, at least 1."""
    start = parse_date(trip.start_date)
    end = parse_date(trip.end_date)
    if start is None or end is None:
        return 1
    return max(1, (end - start).days + 1)


def generate_system_cost_entries(trip: Trip, rates: SystemCostRates, now: datetime) -> List[CostEntry]:
    """
    Build system cost entries for a trip.

    Per-km lines need a positive distance; per-day lines use trip_days().
    Zero rates produce no line.

    Args:
        trip: Trip to charge
        rates: Rate table (its currency is used for every entry)
        now: Generation time; its date is used when the trip has no dates

    Returns:
        List of new CostEntry objects (not attached to the trip)
    """
    entries: List[CostEntry] = []
    currency = rates.currency.value
    entry_date = trip.end_date or trip.start_date or now.date().isoformat()

    distance = trip.distance_km or 0
    if distance > 0:
        for key, label in PER_KM_LABELS.items():
            rate = getattr(rates.per_km_costs, key)
            if not rate:
                continue
            entries.append(CostEntry(
                id=new_id(),
                trip_id=trip.id,
                category=SYSTEM_COSTS_CATEGORY,
                sub_category=label,
                amount=round(distance * rate, 2),
                currency=currency,
                reference_number=f"SYS-KM-{key.upper()}",
                date=entry_date,
                is_system_generated=True,
                system_cost_type="per-km",
                calculation_details=f"{distance:g} km x {format_currency(rate, currency)}/km",
                origin=SystemOrigin(),
            ))

    days = trip_days(trip)
    for key, label in PER_DAY_LABELS.items():
        rate = getattr(rates.per_day_costs, key)
        if not rate:
            continue
        entries.append(CostEntry(
            id=new_id(),
            trip_id=trip.id,
            category=SYSTEM_COSTS_CATEGORY,
            sub_category=label,
            amount=round(days * rate, 2),
            currency=currency,
            reference_number=f"SYS-DAY-{key.upper()}",
            date=entry_date,
            is_system_generated=True,
            system_cost_type="per-day",
            calculation_details=f"{days} days x {format_currency(rate, currency)}/day",
            origin=SystemOrigin(),
        ))
    return entries


def apply_system_costs(trip: Trip, rates: SystemCostRates, now: datetime) -> Trip:
    """Replace the trip's system-generated entries with freshly generated ones."""
    manual = [cost for cost in trip.costs if not cost.is_system_generated]
    return trip.model_copy(update={"costs": manual + generate_system_cost_entries(trip, rates, now)})
