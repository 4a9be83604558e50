"""
Derived metrics over in-memory trip snapshots.

Every function here is pure: it takes entity lists already held in memory,
never performs I/O and never mutates its inputs. Amounts are summed as
stored, without currency conversion (cost entries in USD and ZAR on the same
trip are added together).
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from ..config import settings
from ..schemas.trips import CostEntry, FlaggedCost, Trip, TripStatus, ClientType, InvestigationStatus
from ..schemas.missed_loads import MissedLoad, MissedLoadSummary
from ..schemas.reports import (
    CostBreakdownItem,
    CurrencyFleetReport,
    DriverStats,
    TripKPIs,
    TripReport,
)
from .formatting import parse_date, parse_datetime


ADDITIONAL_COSTS_CATEGORY = "Additional Costs"


def calculate_total_costs(costs: Iterable[CostEntry]) -> float:
    return sum(cost.amount for cost in costs)


def _trip_expenses(trip: Trip) -> float:
    additional = sum(cost.amount for cost in trip.additional_costs or [])
    return calculate_total_costs(trip.costs) + additional


def calculate_kpis(trip: Trip) -> TripKPIs:
    """
    Revenue, expenses, profit, margin and cost per km for one trip.

    Expenses include cost entries and additional (pre-invoice) costs.
    Margin is 0 when revenue is 0; cost per km is 0 without a distance.
    """
    total_revenue = trip.base_revenue or 0
    total_expenses = _trip_expenses(trip)
    net_profit = total_revenue - total_expenses
    profit_margin = (net_profit / total_revenue) * 100 if total_revenue > 0 else 0
    cost_per_km = total_expenses / trip.distance_km if trip.distance_km and trip.distance_km > 0 else 0
    return TripKPIs(
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        net_profit=net_profit,
        profit_margin=profit_margin,
        cost_per_km=cost_per_km,
        currency=trip.revenue_currency,
    )


# Flag and investigation helpers
def get_flagged_costs_count(costs: Iterable[CostEntry]) -> int:
    return sum(1 for cost in costs if cost.is_flagged)


def is_unresolved(cost: CostEntry) -> bool:
    return cost.is_flagged and cost.investigation_status != InvestigationStatus.resolved


def get_unresolved_flags_count(costs: Iterable[CostEntry]) -> int:
    return sum(1 for cost in costs if is_unresolved(cost))


def can_complete_trip(trip: Trip) -> bool:
    return get_unresolved_flags_count(trip.costs) == 0


def _flag_timestamp(cost: CostEntry) -> float:
    flagged = parse_datetime(cost.flagged_at)
    if flagged is not None:
        return flagged.timestamp()
    d = parse_date(cost.date)
    if d is not None:
        return datetime(d.year, d.month, d.day).timestamp()
    return 0.0


def get_all_flagged_costs(trips: Iterable[Trip]) -> List[FlaggedCost]:
    """Flagged costs across trips: pending investigations first, newest first within each group."""
    flagged: List[FlaggedCost] = []
    for trip in trips:
        for cost in trip.costs:
            if cost.is_flagged:
                flagged.append(FlaggedCost(
                    **cost.model_dump(),
                    trip_fleet_number=trip.fleet_number,
                    trip_route=trip.route,
                    trip_driver_name=trip.driver_name,
                ))
    flagged.sort(key=lambda c: (
        0 if c.investigation_status == InvestigationStatus.pending else 1,
        -_flag_timestamp(c),
    ))
    return flagged


# Filtering helpers
def filter_trips_by_date_range(trips: Sequence[Trip], start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[Trip]:
    if not start_date and not end_date:
        return list(trips)
    lower = parse_date(start_date)
    upper = parse_date(end_date)
    result = []
    for trip in trips:
        trip_start = parse_date(trip.start_date)
        trip_end = parse_date(trip.end_date)
        if lower and trip_start and trip_start < lower:
            continue
        if upper and trip_end and trip_end > upper:
            continue
        result.append(trip)
    return result


def filter_trips_by_client(trips: Sequence[Trip], client: Optional[str]) -> List[Trip]:
    if not client:
        return list(trips)
    return [trip for trip in trips if trip.client_name == client]


def filter_trips_by_currency(trips: Sequence[Trip], currency: Optional[str]) -> List[Trip]:
    if not currency:
        return list(trips)
    return [trip for trip in trips if trip.revenue_currency == currency]


def filter_trips_by_driver(trips: Sequence[Trip], driver: Optional[str]) -> List[Trip]:
    if not driver:
        return list(trips)
    return [trip for trip in trips if trip.driver_name == driver]


def _margin(revenue: float, expenses: float) -> float:
    return ((revenue - expenses) / revenue) * 100 if revenue > 0 else 0


def _resolution_days(cost: CostEntry, placeholder_days: float) -> float:
    flagged = parse_datetime(cost.flagged_at)
    resolved = parse_datetime(cost.resolved_at)
    if flagged is None or resolved is None:
        return placeholder_days
    return (resolved - flagged).total_seconds() / 86400


def generate_currency_fleet_report(
    trips: Sequence[Trip],
    currency: str,
    placeholder_days: Optional[float] = None,
) -> CurrencyFleetReport:
    """
    Fleet report for trips whose revenue currency matches `currency`.

    Resolved flags without both timestamps count as `placeholder_days`
    toward the average resolution time (settings default: 3 days).
    """
    if placeholder_days is None:
        placeholder_days = settings.unresolved_timestamp_days

    currency_trips = filter_trips_by_currency(trips, currency)
    total_trips = len(currency_trips)

    total_revenue = sum(trip.base_revenue or 0 for trip in currency_trips)
    total_expenses = sum(_trip_expenses(trip) for trip in currency_trips)

    internal = [t for t in currency_trips if t.client_type == ClientType.internal]
    external = [t for t in currency_trips if t.client_type == ClientType.external]
    internal_revenue = sum(t.base_revenue or 0 for t in internal)
    internal_expenses = sum(_trip_expenses(t) for t in internal)
    external_revenue = sum(t.base_revenue or 0 for t in external)
    external_expenses = sum(_trip_expenses(t) for t in external)

    # Investigation metrics
    all_flags = [cost for trip in currency_trips for cost in trip.costs if cost.is_flagged]
    resolved_flags = [c for c in all_flags if c.investigation_status == InvestigationStatus.resolved]
    trips_with_investigations = sum(1 for t in currency_trips if any(c.is_flagged for c in t.costs))
    avg_resolution_time = (
        sum(_resolution_days(c, placeholder_days) for c in resolved_flags) / len(resolved_flags)
        if resolved_flags else 0
    )

    driver_stats: Dict[str, DriverStats] = {}
    for trip in currency_trips:
        stats = driver_stats.setdefault(trip.driver_name, DriverStats())
        stats.trips += 1
        stats.revenue += trip.base_revenue or 0
        stats.expenses += _trip_expenses(trip)
        stats.flags += get_flagged_costs_count(trip.costs)
        if trip.client_type == ClientType.internal:
            stats.internal_trips += 1
        else:
            stats.external_trips += 1

    return CurrencyFleetReport(
        currency=currency,
        total_trips=total_trips,
        active_trips=sum(1 for t in currency_trips if t.status == TripStatus.active),
        completed_trips=sum(1 for t in currency_trips if t.status == TripStatus.completed),
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        net_profit=total_revenue - total_expenses,
        profit_margin=_margin(total_revenue, total_expenses),
        avg_revenue_per_trip=total_revenue / total_trips if total_trips else 0,
        avg_cost_per_trip=total_expenses / total_trips if total_trips else 0,
        internal_trips=len(internal),
        external_trips=len(external),
        internal_revenue=internal_revenue,
        internal_profit_margin=_margin(internal_revenue, internal_expenses),
        external_revenue=external_revenue,
        external_profit_margin=_margin(external_revenue, external_expenses),
        total_flags=len(all_flags),
        unresolved_flags=sum(1 for c in all_flags if c.investigation_status != InvestigationStatus.resolved),
        trips_with_investigations=trips_with_investigations,
        investigation_rate=(trips_with_investigations / total_trips) * 100 if total_trips else 0,
        avg_flags_per_trip=len(all_flags) / total_trips if total_trips else 0,
        avg_resolution_time=avg_resolution_time,
        driver_stats=driver_stats,
    )


def calculate_trip_compliance(trip: Trip) -> float:
    """
    Compliance score out of 100.

    Deductions:
      - arrival deviation vs plan: >4h -20, >2h -10, >1h -5 (one band only)
      - delays: min(30, total delay hours * 2)
      - cost entries without attachments: min(20, count * 5)
    """
    score = 100.0

    planned = parse_datetime(trip.planned_arrival_date_time)
    actual = parse_datetime(trip.actual_arrival_date_time)
    if planned and actual:
        diff_hours = abs((actual - planned).total_seconds()) / 3600
        if diff_hours > 4:
            score -= 20
        elif diff_hours > 2:
            score -= 10
        elif diff_hours > 1:
            score -= 5

    if trip.delay_reasons:
        total_delay_hours = sum(delay.delay_duration or 0 for delay in trip.delay_reasons)
        score -= min(30, total_delay_hours * 2)

    costs_without_docs = sum(1 for cost in trip.costs if not cost.attachments)
    if costs_without_docs:
        score -= min(20, costs_without_docs * 5)

    return max(0.0, min(100.0, score))


def generate_report(trip: Trip) -> TripReport:
    kpis = calculate_kpis(trip)

    breakdown: Dict[str, CostBreakdownItem] = {}
    for cost in trip.costs:
        item = breakdown.setdefault(cost.category, CostBreakdownItem(category=cost.category, total=0, count=0))
        item.total += cost.amount
        item.count += 1
    for cost in trip.additional_costs or []:
        item = breakdown.setdefault(
            ADDITIONAL_COSTS_CATEGORY,
            CostBreakdownItem(category=ADDITIONAL_COSTS_CATEGORY, total=0, count=0),
        )
        item.total += cost.amount
        item.count += 1

    items = list(breakdown.values())
    for item in items:
        item.percentage = (item.total / kpis.total_expenses) * 100 if kpis.total_expenses > 0 else 0
    items.sort(key=lambda i: i.total, reverse=True)

    return TripReport(
        **kpis.model_dump(),
        cost_breakdown=items,
        total_costs=kpis.total_expenses,
        has_attachments=any(cost.attachments for cost in trip.costs),
        missing_receipts=[cost for cost in trip.costs if not cost.attachments],
        flagged_costs=[cost for cost in trip.costs if cost.is_flagged],
        investigation_details=trip.investigation_notes or None,
        compliance_score=calculate_trip_compliance(trip),
    )


def summarize_missed_loads(loads: Iterable[MissedLoad]) -> MissedLoadSummary:
    summary = MissedLoadSummary()
    for load in loads:
        summary.total_missed_loads += 1
        currency = str(load.currency.value)
        summary.revenue_lost[currency] = summary.revenue_lost.get(currency, 0) + (load.estimated_revenue or 0)
        summary.by_reason[load.reason.value] = summary.by_reason.get(load.reason.value, 0) + 1
        summary.by_impact[load.impact.value] = summary.by_impact.get(load.impact.value, 0) + 1
        status = load.resolution_status.value
        summary.by_resolution_status[status] = summary.by_resolution_status.get(status, 0) + 1
        if load.competitor_won:
            summary.competitor_won_count += 1
        if load.follow_up_required:
            summary.follow_ups_required += 1
    return summary
