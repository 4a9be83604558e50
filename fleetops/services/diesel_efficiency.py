"""
Diesel efficiency service.
Derives distance and km/L from odometer readings and classifies each fill-up
against the per-fleet consumption norm.
"""
from typing import Dict, Iterable, List, Optional, Sequence

from ..config import settings
from ..schemas.diesel import (
    DieselConsumptionRecord,
    DieselEfficiency,
    DieselNorm,
    DieselSummary,
    LinkedTripInfo,
    PerformanceStatus,
)
from ..schemas.trips import Trip


def _norm(fleet_number: str, km_per_litre: float, tolerance: float = 10) -> DieselNorm:
    return DieselNorm(
        fleet_number=fleet_number,
        expected_km_per_litre=km_per_litre,
        tolerance_percentage=tolerance,
    )


DEFAULT_DIESEL_NORMS: Dict[str, DieselNorm] = {
    n.fleet_number: n
    for n in [
        _norm("4H", 3.5),
        _norm("6H", 3.2),
        _norm("21H", 3.0),
        _norm("22H", 3.1),
        _norm("23H", 3.0),
        _norm("24H", 2.9),
        _norm("26H", 3.5),
        _norm("28H", 3.3),
        _norm("29H", 3.2),
        _norm("30H", 3.1),
        _norm("31H", 3.0),
        _norm("32H", 3.2),
        _norm("33H", 3.1),
        _norm("UD", 2.8, 15),
    ]
}


def derive_efficiency(
    km_reading: Optional[float],
    previous_km_reading: Optional[float],
    litres_filled: Optional[float],
    total_cost: Optional[float],
    cost_per_litre: Optional[float] = None,
) -> Dict[str, Optional[float]]:
    """
    Derive distance, km/L and cost/L for one fill-up.

    Args:
        km_reading: Odometer at fill-up
        previous_km_reading: Odometer at the previous fill-up
        litres_filled: Litres dispensed
        total_cost: Amount paid
        cost_per_litre: Price per litre when known; derived otherwise

    Returns:
        Dict with distance_travelled, km_per_litre and cost_per_litre
        (None where the inputs do not allow a value)
    """
    distance = None
    if km_reading and previous_km_reading and km_reading > 0 and previous_km_reading > 0:
        distance = km_reading - previous_km_reading
        if distance <= 0:
            distance = None

    km_per_litre = None
    if distance and litres_filled and litres_filled > 0:
        km_per_litre = distance / litres_filled

    if not cost_per_litre and litres_filled and litres_filled > 0:
        cost_per_litre = (total_cost or 0) / litres_filled

    return {
        "distance_travelled": distance,
        "km_per_litre": km_per_litre,
        "cost_per_litre": cost_per_litre,
    }


def get_norm(fleet_number: str, norms: Optional[Dict[str, DieselNorm]] = None) -> DieselNorm:
    """Configured norm for a fleet, or the default km/L and tolerance."""
    if norms is None:
        norms = DEFAULT_DIESEL_NORMS
    norm = norms.get(fleet_number)
    if norm is not None:
        return norm
    return DieselNorm(
        fleet_number=fleet_number,
        expected_km_per_litre=settings.default_km_per_litre,
        tolerance_percentage=settings.default_tolerance_pct,
    )


def efficiency_variance(km_per_litre: Optional[float], norm: DieselNorm) -> float:
    return (((km_per_litre or 0) - norm.expected_km_per_litre) / norm.expected_km_per_litre) * 100


def classify_performance(km_per_litre: Optional[float], norm: DieselNorm) -> PerformanceStatus:
    variance = efficiency_variance(km_per_litre, norm)
    tolerance = norm.tolerance_percentage
    if abs(variance) <= tolerance:
        return PerformanceStatus.normal
    if variance < -tolerance:
        return PerformanceStatus.poor
    return PerformanceStatus.excellent


def analyze_record(
    record: DieselConsumptionRecord,
    norms: Optional[Dict[str, DieselNorm]] = None,
    trips: Sequence[Trip] = (),
) -> DieselEfficiency:
    norm = get_norm(record.fleet_number, norms)

    distance = record.distance_travelled or 0
    if not distance and record.previous_km_reading and record.km_reading:
        distance = record.km_reading - record.previous_km_reading

    km_per_litre = record.km_per_litre or 0
    if not km_per_litre and distance > 0 and record.litres_filled > 0:
        km_per_litre = distance / record.litres_filled

    cost_per_km = record.total_cost / distance if distance > 0 else 0
    cost_per_litre = record.cost_per_litre or (
        record.total_cost / record.litres_filled if record.litres_filled > 0 else 0
    )

    variance = efficiency_variance(km_per_litre, norm)
    status = classify_performance(km_per_litre, norm)

    linked_trip = None
    if record.trip_id:
        trip = next((t for t in trips if t.id == record.trip_id), None)
        if trip is not None:
            linked_trip = LinkedTripInfo(route=trip.route, start_date=trip.start_date, end_date=trip.end_date)

    return DieselEfficiency(
        record=record,
        distance_travelled=distance,
        km_per_litre=km_per_litre,
        cost_per_km=cost_per_km,
        cost_per_litre=cost_per_litre,
        expected_km_per_litre=norm.expected_km_per_litre,
        efficiency_variance=variance,
        tolerance_range=norm.tolerance_percentage,
        performance_status=status,
        requires_debrief=status != PerformanceStatus.normal,
        debrief_signed=bool(record.debrief_signed_by),
        linked_trip=linked_trip,
    )


def filter_diesel_records(
    records: Iterable[DieselConsumptionRecord],
    fleet_number: Optional[str] = None,
    driver_name: Optional[str] = None,
    date: Optional[str] = None,
) -> List[DieselConsumptionRecord]:
    result = []
    for record in records:
        if fleet_number and record.fleet_number != fleet_number:
            continue
        if driver_name and record.driver_name != driver_name:
            continue
        if date and record.date != date:
            continue
        result.append(record)
    return result


def summarize_diesel(
    records: Iterable[DieselConsumptionRecord],
    norms: Optional[Dict[str, DieselNorm]] = None,
) -> DieselSummary:
    """Fleet totals over the given records; averages are ratios of totals."""
    summary = DieselSummary()
    for record in records:
        item = analyze_record(record, norms)
        summary.total_records += 1
        summary.total_litres += record.litres_filled
        summary.total_cost += record.total_cost
        summary.total_distance += item.distance_travelled or 0
        if item.requires_debrief:
            summary.records_requiring_debrief += 1
            if not record.debrief_date:
                summary.pending_debriefs += 1
        if item.performance_status == PerformanceStatus.poor:
            summary.poor_performance_records += 1
        elif item.performance_status == PerformanceStatus.excellent:
            summary.excellent_performance_records += 1
        if record.trip_id:
            summary.linked_to_trips += 1

    if summary.total_litres > 0:
        summary.average_km_per_litre = summary.total_distance / summary.total_litres
    if summary.total_distance > 0:
        summary.average_cost_per_km = summary.total_cost / summary.total_distance
    return summary
