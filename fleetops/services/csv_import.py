"""
CSV import and export.

Imports use a deliberately simple format: the first non-empty line is the
header, later non-blank lines are split on commas (no quoting), values are
trimmed and missing trailing values become "". Any bad row aborts the batch.
"""
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..schemas.diesel import DieselRecordCreate
from ..schemas.trips import ClientType, CostEntryCreate, Currency, Trip, TripCreate
from .diesel_efficiency import derive_efficiency
from .formatting import format_currency, format_date
from .metrics import generate_currency_fleet_report


DIESEL_TEMPLATE_HEADER = [
    "fleetNumber", "date", "kmReading", "previousKmReading", "litresFilled",
    "costPerLitre", "totalCost", "fuelStation", "driverName", "notes",
]

DIESEL_TEMPLATE_ROWS = [
    "6H,2025-01-15,125000,123560,450,18.50,8325,RAM Petroleum Harare,Enock Mukonyerwa,Full tank before long trip",
    "26H,2025-01-16,89000,87670,380,19.20,7296,Engen Beitbridge,Jonathan Bepete,Border crossing fill-up",
    "22H,2025-01-17,156000,154824,420,18.75,7875,Shell Mutare,Lovemore Qochiwe,Regular refuel",
]


class CSVImportError(Exception):
    """Raised when a CSV batch cannot be imported; nothing from the batch is written."""

    def __init__(self, message: str, row: Optional[int] = None):
        self.message = message
        self.row = row
        super().__init__(f"Row {row}: {message}" if row is not None else message)


def parse_csv(text: str) -> List[Dict[str, str]]:
    """
    Parse CSV text into header-keyed rows.

    Raises:
        CSVImportError: empty input, or a header with no data rows
    """
    lines = [line.rstrip("\r") for line in (text or "").split("\n")]
    non_empty = [line for line in lines if line.strip()]
    if not non_empty:
        raise CSVImportError("CSV file is empty")

    headers = [h.strip() for h in non_empty[0].split(",")]
    rows = []
    for line in non_empty[1:]:
        values = [v.strip() for v in line.split(",")]
        rows.append({
            header: values[index] if index < len(values) else ""
            for index, header in enumerate(headers)
        })
    if not rows:
        raise CSVImportError("CSV file has a header but no data rows")
    return rows


def _first(row: Mapping[str, str], *keys: str) -> str:
    for key in keys:
        value = row.get(key)
        if value:
            return value
    return ""


def _number(row: Mapping[str, str], *keys: str, default: float = 0, row_number: Optional[int] = None) -> float:
    raw = _first(row, *keys)
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise CSVImportError(f"'{raw}' is not a number in column {keys[0]}", row=row_number)


def _currency(raw: str, row_number: Optional[int]) -> Currency:
    try:
        return Currency(raw.upper())
    except ValueError:
        raise CSVImportError(f"Unsupported currency '{raw}'", row=row_number)


def map_trip_row(row: Mapping[str, str], row_number: Optional[int] = None) -> TripCreate:
    client_type = _first(row, "clientType") or ClientType.external.value
    try:
        client_type = ClientType(client_type.lower())
    except ValueError:
        raise CSVImportError(f"Unsupported client type '{client_type}'", row=row_number)

    return TripCreate(
        fleet_number=_first(row, "fleetNumber", "fleet"),
        route=_first(row, "route"),
        client_name=_first(row, "clientName", "client"),
        base_revenue=_number(row, "baseRevenue", "revenue", row_number=row_number),
        revenue_currency=_currency(_first(row, "revenueCurrency", "currency") or "ZAR", row_number),
        start_date=_first(row, "startDate"),
        end_date=_first(row, "endDate"),
        driver_name=_first(row, "driverName", "driver"),
        distance_km=_number(row, "distanceKm", "distance", row_number=row_number),
        client_type=client_type,
        description=_first(row, "description"),
    )


def map_diesel_row(row: Mapping[str, str], row_number: Optional[int] = None) -> DieselRecordCreate:
    km_reading = _number(row, "kmReading", "km", row_number=row_number)
    previous_km = _number(row, "previousKmReading", "previousKm", row_number=row_number)
    litres = _number(row, "litresFilled", "litres", row_number=row_number)
    cost_per_litre = _number(row, "costPerLitre", "pricePerLitre", row_number=row_number)
    total_cost = _number(row, "totalCost", "cost", row_number=row_number)

    derived = derive_efficiency(km_reading, previous_km, litres, total_cost, cost_per_litre or None)

    return DieselRecordCreate(
        fleet_number=_first(row, "fleetNumber", "fleet"),
        date=_first(row, "date"),
        km_reading=km_reading,
        previous_km_reading=previous_km if previous_km > 0 else None,
        litres_filled=litres,
        cost_per_litre=derived["cost_per_litre"],
        total_cost=total_cost,
        fuel_station=_first(row, "fuelStation", "station"),
        driver_name=_first(row, "driverName", "driver"),
        notes=_first(row, "notes"),
    )


def map_cost_row(row: Mapping[str, str], row_number: Optional[int] = None) -> Tuple[str, CostEntryCreate]:
    trip_id = _first(row, "tripId")
    if not trip_id:
        raise CSVImportError("tripId is required", row=row_number)
    amount = _number(row, "amount", row_number=row_number)
    entry = CostEntryCreate(
        category=_first(row, "category"),
        sub_category=_first(row, "subCategory"),
        amount=amount,
        currency=_currency(_first(row, "currency") or "ZAR", row_number),
        reference_number=_first(row, "referenceNumber"),
        date=_first(row, "date"),
        notes=_first(row, "notes") or None,
    )
    return trip_id, entry


def map_rows(rows: Sequence[Mapping[str, str]], mapper) -> list:
    """Map every row or fail the whole batch on the first bad one."""
    mapped = []
    for index, row in enumerate(rows, start=1):
        try:
            mapped.append(mapper(row, row_number=index))
        except ValidationError as e:
            raise CSVImportError(str(e.errors()[0].get("msg", "Invalid row")), row=index)
    return mapped


def diesel_template_csv() -> str:
    return "\n".join([",".join(DIESEL_TEMPLATE_HEADER), *DIESEL_TEMPLATE_ROWS])


def currency_fleet_report_csv(trips: Sequence[Trip], currency: str, today: date) -> str:
    """Fleet performance report for one currency as downloadable CSV text."""
    report = generate_currency_fleet_report(trips, currency)

    def money(amount: float) -> str:
        return f'"{format_currency(amount, currency)}"'

    lines = [
        f"{currency} Fleet Performance Report",
        f"Generated on: {format_date(today)}",
        "",
        "Summary",
        f"Total Trips,{report.total_trips}",
        f"Active Trips,{report.active_trips}",
        f"Completed Trips,{report.completed_trips}",
        f"Total Revenue,{money(report.total_revenue)}",
        f"Total Expenses,{money(report.total_expenses)}",
        f"Net Profit,{money(report.net_profit)}",
        f"Profit Margin,{report.profit_margin:.2f}%",
        "",
        "Client Type Breakdown",
        f"Internal Trips,{report.internal_trips}",
        f"Internal Revenue,{money(report.internal_revenue)}",
        f"Internal Profit Margin,{report.internal_profit_margin:.2f}%",
        f"External Trips,{report.external_trips}",
        f"External Revenue,{money(report.external_revenue)}",
        f"External Profit Margin,{report.external_profit_margin:.2f}%",
        "",
        "Investigation Metrics",
        f"Total Flags,{report.total_flags}",
        f"Unresolved Flags,{report.unresolved_flags}",
        f"Trips with Investigations,{report.trips_with_investigations}",
        f"Investigation Rate,{report.investigation_rate:.2f}%",
        f"Average Resolution Time,{report.avg_resolution_time:.1f} days",
        "",
        "Driver Performance",
        "Driver,Trips,Revenue,Expenses,Net Profit,Margin %,Flags,Internal Trips,External Trips",
    ]
    for driver, stats in report.driver_stats.items():
        net_profit = stats.revenue - stats.expenses
        margin = (net_profit / stats.revenue) * 100 if stats.revenue > 0 else 0
        lines.append(
            f"{driver},{stats.trips},{money(stats.revenue)},{money(stats.expenses)},"
            f"{money(net_profit)},{margin:.2f}%,{stats.flags},{stats.internal_trips},{stats.external_trips}"
        )
    return "\n".join(lines)


def report_filename(currency: str, today: date) -> str:
    return f"{currency}_Fleet_Report_{today.isoformat()}.csv"
