"""
Entry form validation.
Each validator returns a {field: message} map; an empty map means the form
may be submitted.
"""
from typing import Any, Dict, Mapping, Optional

from ..schemas.trips import Currency
from .formatting import parse_date


SUPPORTED_CURRENCIES = {c.value for c in Currency}


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _number(value: Any) -> Optional[float]:
    """Numeric value of a form field, or None when it is not a number."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return number


def _require(form: Mapping[str, Any], errors: Dict[str, str], field: str, message: str) -> None:
    if _blank(form.get(field)):
        errors[field] = message


def _positive(form: Mapping[str, Any], errors: Dict[str, str], field: str) -> None:
    value = form.get(field)
    if _blank(value):
        return
    number = _number(value)
    if number is None or number <= 0:
        errors[field] = "Must be a valid positive number"


def validate_diesel_entry(form: Mapping[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    _require(form, errors, "fleet_number", "Fleet number is required")
    _require(form, errors, "date", "Date is required")
    _require(form, errors, "km_reading", "KM reading is required")
    _require(form, errors, "litres_filled", "Litres filled is required")
    _require(form, errors, "total_cost", "Total cost is required")
    _require(form, errors, "fuel_station", "Fuel station is required")
    _require(form, errors, "driver_name", "Driver name is required")

    _positive(form, errors, "km_reading")
    _positive(form, errors, "litres_filled")
    _positive(form, errors, "total_cost")

    previous = form.get("previous_km_reading")
    if not _blank(previous):
        number = _number(previous)
        if number is None or number < 0:
            errors["previous_km_reading"] = "Must be a valid number"

    current_km = _number(form.get("km_reading"))
    previous_km = _number(previous)
    if current_km is not None and previous_km is not None and not _blank(previous):
        if current_km <= previous_km:
            errors["km_reading"] = "Current KM must be greater than previous KM"

    return errors


def validate_trip_entry(form: Mapping[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    _require(form, errors, "fleet_number", "Fleet number is required")
    _require(form, errors, "driver_name", "Driver name is required")
    _require(form, errors, "client_name", "Client name is required")
    _require(form, errors, "route", "Route is required")
    _require(form, errors, "start_date", "Start date is required")
    _require(form, errors, "end_date", "End date is required")
    _require(form, errors, "base_revenue", "Base revenue is required")

    _positive(form, errors, "base_revenue")

    currency = form.get("revenue_currency")
    if not _blank(currency) and str(getattr(currency, "value", currency)) not in SUPPORTED_CURRENCIES:
        errors["revenue_currency"] = "Currency must be USD or ZAR"

    distance = form.get("distance_km")
    if not _blank(distance):
        number = _number(distance)
        if number is None or number < 0:
            errors["distance_km"] = "Distance must be a valid number"

    start = parse_date(form.get("start_date"))
    end = parse_date(form.get("end_date"))
    if start and end and end < start:
        errors["end_date"] = "End date cannot be before start date"

    return errors


def validate_cost_entry(form: Mapping[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    _require(form, errors, "category", "Category is required")
    _require(form, errors, "sub_category", "Sub-category is required")
    _require(form, errors, "reference_number", "Reference number is required")
    _require(form, errors, "date", "Date is required")
    _require(form, errors, "amount", "Amount is required")

    amount = form.get("amount")
    if not _blank(amount):
        number = _number(amount)
        if number is None or number <= 0:
            errors["amount"] = "Amount must be a valid positive number"

    if form.get("is_flagged") and _blank(form.get("flag_reason")):
        errors["flag_reason"] = "Flag reason is required when flagging a cost"

    return errors
