"""
Formatting helpers for currency amounts and dates shown on reports.
"""
from datetime import date, datetime
from typing import Optional, Union

import pytz

from ..config import settings


CURRENCY_SYMBOLS = {"USD": "$", "ZAR": "R"}


def format_currency(amount: float, currency: str = "ZAR") -> str:
    """
    Format an amount with its currency symbol and two decimals.

    Example: format_currency(8325, "ZAR") -> "R8,325.00"
    """
    symbol = CURRENCY_SYMBOLS.get(str(getattr(currency, "value", currency)), "R")
    return f"{symbol}{amount:,.2f}"


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Parse an ISO date or datetime string; returns None when empty or unreadable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt


def format_date(value: Union[str, date, datetime]) -> str:
    """Format as 'Jan 15, 2025'."""
    d = parse_date(value)
    if d is None:
        return ""
    return f"{d.strftime('%b')} {d.day}, {d.year}"


def format_datetime(value: Union[str, datetime], timezone_str: Optional[str] = None) -> str:
    """
    Format as 'Jan 15, 2025, 02:30 PM' in the business timezone.
    Naive datetimes are assumed to be UTC.
    """
    dt = parse_datetime(value)
    if dt is None:
        return ""
    local_dt = dt.astimezone(pytz.timezone(timezone_str or settings.tz_default))
    return f"{format_date(local_dt.date())}, {local_dt.strftime('%I:%M %p')}"


def business_today(timezone_str: Optional[str] = None) -> date:
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return datetime.now(tz).date()
