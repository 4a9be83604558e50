"""
Invoice aging and customer retention service.
Buckets outstanding invoices by age using per-currency thresholds and scores
each client on payment behaviour and service frequency.
"""
import math
from collections import Counter
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from ..schemas.reports import CustomerPerformance, InvoiceAging, PaymentHistoryRecord
from ..schemas.trips import PaymentStatus, Trip, TripStatus
from .formatting import parse_date
from .metrics import calculate_kpis


# Inclusive day ranges; None means open-ended
AGING_THRESHOLDS: Dict[str, Dict[str, tuple]] = {
    "ZAR": {
        "current": (0, 20),
        "warning": (21, 29),
        "critical": (30, 30),
        "overdue": (31, None),
    },
    "USD": {
        "current": (0, 10),
        "warning": (11, 13),
        "critical": (14, 14),
        "overdue": (15, None),
    },
}

FOLLOW_UP_THRESHOLDS: Dict[str, int] = {
    "ZAR": 20,
    "USD": 12,
}

RISK_BY_STATUS = {
    "current": "low",
    "warning": "medium",
    "critical": "medium",
    "overdue": "high",
}

TREND_WINDOW_DAYS = 90


def _currency_key(currency) -> str:
    return str(getattr(currency, "value", currency))


def is_outstanding(trip: Trip) -> bool:
    """Invoiced (by status or invoice number) and not fully paid."""
    invoiced = trip.status == TripStatus.invoiced or bool(trip.invoice_number)
    return invoiced and trip.payment_status != PaymentStatus.paid


def calculate_aging_days(trip: Trip, today: date) -> int:
    """Days since the invoice due date (invoice date when no due date); never negative."""
    basis = parse_date(trip.invoice_due_date) or parse_date(trip.invoice_date)
    if basis is None:
        return 0
    return max(0, (today - basis).days)


def classify_aging(days: int, currency) -> str:
    thresholds = AGING_THRESHOLDS.get(_currency_key(currency), AGING_THRESHOLDS["ZAR"])
    for status, (low, high) in thresholds.items():
        if days >= low and (high is None or days <= high):
            return status
    return "current"


def needs_follow_up(trip: Trip, today: date) -> bool:
    """
    True when an outstanding invoice has gone without contact for longer than
    the currency's follow-up threshold (counted from the last follow-up, or
    from the invoice date when none was made).
    """
    if not is_outstanding(trip):
        return False
    threshold = FOLLOW_UP_THRESHOLDS.get(_currency_key(trip.revenue_currency), FOLLOW_UP_THRESHOLDS["ZAR"])
    last_contact = parse_date(trip.last_follow_up_date)
    if last_contact is None and trip.follow_up_history:
        last_contact = max(
            (parse_date(f.follow_up_date) for f in trip.follow_up_history if parse_date(f.follow_up_date)),
            default=None,
        )
    reference = last_contact or parse_date(trip.invoice_date)
    if reference is None:
        return False
    return (today - reference).days >= threshold


def build_invoice_aging(trip: Trip, today: date) -> InvoiceAging:
    days = calculate_aging_days(trip, today)
    status = classify_aging(days, trip.revenue_currency)
    follow_ups = sorted(trip.follow_up_history, key=lambda f: f.follow_up_date)
    return InvoiceAging(
        trip_id=trip.id,
        invoice_number=trip.invoice_number or "",
        customer_name=trip.client_name,
        invoice_date=trip.invoice_date or "",
        due_date=trip.invoice_due_date or trip.invoice_date or "",
        amount=trip.base_revenue,
        currency=trip.revenue_currency,
        aging_days=days,
        status=status,
        payment_status=trip.payment_status.value,
        last_follow_up=follow_ups[-1].follow_up_date if follow_ups else trip.last_follow_up_date,
        follow_up_count=len(follow_ups),
        risk_level=RISK_BY_STATUS[status],
        needs_follow_up=needs_follow_up(trip, today),
    )


def generate_invoice_aging_report(trips: Sequence[Trip], today: date) -> List[InvoiceAging]:
    """Outstanding invoices, oldest first."""
    report = [build_invoice_aging(trip, today) for trip in trips if is_outstanding(trip)]
    report.sort(key=lambda item: item.aging_days, reverse=True)
    return report


def _payment_history(trip: Trip) -> Optional[PaymentHistoryRecord]:
    invoice_date = parse_date(trip.invoice_date)
    paid_on = parse_date(trip.payment_received_date)
    if invoice_date is None or paid_on is None:
        return None
    due = parse_date(trip.invoice_due_date) or invoice_date
    return PaymentHistoryRecord(
        trip_id=trip.id,
        invoice_date=invoice_date.isoformat(),
        due_date=due.isoformat(),
        payment_date=paid_on.isoformat(),
        days_late=max(0, (paid_on - due).days),
        amount=trip.payment_amount if trip.payment_amount is not None else trip.base_revenue,
        currency=trip.revenue_currency,
    )


def _service_trend(trips: Sequence[Trip], today: date) -> str:
    recent_start = today - timedelta(days=TREND_WINDOW_DAYS)
    prior_start = recent_start - timedelta(days=TREND_WINDOW_DAYS)
    recent = prior = 0
    for trip in trips:
        started = parse_date(trip.start_date)
        if started is None:
            continue
        if recent_start < started <= today:
            recent += 1
        elif prior_start < started <= recent_start:
            prior += 1
    if recent > prior:
        return "increasing"
    if recent < prior:
        return "decreasing"
    return "stable"


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def calculate_customer_performance(trips: Sequence[Trip], today: date) -> List[CustomerPerformance]:
    """
    Per-client retention view, highest revenue first.

    Scoring:
        payment_score   = 100 - 2 x average days late (100 without history)
        retention_score = 100, minus 30 (no trip for 60+ days) or 15 (30+ days),
                          minus 20 for a decreasing trend, minus 20 for a
                          payment score under 60
        risk_level      = low >= 70, medium >= 40, else high
    Top clients are the top 20% by revenue (at least one).
    """
    by_client: Dict[str, List[Trip]] = {}
    for trip in trips:
        if trip.client_name:
            by_client.setdefault(trip.client_name, []).append(trip)

    results: List[CustomerPerformance] = []
    for client, client_trips in by_client.items():
        history = [h for h in (_payment_history(t) for t in client_trips) if h is not None]

        payment_days = [
            (parse_date(h.payment_date) - parse_date(h.invoice_date)).days for h in history
        ]
        average_payment_days = sum(payment_days) / len(payment_days) if payment_days else 0
        average_days_late = sum(h.days_late for h in history) / len(history) if history else 0
        payment_score = _clamp(100 - average_days_late * 2)

        trip_dates = [parse_date(t.end_date) or parse_date(t.start_date) for t in client_trips]
        trip_dates = [d for d in trip_dates if d is not None]
        last_trip = max(trip_dates) if trip_dates else None
        days_since_last = (today - last_trip).days if last_trip else math.inf

        trend = _service_trend(client_trips, today)

        retention = 100.0
        if days_since_last > 60:
            retention -= 30
        elif days_since_last > 30:
            retention -= 15
        if trend == "decreasing":
            retention -= 20
        if payment_score < 60:
            retention -= 20
        retention = _clamp(retention)

        if retention >= 70:
            risk = "low"
        elif retention >= 40:
            risk = "medium"
        else:
            risk = "high"

        currency = Counter(t.revenue_currency for t in client_trips).most_common(1)[0][0]

        results.append(CustomerPerformance(
            customer_name=client,
            total_trips=len(client_trips),
            total_revenue=sum(t.base_revenue or 0 for t in client_trips),
            currency=currency,
            average_payment_days=average_payment_days,
            payment_score=payment_score,
            last_trip_date=last_trip.isoformat() if last_trip else "",
            risk_level=risk,
            is_at_risk=risk != "low",
            is_profitable=sum(calculate_kpis(t).net_profit for t in client_trips) > 0,
            is_top_client=False,
            payment_history=history,
            service_frequency_trend=trend,
            retention_score=retention,
        ))

    results.sort(key=lambda c: c.total_revenue, reverse=True)
    top_count = max(1, math.ceil(len(results) * 0.2)) if results else 0
    for customer in results[:top_count]:
        customer.is_top_client = True
    return results
