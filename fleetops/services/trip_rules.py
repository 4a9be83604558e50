"""
Trip rule engine.

Pure transformations over trip snapshots: auto-completion once every flagged
cost is resolved, diesel-to-trip cost allocation, and the payment, invoice
and edit bookkeeping that goes with them. Functions return new trip copies
and leave their inputs untouched; writing the result is the caller's job.
"""
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from ..config import settings
from ..schemas.diesel import DieselConsumptionRecord
from ..schemas.trips import (
    CostEntry,
    CostFlagUpdate,
    CostResolveUpdate,
    DieselDerivedOrigin,
    FollowUpOutcome,
    FollowUpRecord,
    FollowUpStatus,
    InvestigationStatus,
    InvoiceUpdate,
    PaymentStatus,
    PaymentUpdate,
    Trip,
    TripEditRecord,
    TripStatus,
    TripUpdate,
)
from .metrics import get_unresolved_flags_count


AUTO_COMPLETE_REASON = "All investigations resolved - trip automatically completed"
DIESEL_CATEGORY = "Diesel"
FINANCE_TEAM = "Finance Team"


def new_id() -> str:
    return str(uuid.uuid4())


def _num(value: Optional[float]) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


def _edit_record(trip: Trip, edited_by: str, now: datetime, reason: str, field: str,
                 old_value, new_value, change_type: str) -> TripEditRecord:
    return TripEditRecord(
        id=new_id(),
        trip_id=trip.id,
        edited_by=edited_by,
        edited_at=now,
        reason=reason,
        field_changed=field,
        old_value="" if old_value is None else str(getattr(old_value, "value", old_value)),
        new_value="" if new_value is None else str(getattr(new_value, "value", new_value)),
        change_type=change_type,
    )


# Auto-completion
def should_auto_complete_trip(trip: Trip) -> bool:
    """True for an active trip with at least one flagged cost and no unresolved flags."""
    if trip.status != TripStatus.active:
        return False
    if not any(cost.is_flagged for cost in trip.costs):
        return False
    return get_unresolved_flags_count(trip.costs) == 0


def apply_auto_completion(trip: Trip, now: datetime, actor: Optional[str] = None) -> Trip:
    """
    Complete the trip when it qualifies; otherwise return it unchanged.

    Args:
        trip: Trip snapshot after a cost change
        now: Evaluation time (UTC)
        actor: Recorded as completed_by (defaults to the configured system actor)

    Returns:
        Completed copy of the trip, or the same trip object
    """
    if not should_auto_complete_trip(trip):
        return trip
    actor = actor or settings.system_actor
    record = _edit_record(
        trip, actor, now, AUTO_COMPLETE_REASON, "status",
        trip.status, TripStatus.completed, "auto_completion",
    )
    return trip.model_copy(update={
        "status": TripStatus.completed,
        "completed_at": now.date().isoformat(),
        "completed_by": actor,
        "auto_completed_at": now,
        "auto_completed_reason": AUTO_COMPLETE_REASON,
        "edit_history": [*trip.edit_history, record],
    })


def mark_trip_completed(trip: Trip, completed_by: str, reason: str, now: datetime) -> Trip:
    record = _edit_record(
        trip, completed_by, now, reason, "status",
        trip.status, TripStatus.completed, "completion",
    )
    return trip.model_copy(update={
        "status": TripStatus.completed,
        "completed_at": now.date().isoformat(),
        "completed_by": completed_by,
        "edit_history": [*trip.edit_history, record],
    })


# Cost entry helpers
def add_cost_entry_to_trip(trip: Trip, entry: CostEntry, now: datetime) -> Trip:
    updated = trip.model_copy(update={"costs": [*trip.costs, entry]})
    return apply_auto_completion(updated, now)


def replace_cost_entry(trip: Trip, entry: CostEntry, now: datetime) -> Trip:
    costs = [entry if cost.id == entry.id else cost for cost in trip.costs]
    updated = trip.model_copy(update={"costs": costs})
    return apply_auto_completion(updated, now)


def remove_cost_entry(trip: Trip, cost_id: str) -> Trip:
    return trip.model_copy(update={"costs": [cost for cost in trip.costs if cost.id != cost_id]})


def find_cost_entry(trips: Iterable[Trip], cost_id: str) -> Tuple[Optional[Trip], Optional[CostEntry]]:
    for trip in trips:
        for cost in trip.costs:
            if cost.id == cost_id:
                return trip, cost
    return None, None


def flag_cost(entry: CostEntry, flag: CostFlagUpdate, now: datetime) -> CostEntry:
    return entry.model_copy(update={
        "is_flagged": True,
        "flag_reason": flag.flag_reason,
        "flagged_by": flag.flagged_by,
        "flagged_at": now,
        "investigation_status": InvestigationStatus.pending,
        "investigation_notes": flag.investigation_notes or entry.investigation_notes,
        "resolved_at": None,
        "resolved_by": None,
    })


def resolve_cost(entry: CostEntry, resolution: CostResolveUpdate, now: datetime) -> CostEntry:
    return entry.model_copy(update={
        "investigation_status": InvestigationStatus.resolved,
        "resolved_by": resolution.resolved_by,
        "resolved_at": now,
        "investigation_notes": resolution.investigation_notes or entry.investigation_notes,
    })


# Diesel allocation
def is_diesel_derived(cost: CostEntry, diesel_id: Optional[str] = None) -> bool:
    if not isinstance(cost.origin, DieselDerivedOrigin):
        return False
    return diesel_id is None or cost.origin.diesel_record_id == diesel_id


def build_diesel_cost_entry(record: DieselConsumptionRecord, entry_id: Optional[str] = None) -> CostEntry:
    """Cost entry mirroring a diesel record on its linked trip."""
    notes = (
        f"Diesel: {_num(record.litres_filled)}L at {record.fuel_station}. "
        f"KM: {_num(record.km_reading)}. {record.notes or ''}"
    ).strip()
    return CostEntry(
        id=entry_id or new_id(),
        trip_id=record.trip_id or "",
        category=DIESEL_CATEGORY,
        sub_category=f"{record.fuel_station} - {record.fleet_number}",
        amount=record.total_cost,
        currency=settings.secondary_currency,
        reference_number=f"FUEL-{record.id}",
        date=record.date,
        notes=notes,
        origin=DieselDerivedOrigin(diesel_record_id=record.id),
    )


def find_diesel_cost_entries(trips: Iterable[Trip], diesel_id: str) -> List[Tuple[Trip, CostEntry]]:
    return [
        (trip, cost)
        for trip in trips
        for cost in trip.costs
        if is_diesel_derived(cost, diesel_id)
    ]


def _refresh_derived_entry(existing: CostEntry, record: DieselConsumptionRecord) -> CostEntry:
    fresh = build_diesel_cost_entry(record, entry_id=existing.id)
    return existing.model_copy(update={
        "trip_id": fresh.trip_id,
        "category": fresh.category,
        "sub_category": fresh.sub_category,
        "amount": fresh.amount,
        "currency": fresh.currency,
        "reference_number": fresh.reference_number,
        "date": fresh.date,
        "notes": fresh.notes,
        "origin": fresh.origin,
    })


def allocate_diesel(trips: Iterable[Trip], record: DieselConsumptionRecord, now: datetime) -> List[Trip]:
    """
    Bring trip costs in line with a diesel record's trip link.

    Entries derived from the record are dropped from every trip other than
    record.trip_id. On the linked trip the existing entry is refreshed in
    place (id, flags and attachments kept) or a new one is appended, then
    auto-completion is evaluated.

    Returns:
        Only the trips whose content changed
    """
    changed = []
    for trip in trips:
        derived = [cost for cost in trip.costs if is_diesel_derived(cost, record.id)]
        if record.trip_id and trip.id == record.trip_id:
            if derived:
                keep = derived[0]
                refreshed = _refresh_derived_entry(keep, record)
                costs = [
                    refreshed if cost.id == keep.id else cost
                    for cost in trip.costs
                    if cost.id == keep.id or not is_diesel_derived(cost, record.id)
                ]
            else:
                costs = [*trip.costs, build_diesel_cost_entry(record)]
            updated = apply_auto_completion(trip.model_copy(update={"costs": costs}), now)
        elif derived:
            updated = trip.model_copy(update={
                "costs": [cost for cost in trip.costs if not is_diesel_derived(cost, record.id)],
            })
        else:
            continue
        if updated != trip:
            changed.append(updated)
    return changed


def remove_diesel_allocation(trips: Iterable[Trip], diesel_id: str) -> List[Trip]:
    changed = []
    for trip in trips:
        costs = [cost for cost in trip.costs if not is_diesel_derived(cost, diesel_id)]
        if len(costs) != len(trip.costs):
            changed.append(trip.model_copy(update={"costs": costs}))
    return changed


# Invoicing and payment
def apply_payment_update(trip: Trip, payment: PaymentUpdate, now: datetime) -> Trip:
    """
    Record a payment. A fully paid invoice moves the trip to `paid`; payment
    notes are kept as a completed follow-up by the finance team.
    """
    update = {
        "payment_status": payment.payment_status,
        "payment_amount": payment.payment_amount,
        "payment_received_date": payment.payment_received_date,
        "payment_method": payment.payment_method,
        "bank_reference": payment.bank_reference,
        "status": TripStatus.paid if payment.payment_status == PaymentStatus.paid else trip.status,
    }
    if payment.payment_notes:
        follow_up = FollowUpRecord(
            id=new_id(),
            trip_id=trip.id,
            follow_up_date=now.date().isoformat(),
            responsible_staff=FINANCE_TEAM,
            response_summary=f"Payment update: {payment.payment_notes}",
            status=FollowUpStatus.completed,
            outcome=(
                FollowUpOutcome.payment_received
                if payment.payment_status == PaymentStatus.paid
                else FollowUpOutcome.partial_payment
            ),
        )
        update["follow_up_history"] = [*trip.follow_up_history, follow_up]
        update["last_follow_up_date"] = follow_up.follow_up_date
    return trip.model_copy(update=update)


def apply_invoice(trip: Trip, invoice: InvoiceUpdate, now: datetime) -> Trip:
    return trip.model_copy(update={
        "status": TripStatus.invoiced,
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date,
        "invoice_due_date": invoice.invoice_due_date,
        "invoice_submitted_at": now,
        "invoice_submitted_by": invoice.invoice_submitted_by,
        "invoice_validation_notes": invoice.invoice_validation_notes,
    })


def apply_trip_update(trip: Trip, changes: TripUpdate, now: datetime) -> Trip:
    """Apply the provided fields; each changed field is logged in edit_history."""
    data = changes.model_dump(exclude_unset=True, exclude={"edited_by", "edit_reason"})
    history = list(trip.edit_history)
    editor = changes.edited_by or "Unknown"
    reason = changes.edit_reason or "Trip updated"
    for field, new_value in data.items():
        old_value = getattr(trip, field)
        if old_value == new_value:
            continue
        history.append(_edit_record(
            trip, editor, now, reason, field, old_value, new_value,
            "status_change" if field == "status" else "update",
        ))
    data["edit_history"] = history
    return Trip.model_validate({**trip.model_dump(), **data})
