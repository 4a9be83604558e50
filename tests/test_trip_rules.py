from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fleetops.schemas.trips import (
    Attachment,
    DieselDerivedOrigin,
    InvoiceUpdate,
    PaymentUpdate,
    TripUpdate,
)
from fleetops.services import trip_rules

from factories import make_cost, make_diesel, make_trip


NOW = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)


def _resolved_flag(**overrides):
    data = dict(id="flag-1", is_flagged=True, flag_reason="Missing slip", investigation_status="resolved")
    data.update(overrides)
    return make_cost(**data)


def _derived(record_id="diesel-1", trip_id="trip-1", **overrides):
    return make_cost(
        id=overrides.pop("id", f"derived-{trip_id}"),
        trip_id=trip_id,
        category="Diesel",
        sub_category="RAM Petroleum Harare - 6H",
        amount=overrides.pop("amount", 8325),
        reference_number=f"FUEL-{record_id}",
        origin=DieselDerivedOrigin(diesel_record_id=record_id),
        **overrides,
    )


def _derived_count(trips, record_id="diesel-1"):
    return sum(1 for t in trips for c in t.costs if trip_rules.is_diesel_derived(c, record_id))


def test_should_auto_complete_trip():
    assert not trip_rules.should_auto_complete_trip(make_trip())
    assert not trip_rules.should_auto_complete_trip(make_trip(costs=[make_cost()]))
    assert not trip_rules.should_auto_complete_trip(
        make_trip(costs=[_resolved_flag(investigation_status="in-progress")])
    )
    assert trip_rules.should_auto_complete_trip(make_trip(costs=[_resolved_flag()]))
    assert not trip_rules.should_auto_complete_trip(make_trip(status="completed", costs=[_resolved_flag()]))


def test_apply_auto_completion_records_system_actor():
    trip = make_trip(costs=[_resolved_flag()])

    completed = trip_rules.apply_auto_completion(trip, NOW)

    assert completed.status.value == "completed"
    assert completed.completed_by == "System Auto-Complete"
    assert completed.completed_at == "2025-02-01"
    assert completed.auto_completed_at == NOW
    assert completed.auto_completed_reason == trip_rules.AUTO_COMPLETE_REASON
    assert completed.edit_history[-1].change_type == "auto_completion"
    assert completed.edit_history[-1].old_value == "active"
    assert completed.edit_history[-1].new_value == "completed"
    # input untouched
    assert trip.status.value == "active"


def test_apply_auto_completion_returns_same_trip_when_not_eligible():
    trip = make_trip(costs=[make_cost()])

    assert trip_rules.apply_auto_completion(trip, NOW) is trip


def test_add_cost_entry_to_trip_evaluates_auto_completion():
    trip = make_trip(costs=[make_cost()])

    updated = trip_rules.add_cost_entry_to_trip(trip, _resolved_flag(), NOW)

    assert len(updated.costs) == 2
    assert updated.status.value == "completed"


def test_find_cost_entry():
    trips = [make_trip(), make_trip(id="trip-2", costs=[make_cost(id="x", trip_id="trip-2")])]

    trip, cost = trip_rules.find_cost_entry(trips, "x")
    assert trip.id == "trip-2"
    assert cost.id == "x"
    assert trip_rules.find_cost_entry(trips, "missing") == (None, None)


def test_build_diesel_cost_entry():
    record = make_diesel(trip_id="trip-1")

    entry = trip_rules.build_diesel_cost_entry(record)

    assert entry.trip_id == "trip-1"
    assert entry.category == "Diesel"
    assert entry.sub_category == "RAM Petroleum Harare - 6H"
    assert entry.amount == 8325
    assert entry.currency.value == "ZAR"
    assert entry.reference_number == "FUEL-diesel-1"
    assert entry.notes == "Diesel: 450L at RAM Petroleum Harare. KM: 125000."
    assert entry.origin == DieselDerivedOrigin(diesel_record_id="diesel-1")


def test_allocate_diesel_adds_entry_to_linked_trip():
    trips = [make_trip(), make_trip(id="trip-2")]
    record = make_diesel(trip_id="trip-1")

    changed = trip_rules.allocate_diesel(trips, record, NOW)

    assert [t.id for t in changed] == ["trip-1"]
    assert _derived_count(changed) == 1


def test_allocate_diesel_moves_entry_between_trips():
    trips = [make_trip(costs=[_derived()]), make_trip(id="trip-2")]
    record = make_diesel(trip_id="trip-2")

    changed = {t.id: t for t in trip_rules.allocate_diesel(trips, record, NOW)}

    assert _derived_count([changed["trip-1"]]) == 0
    assert _derived_count([changed["trip-2"]]) == 1


def test_allocate_diesel_is_idempotent():
    trips = [make_trip()]
    record = make_diesel(trip_id="trip-1")
    first = trip_rules.allocate_diesel(trips, record, NOW)

    assert trip_rules.allocate_diesel(first, record, NOW) == []


def test_allocate_diesel_refreshes_entry_in_place():
    attachment = Attachment(id="att-1", filename="slip.jpg")
    existing = _derived(id="keep-me", amount=100, is_flagged=True, flag_reason="Check",
                        investigation_status="pending", attachments=[attachment])
    trips = [make_trip(costs=[make_cost(), existing])]
    record = make_diesel(trip_id="trip-1", total_cost=9000)

    [updated] = trip_rules.allocate_diesel(trips, record, NOW)

    entry = next(c for c in updated.costs if c.id == "keep-me")
    assert entry.amount == 9000
    assert entry.is_flagged
    assert entry.attachments == [attachment]
    assert [c.id for c in updated.costs] == ["cost-1", "keep-me"]


def test_allocate_diesel_drops_duplicate_derived_entries():
    trips = [make_trip(costs=[_derived(id="one"), _derived(id="two")])]
    record = make_diesel(trip_id="trip-1")

    [updated] = trip_rules.allocate_diesel(trips, record, NOW)

    assert [c.id for c in updated.costs] == ["one"]


def test_allocate_unlinked_record_only_removes():
    trips = [make_trip(costs=[_derived()]), make_trip(id="trip-2")]
    record = make_diesel(trip_id=None)

    changed = trip_rules.allocate_diesel(trips, record, NOW)

    assert [t.id for t in changed] == ["trip-1"]
    assert changed[0].costs == []


def test_allocate_diesel_can_auto_complete_linked_trip():
    trips = [make_trip(costs=[_resolved_flag()])]

    [updated] = trip_rules.allocate_diesel(trips, make_diesel(trip_id="trip-1"), NOW)

    assert updated.status.value == "completed"


def test_remove_diesel_allocation_ignores_manual_fuel_reference():
    manual = make_cost(id="manual", category="Diesel", reference_number="FUEL-diesel-1")
    trips = [make_trip(costs=[manual, _derived()])]

    [updated] = trip_rules.remove_diesel_allocation(trips, "diesel-1")

    assert [c.id for c in updated.costs] == ["manual"]
    assert trip_rules.remove_diesel_allocation([updated], "diesel-1") == []


def test_apply_payment_update_paid():
    trip = make_trip(status="invoiced", invoice_number="INV-1")
    payment = PaymentUpdate(payment_status="paid", payment_amount=10000, payment_received_date="2025-01-30",
                            payment_notes="EFT received")

    updated = trip_rules.apply_payment_update(trip, payment, NOW)

    assert updated.status.value == "paid"
    assert updated.payment_status.value == "paid"
    assert updated.last_follow_up_date == "2025-02-01"
    follow_up = updated.follow_up_history[-1]
    assert follow_up.responsible_staff == "Finance Team"
    assert follow_up.outcome.value == "payment_received"
    assert follow_up.response_summary == "Payment update: EFT received"


def test_apply_payment_update_partial_keeps_status():
    trip = make_trip(status="invoiced")

    updated = trip_rules.apply_payment_update(
        trip, PaymentUpdate(payment_status="partial", payment_amount=4000, payment_notes="Half paid"), NOW
    )

    assert updated.status.value == "invoiced"
    assert updated.follow_up_history[-1].outcome.value == "partial_payment"


def test_apply_payment_update_without_notes_adds_no_follow_up():
    updated = trip_rules.apply_payment_update(make_trip(), PaymentUpdate(payment_status="partial"), NOW)

    assert updated.follow_up_history == []
    assert updated.last_follow_up_date is None


def test_apply_invoice():
    invoice = InvoiceUpdate(invoice_number="INV-2025-001", invoice_date="2025-01-06",
                            invoice_due_date="2025-01-20", invoice_submitted_by="Accounts")

    updated = trip_rules.apply_invoice(make_trip(status="completed"), invoice, NOW)

    assert updated.status.value == "invoiced"
    assert updated.invoice_number == "INV-2025-001"
    assert updated.invoice_submitted_at == NOW


def test_apply_trip_update_logs_changed_fields_only():
    trip = make_trip()
    changes = TripUpdate(route="Harare to Beitbridge", fleet_number="6H", status="completed",
                         edited_by="Ops", edit_reason="Route corrected")

    updated = trip_rules.apply_trip_update(trip, changes, NOW)

    assert updated.route == "Harare to Beitbridge"
    fields = {e.field_changed: e for e in updated.edit_history}
    assert set(fields) == {"route", "status"}
    assert fields["route"].old_value == "Johannesburg to Cape Town"
    assert fields["route"].edited_by == "Ops"
    assert fields["status"].change_type == "status_change"


def test_apply_trip_update_rejects_null_required_field():
    with pytest.raises(ValidationError):
        trip_rules.apply_trip_update(make_trip(), TripUpdate(status=None), NOW)
