from concurrent.futures import ThreadPoolExecutor

import pytest

from fleetops.schemas.diesel import DebriefUpdate, DieselNorm, DieselRecordUpdate
from fleetops.schemas.missed_loads import MissedLoadCreate, MissedLoadUpdate
from fleetops.schemas.system_costs import PerDayCosts, PerKmCosts, SystemCostRatesUpdate
from fleetops.schemas.trips import (
    AdditionalCostCreate,
    AttachmentCreate,
    CostEntryUpdate,
    CostFlagUpdate,
    CostResolveUpdate,
    DelayReasonCreate,
    InvoiceUpdate,
    PaymentUpdate,
    TripCompleteRequest,
    TripUpdate,
)
from fleetops.services import trip_rules
from fleetops.services.csv_import import diesel_template_csv
from fleetops.services.diesel_efficiency import DEFAULT_DIESEL_NORMS, analyze_record, summarize_diesel
from fleetops.services.operations import FleetOperations
from fleetops.store.memory_provider import InMemoryRecordStore
from fleetops.store.provider import StoreWriteError

from conftest import FIXED_NOW
from factories import cost_create, diesel_create, trip_create


class FailingStore(InMemoryRecordStore):
    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def update(self, collection, doc_id, doc):
        if self.fail_writes:
            raise StoreWriteError("connection lost")
        super().update(collection, doc_id, doc)


def _new_trip(ops, **overrides):
    result = ops.add_trip(trip_create(**overrides))
    assert result.ok, result.error
    return result.value


def _derived_entries(ops, record_id):
    return [
        (trip.id, cost)
        for trip in ops.trips
        for cost in trip.costs
        if trip_rules.is_diesel_derived(cost, record_id)
    ]


# Trips
def test_add_trip(ops):
    trip = _new_trip(ops)

    assert trip.status.value == "active"
    assert trip.payment_status.value == "unpaid"
    assert [t.id for t in ops.trips] == [trip.id]


def test_add_trip_validation_writes_nothing(ops):
    result = ops.add_trip(trip_create(client_name="", base_revenue=0))

    assert not result.ok
    assert result.error.kind == "validation"
    assert set(result.error.details["errors"]) == {"client_name", "base_revenue"}
    assert ops.trips == []


def test_update_trip_records_edit(ops):
    trip = _new_trip(ops)

    result = ops.update_trip(trip.id, TripUpdate(route="Harare to Beitbridge", edited_by="Ops", edit_reason="Typo"))

    assert result.ok
    stored = ops.cache.get_trip(trip.id)
    assert stored.route == "Harare to Beitbridge"
    assert stored.edit_history[-1].field_changed == "route"


def test_update_trip_rejects_bad_dates(ops):
    trip = _new_trip(ops)

    result = ops.update_trip(trip.id, TripUpdate(end_date="2024-12-01"))

    assert result.error.kind == "validation"
    assert ops.cache.get_trip(trip.id).end_date == "2025-01-05"


def test_update_trip_rejects_null_status(ops):
    trip = _new_trip(ops)

    result = ops.update_trip(trip.id, TripUpdate(status=None))

    assert result.error.kind == "validation"
    assert "status" in result.error.details["errors"]
    stored = ops.cache.get_trip(trip.id)
    assert stored.status.value == "active"
    assert stored.edit_history == trip.edit_history
    assert ops.add_cost_entry(trip.id, cost_create()).ok


def test_delete_trip(ops):
    trip = _new_trip(ops)

    assert ops.delete_trip(trip.id).ok
    assert ops.trips == []
    assert ops.delete_trip(trip.id).error.kind == "stale_reference"


def test_complete_trip_manually(ops):
    trip = _new_trip(ops)

    result = ops.complete_trip(trip.id, TripCompleteRequest(completed_by="Dispatcher"))

    assert result.value.status.value == "completed"
    assert result.value.completed_by == "Dispatcher"
    assert result.value.completed_at == "2025-02-01"
    assert ops.complete_trip(trip.id, TripCompleteRequest(completed_by="Dispatcher")).error.kind == "validation"


# Cost entries and investigations
def test_flag_then_resolve_auto_completes_trip(ops):
    trip = _new_trip(ops)
    entry = ops.add_cost_entry(trip.id, cost_create()).value

    flagged = ops.flag_cost_entry(entry.id, CostFlagUpdate(flag_reason="No receipt", flagged_by="Auditor")).value
    assert flagged.investigation_status.value == "pending"
    assert flagged.flagged_at == FIXED_NOW
    assert ops.cache.get_trip(trip.id).status.value == "active"

    refused = ops.complete_trip(trip.id, TripCompleteRequest(completed_by="Dispatcher"))
    assert refused.error.kind == "validation"

    resolved = ops.resolve_cost_flag(entry.id, CostResolveUpdate(resolved_by="Auditor")).value
    assert resolved.resolved_at == FIXED_NOW

    stored = ops.cache.get_trip(trip.id)
    assert stored.status.value == "completed"
    assert stored.completed_by == "System Auto-Complete"
    assert stored.auto_completed_at == FIXED_NOW


def test_resolved_flagged_cost_added_in_one_step_auto_completes(ops):
    trip = _new_trip(ops)

    entry = ops.add_cost_entry(
        trip.id, cost_create(is_flagged=True, flag_reason="Duplicate", investigation_status="resolved")
    ).value

    assert entry.flagged_at == FIXED_NOW
    assert entry.resolved_at == FIXED_NOW
    assert ops.cache.get_trip(trip.id).status.value == "completed"


def test_resolving_in_progress_flag_through_update_completes_trip(ops):
    trip = _new_trip(ops)
    ops.add_cost_entry(trip.id, cost_create(reference_number="OK-1"))
    flagged = ops.add_cost_entry(
        trip.id, cost_create(is_flagged=True, flag_reason="Fee too high", investigation_status="in-progress")
    ).value
    assert ops.cache.get_trip(trip.id).status.value == "active"

    ops.update_cost_entry(flagged.id, CostEntryUpdate(investigation_status="resolved"))

    stored = ops.cache.get_trip(trip.id)
    assert stored.status.value == "completed"
    assert stored.completed_by == "System Auto-Complete"


def test_resolve_requires_a_flag(ops):
    trip = _new_trip(ops)
    entry = ops.add_cost_entry(trip.id, cost_create()).value

    result = ops.resolve_cost_flag(entry.id, CostResolveUpdate(resolved_by="Auditor"))

    assert result.error.kind == "validation"


def test_update_and_delete_cost_entry(ops):
    trip = _new_trip(ops)
    entry = ops.add_cost_entry(trip.id, cost_create()).value

    updated = ops.update_cost_entry(entry.id, CostEntryUpdate(amount=1750, notes="Corrected")).value
    assert updated.amount == 1750
    assert updated.reference_number == "BB-001"
    assert ops.update_cost_entry(entry.id, CostEntryUpdate(amount=-5)).error.kind == "validation"

    assert ops.delete_cost_entry(entry.id).ok
    assert ops.cache.get_trip(trip.id).costs == []
    assert ops.delete_cost_entry(entry.id).error.kind == "stale_reference"


def test_update_cost_entry_rejects_null_flag(ops):
    trip = _new_trip(ops)
    entry = ops.add_cost_entry(trip.id, cost_create()).value

    result = ops.update_cost_entry(entry.id, CostEntryUpdate(is_flagged=None))

    assert result.error.kind == "validation"
    assert "is_flagged" in result.error.details["errors"]
    stored = ops.cache.get_trip(trip.id)
    assert [c.id for c in stored.costs] == [entry.id]
    assert stored.costs[0].is_flagged is False


def test_add_cost_entry_to_missing_trip(ops):
    result = ops.add_cost_entry("missing", cost_create())

    assert result.error.kind == "stale_reference"
    assert result.error.details == {"trip_id": "missing"}


def test_add_cost_entry_validation(ops):
    trip = _new_trip(ops)

    result = ops.add_cost_entry(trip.id, cost_create(reference_number=""))

    assert result.error.kind == "validation"
    assert ops.cache.get_trip(trip.id).costs == []


def test_attachments(ops):
    trip = _new_trip(ops)
    entry = ops.add_cost_entry(trip.id, cost_create(attachments=[AttachmentCreate(filename="slip.jpg")])).value
    assert entry.attachments[0].cost_entry_id == entry.id

    attachment = ops.add_attachment(entry.id, AttachmentCreate(filename="receipt.pdf", file_type="application/pdf")).value
    assert len(ops.cache.get_trip(trip.id).costs[0].attachments) == 2

    assert ops.delete_attachment(attachment.id).ok
    assert [a.filename for a in ops.cache.get_trip(trip.id).costs[0].attachments] == ["slip.jpg"]
    assert ops.delete_attachment(attachment.id).error.kind == "stale_reference"


def test_additional_costs_and_delays(ops):
    trip = _new_trip(ops)

    extra = ops.add_additional_cost(trip.id, AdditionalCostCreate(cost_type="demurrage", amount=2500)).value
    delay = ops.add_delay_reason(trip.id, DelayReasonCreate(delay_type="border_delays", delay_duration=6)).value
    stored = ops.cache.get_trip(trip.id)
    assert [c.id for c in stored.additional_costs] == [extra.id]
    assert [d.id for d in stored.delay_reasons] == [delay.id]
    assert delay.reported_at == FIXED_NOW

    assert ops.add_additional_cost(trip.id, AdditionalCostCreate(cost_type="other", amount=0)).error.kind == "validation"
    assert ops.remove_additional_cost(trip.id, extra.id).ok
    assert ops.cache.get_trip(trip.id).additional_costs == []
    assert ops.remove_additional_cost(trip.id, extra.id).error.kind == "stale_reference"


def test_concurrent_cost_entries_are_all_kept(ops):
    trip = _new_trip(ops)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(
            lambda i: ops.add_cost_entry(trip.id, cost_create(reference_number=f"REF-{i}")),
            range(20),
        ))

    assert all(r.ok for r in results)
    assert len(ops.cache.get_trip(trip.id).costs) == 20


# Invoicing
def test_invoice_then_payment(ops):
    trip = _new_trip(ops)

    invoiced = ops.update_invoice(trip.id, InvoiceUpdate(invoice_number="INV-1", invoice_date="2025-01-06")).value
    assert invoiced.status.value == "invoiced"

    paid = ops.update_invoice_payment(
        trip.id, PaymentUpdate(payment_status="paid", payment_amount=45000, payment_notes="EFT")
    ).value
    assert paid.status.value == "paid"
    assert ops.cache.get_trip(trip.id).follow_up_history[-1].outcome.value == "payment_received"


def test_invoice_requires_number(ops):
    trip = _new_trip(ops)

    result = ops.update_invoice(trip.id, InvoiceUpdate(invoice_number=" ", invoice_date="2025-01-06"))

    assert result.error.kind == "validation"


def test_apply_system_costs_twice_replaces(ops):
    trip = _new_trip(ops)
    ops.add_cost_entry(trip.id, cost_create())

    ops.apply_system_costs(trip.id)
    stored = ops.apply_system_costs(trip.id).value

    assert sum(1 for c in stored.costs if c.is_system_generated) == 10
    assert len(stored.costs) == 11


def test_update_system_cost_rates(ops):
    update = SystemCostRatesUpdate(
        per_km_costs=PerKmCosts(repair_maintenance=0.2),
        per_day_costs=PerDayCosts(wages=20),
        updated_by="Finance",
    )

    rates = ops.update_system_cost_rates("usd", update).value

    assert rates.currency.value == "USD"
    assert ops.system_cost_rates["USD"].per_day_costs.wages == 20
    assert rates.last_updated == FIXED_NOW
    assert ops.update_system_cost_rates("EUR", update).error.kind == "validation"

    trip = _new_trip(ops, revenue_currency="USD")
    stored = ops.apply_system_costs(trip.id).value
    assert sorted(c.sub_category for c in stored.costs) == ["Repair & Maintenance per KM", "Wages"]


# Missed loads
def test_missed_load_lifecycle(ops):
    load = ops.add_missed_load(MissedLoadCreate(customer_name="Teralco", estimated_revenue=20000)).value
    assert load.load_request_date == "2025-02-01"
    assert load.recorded_at == FIXED_NOW

    updated = ops.update_missed_load(load.id, MissedLoadUpdate(resolution_status="resolved", resolved_by="Sales")).value
    assert updated.resolved_at == FIXED_NOW
    assert ops.cache.get_missed_load(load.id).resolution_status.value == "resolved"

    assert ops.delete_missed_load(load.id).ok
    assert ops.missed_loads == []
    assert ops.update_missed_load(load.id, MissedLoadUpdate(route="x")).error.kind == "stale_reference"


def test_update_missed_load_rejects_null_customer(ops):
    load = ops.add_missed_load(MissedLoadCreate(customer_name="Teralco")).value

    result = ops.update_missed_load(load.id, MissedLoadUpdate(customer_name=None))

    assert result.error.kind == "validation"
    assert ops.cache.get_missed_load(load.id).customer_name == "Teralco"


def test_missed_load_requires_customer(ops):
    assert ops.add_missed_load(MissedLoadCreate(customer_name=" ")).error.kind == "validation"


# Diesel
def test_add_linked_diesel_record_creates_cost_entry(ops):
    trip = _new_trip(ops)

    record = ops.add_diesel_record(diesel_create(trip_id=trip.id)).value

    assert record.distance_travelled == 1440
    assert record.km_per_litre == pytest.approx(3.2)
    assert record.cost_per_litre == pytest.approx(18.5)
    [(trip_id, entry)] = _derived_entries(ops, record.id)
    assert trip_id == trip.id
    assert entry.amount == 8325
    assert entry.reference_number == f"FUEL-{record.id}"


def test_add_diesel_record_with_unknown_trip_writes_nothing(ops):
    result = ops.add_diesel_record(diesel_create(trip_id="missing"))

    assert result.error.kind == "stale_reference"
    assert ops.diesel_records == []


def test_add_diesel_record_validation(ops):
    result = ops.add_diesel_record(diesel_create(km_reading=100000))

    assert result.error.kind == "validation"
    assert result.error.details["errors"]["km_reading"] == "Current KM must be greater than previous KM"


def test_update_diesel_record_refreshes_entry_in_place(ops):
    trip = _new_trip(ops)
    record = ops.add_diesel_record(diesel_create(trip_id=trip.id)).value
    [(_, before)] = _derived_entries(ops, record.id)

    updated = ops.update_diesel_record(record.id, DieselRecordUpdate(total_cost=9000)).value

    assert updated.cost_per_litre == pytest.approx(20.0)
    [(_, after)] = _derived_entries(ops, record.id)
    assert after.id == before.id
    assert after.amount == 9000


def test_relinking_moves_the_single_derived_entry(ops):
    first = _new_trip(ops)
    second = _new_trip(ops, fleet_number="26H")
    record = ops.add_diesel_record(diesel_create(trip_id=first.id)).value

    linked = ops.allocate_diesel_to_trip(record.id, second.id).value

    assert linked.trip_id == second.id
    assert [trip_id for trip_id, _ in _derived_entries(ops, record.id)] == [second.id]
    assert ops.allocate_diesel_to_trip(record.id, second.id).ok
    assert len(_derived_entries(ops, record.id)) == 1


def test_allocate_to_missing_trip(ops):
    record = ops.add_diesel_record(diesel_create()).value

    result = ops.allocate_diesel_to_trip(record.id, "missing")

    assert result.error.kind == "stale_reference"
    assert ops.cache.get_diesel_record(record.id).trip_id is None


def test_unlink_and_delete_diesel_record(ops):
    trip = _new_trip(ops)
    record = ops.add_diesel_record(diesel_create(trip_id=trip.id)).value

    unlinked = ops.remove_diesel_from_trip(record.id).value
    assert unlinked.trip_id is None
    assert _derived_entries(ops, record.id) == []

    ops.allocate_diesel_to_trip(record.id, trip.id)
    assert ops.delete_diesel_record(record.id).ok
    assert ops.diesel_records == []
    assert _derived_entries(ops, record.id) == []


def test_clearing_trip_id_on_update_removes_entry(ops):
    trip = _new_trip(ops)
    record = ops.add_diesel_record(diesel_create(trip_id=trip.id)).value

    updated = ops.update_diesel_record(record.id, DieselRecordUpdate(trip_id="")).value

    assert updated.trip_id is None
    assert _derived_entries(ops, record.id) == []


def test_debrief(ops):
    record = ops.add_diesel_record(diesel_create()).value

    updated = ops.update_diesel_debrief(
        record.id, DebriefUpdate(debrief_date="2025-01-20", debrief_notes="Idling at border", debrief_signed_by="FM")
    ).value

    assert updated.debrief_signed_at == FIXED_NOW
    assert ops.cache.get_diesel_record(record.id).debrief_notes == "Idling at border"


def test_update_diesel_norms(ops):
    record = ops.add_diesel_record(diesel_create()).value

    norms = ops.update_diesel_norms(
        [DieselNorm(fleet_number="6H", expected_km_per_litre=4.0)], "Fleet Manager"
    ).value

    norm = next(n for n in norms if n.fleet_number == "6H")
    assert norm.updated_by == "Fleet Manager"
    assert norm.last_updated == FIXED_NOW
    assert analyze_record(record, ops.diesel_norms).performance_status.value == "poor"
    assert DEFAULT_DIESEL_NORMS["6H"].expected_km_per_litre == 3.2
    bad = ops.update_diesel_norms([DieselNorm(fleet_number="6H", expected_km_per_litre=0)])
    assert bad.error.kind == "validation"


# CSV imports
def test_import_diesel_template(ops):
    records = ops.import_diesel_from_csv(diesel_template_csv()).value

    assert len(records) == 3
    assert len(ops.diesel_records) == 3
    first = next(r for r in records if r.fleet_number == "6H")
    assert first.distance_travelled == 1440
    assert first.km_per_litre == pytest.approx(3.2)
    assert first.cost_per_litre == pytest.approx(18.5)


def test_import_diesel_with_bad_cell_writes_nothing(ops):
    text = diesel_template_csv().replace("89000", "eighty-nine")

    result = ops.import_diesel_from_csv(text)

    assert result.error.kind == "import"
    assert result.error.details["row"] == 2
    assert ops.diesel_records == []


def test_import_diesel_with_backwards_odometer_leaves_distance_unset(ops):
    text = "fleetNumber,date,kmReading,previousKmReading,litresFilled,totalCost\n6H,2025-01-15,100000,123560,450,8325\n"

    [record] = ops.import_diesel_from_csv(text).value

    assert record.distance_travelled is None
    assert record.km_per_litre is None
    assert ops.cache.get_diesel_record(record.id).distance_travelled is None
    summary = summarize_diesel(ops.diesel_records)
    assert summary.total_distance == 0
    assert summary.average_km_per_litre == 0
    assert summary.average_cost_per_km == 0


def test_import_empty_csv(ops):
    assert ops.import_trips_from_csv("").error.kind == "import"


def test_import_trips(ops):
    text = (
        "fleetNumber,route,clientName,baseRevenue,revenueCurrency,startDate,endDate,driverName,distanceKm\n"
        "6H,JHB to CPT,Teralco,45000,ZAR,2025-01-01,2025-01-05,Enock Mukonyerwa,1400\n"
        "26H,Harare to Lusaka,SPF,3200,USD,2025-01-03,2025-01-06,Jonathan Bepete,900\n"
    )

    trips = ops.import_trips_from_csv(text).value

    assert [t.fleet_number for t in trips] == ["6H", "26H"]
    assert len(ops.trips) == 2


def test_import_costs(ops):
    trip = _new_trip(ops)
    text = (
        "tripId,category,subCategory,amount,currency,referenceNumber,date\n"
        f"{trip.id},Tolls,Tolls BB to JHB,350,ZAR,TL-1,2025-01-02\n"
        f"{trip.id},Parking,Beitbridge,120,ZAR,PK-1,2025-01-03\n"
    )

    entries = ops.import_costs_from_csv(text).value

    assert len(entries) == 2
    assert [c.reference_number for c in ops.cache.get_trip(trip.id).costs] == ["TL-1", "PK-1"]


def test_import_costs_for_unknown_trip_writes_nothing(ops):
    trip = _new_trip(ops)
    text = (
        "tripId,category,subCategory,amount,currency,referenceNumber,date\n"
        f"{trip.id},Tolls,Tolls BB to JHB,350,ZAR,TL-1,2025-01-02\n"
        "missing,Tolls,Tolls BB to JHB,350,ZAR,TL-2,2025-01-02\n"
    )

    result = ops.import_costs_from_csv(text)

    assert result.error.kind == "import"
    assert result.error.details["row"] == 2
    assert ops.cache.get_trip(trip.id).costs == []


# Store failures
def test_store_write_failure_is_reported():
    store = FailingStore()
    ops = FleetOperations(store, clock=lambda: FIXED_NOW)
    trip = _new_trip(ops)
    store.fail_writes = True

    result = ops.add_cost_entry(trip.id, cost_create())

    assert not result.ok
    assert result.error.kind == "store_write"
    assert result.error.message == "connection lost"
    assert ops.cache.get_trip(trip.id).costs == []
    ops.close()
