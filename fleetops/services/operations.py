"""
Fleet operations service.

Every user intent (add a cost, link a fuel purchase, record a payment, ...)
is a method here. Each one reads the latest snapshot, asks the rule engine
for the records to write and issues the writes to the record store. Intents
run one at a time under a re-entrant lock and return an OperationResult
instead of raising.
"""
import functools
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, ValidationError

from ..config import Settings, settings as default_settings
from ..schemas.diesel import (
    DebriefUpdate,
    DieselConsumptionRecord,
    DieselNorm,
    DieselRecordCreate,
    DieselRecordUpdate,
)
from ..schemas.missed_loads import MissedLoad, MissedLoadCreate, MissedLoadUpdate, ResolutionStatus
from ..schemas.system_costs import SystemCostRates, SystemCostRatesUpdate
from ..schemas.trips import (
    AdditionalCost,
    AdditionalCostCreate,
    Attachment,
    AttachmentCreate,
    CostEntry,
    CostEntryCreate,
    CostEntryUpdate,
    CostFlagUpdate,
    CostResolveUpdate,
    Currency,
    DelayReason,
    DelayReasonCreate,
    InvestigationStatus,
    InvoiceUpdate,
    PaymentUpdate,
    Trip,
    TripCompleteRequest,
    TripCreate,
    TripStatus,
    TripUpdate,
)
from ..store.provider import DIESEL, MISSED_LOADS, TRIPS, RecordStore
from ..store.snapshots import SnapshotCache
from . import system_costs, trip_rules
from .csv_import import CSVImportError, map_cost_row, map_diesel_row, map_rows, map_trip_row, parse_csv
from .diesel_efficiency import DEFAULT_DIESEL_NORMS, derive_efficiency
from .metrics import get_unresolved_flags_count
from .results import OperationFailed, OperationResult
from .validation import validate_cost_entry, validate_diesel_entry, validate_trip_entry


logger = structlog.get_logger(__name__)


def _validation_failed(e: ValidationError) -> OperationFailed:
    return OperationFailed("validation", "Validation failed", errors={
        ".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()
    })


def _merged(model: type, existing: BaseModel, changes: dict):
    """Rebuild `existing` with `changes` applied, validating the result."""
    try:
        return model.model_validate({**existing.model_dump(), **changes})
    except ValidationError as e:
        raise _validation_failed(e)


def intent(method: Callable) -> Callable:
    """Serialize an intent and turn OperationFailed into a failed result."""

    @functools.wraps(method)
    def wrapper(self: "FleetOperations", *args, **kwargs) -> OperationResult:
        with self._lock:
            try:
                value = method(self, *args, **kwargs)
            except OperationFailed as e:
                if e.kind == "stale_reference":
                    logger.info("stale_reference", intent=method.__name__, message=e.message, **e.details)
                elif e.kind == "import":
                    logger.warning("csv_import_failed", intent=method.__name__, message=e.message, **e.details)
                elif e.kind == "validation":
                    logger.info("validation_failed", intent=method.__name__, errors=e.details.get("errors"))
                return e.to_result()
        return OperationResult.success(value)

    return wrapper


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FleetOperations:
    def __init__(
        self,
        store: RecordStore,
        app_settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.settings = app_settings or default_settings
        self.cache = SnapshotCache(store)
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self.diesel_norms: Dict[str, DieselNorm] = {
            fleet: norm.model_copy() for fleet, norm in DEFAULT_DIESEL_NORMS.items()
        }
        self.system_cost_rates: Dict[str, SystemCostRates] = {
            currency: rates.model_copy(deep=True)
            for currency, rates in system_costs.DEFAULT_SYSTEM_COST_RATES.items()
        }

    # Snapshot access
    @property
    def trips(self) -> List[Trip]:
        return self.cache.trips

    @property
    def diesel_records(self) -> List[DieselConsumptionRecord]:
        return self.cache.diesel_records

    @property
    def missed_loads(self) -> List[MissedLoad]:
        return self.cache.missed_loads

    def close(self) -> None:
        self.cache.close()

    # Internal helpers
    def _now(self) -> datetime:
        return self._clock()

    def _write(self, action: str, collection: str, doc_id: str, doc: Optional[dict] = None) -> None:
        try:
            if action == "add":
                self.store.add(collection, doc)
            elif action == "update":
                self.store.update(collection, doc_id, doc)
            else:
                self.store.delete(collection, doc_id)
        except Exception as e:
            logger.error("store_write_failed", action=action, collection=collection, doc_id=doc_id, error=str(e))
            raise OperationFailed("store_write", str(e), collection=collection, doc_id=doc_id)

    def _save_trip(self, trip: Trip, previous: Optional[Trip] = None) -> Trip:
        if previous is not None and previous.auto_completed_at is None and trip.auto_completed_at is not None:
            logger.info("trip_auto_completed", trip_id=trip.id, fleet_number=trip.fleet_number)
        self._write("update", TRIPS, trip.id, trip.model_dump(mode="json"))
        return trip

    def _require_trip(self, trip_id: str) -> Trip:
        trip = self.cache.get_trip(trip_id)
        if trip is None:
            raise OperationFailed("stale_reference", f"Trip {trip_id} not found", trip_id=trip_id)
        return trip

    def _require_diesel(self, record_id: str) -> DieselConsumptionRecord:
        record = self.cache.get_diesel_record(record_id)
        if record is None:
            raise OperationFailed("stale_reference", f"Diesel record {record_id} not found", diesel_id=record_id)
        return record

    def _require_missed_load(self, load_id: str) -> MissedLoad:
        load = self.cache.get_missed_load(load_id)
        if load is None:
            raise OperationFailed("stale_reference", f"Missed load {load_id} not found", missed_load_id=load_id)
        return load

    def _require_cost(self, cost_id: str):
        trip, cost = trip_rules.find_cost_entry(self.cache.trips, cost_id)
        if cost is None:
            raise OperationFailed("stale_reference", f"Cost entry {cost_id} not found", cost_id=cost_id)
        return trip, cost

    @staticmethod
    def _check(errors: Dict[str, str]) -> None:
        if errors:
            raise OperationFailed("validation", "Validation failed", errors=errors)

    def _attachments(self, files: Iterable[AttachmentCreate], cost_id: Optional[str] = None,
                     trip_id: Optional[str] = None) -> List[Attachment]:
        now = self._now()
        return [
            Attachment(id=trip_rules.new_id(), cost_entry_id=cost_id, trip_id=trip_id, uploaded_at=now, **f.model_dump())
            for f in files
        ]

    def _stamp_investigation(self, entry: CostEntry, previous: Optional[CostEntry] = None) -> CostEntry:
        now = self._now()
        update = {}
        if entry.is_flagged and entry.flagged_at is None:
            update["flagged_at"] = previous.flagged_at if previous and previous.flagged_at else now
            if entry.investigation_status is None:
                update["investigation_status"] = InvestigationStatus.pending
        if entry.investigation_status == InvestigationStatus.resolved and entry.resolved_at is None:
            update["resolved_at"] = now
        return entry.model_copy(update=update) if update else entry

    def _new_trip(self, data: TripCreate) -> Trip:
        trip = Trip(id=trip_rules.new_id(), **data.model_dump())
        self._write("add", TRIPS, trip.id, trip.model_dump(mode="json"))
        return trip

    def _build_diesel_record(self, record_id: str, data: dict) -> DieselConsumptionRecord:
        derived = derive_efficiency(
            data.get("km_reading"),
            data.get("previous_km_reading"),
            data.get("litres_filled"),
            data.get("total_cost"),
            data.get("cost_per_litre"),
        )
        data = {**data, **derived, "id": record_id}
        return DieselConsumptionRecord.model_validate(data)

    def _sync_diesel_allocation(self, record: DieselConsumptionRecord) -> List[Trip]:
        changed = trip_rules.allocate_diesel(self.cache.trips, record, self._now())
        previous = {t.id: t for t in self.cache.trips}
        for trip in changed:
            self._save_trip(trip, previous.get(trip.id))
        if changed:
            logger.info("diesel_allocated", diesel_id=record.id, trip_id=record.trip_id,
                        trips_changed=[t.id for t in changed])
        return changed

    # Trips
    @intent
    def add_trip(self, data: TripCreate) -> Trip:
        self._check(validate_trip_entry(data.model_dump()))
        trip = self._new_trip(data)
        logger.info("trip_created", trip_id=trip.id, fleet_number=trip.fleet_number)
        return trip

    @intent
    def update_trip(self, trip_id: str, changes: TripUpdate) -> Trip:
        trip = self._require_trip(trip_id)
        changed = set(changes.model_dump(exclude_unset=True))
        if changed & {"start_date", "end_date"}:
            changed |= {"start_date", "end_date"}
        try:
            updated = trip_rules.apply_trip_update(trip, changes, self._now())
        except ValidationError as e:
            raise _validation_failed(e)
        errors = validate_trip_entry(updated.model_dump())
        self._check({field: message for field, message in errors.items() if field in changed})
        return self._save_trip(updated)

    @intent
    def delete_trip(self, trip_id: str) -> str:
        self._require_trip(trip_id)
        self._write("delete", TRIPS, trip_id)
        logger.info("trip_deleted", trip_id=trip_id)
        return trip_id

    @intent
    def complete_trip(self, trip_id: str, request: TripCompleteRequest) -> Trip:
        trip = self._require_trip(trip_id)
        unresolved = get_unresolved_flags_count(trip.costs)
        if unresolved:
            raise OperationFailed(
                "validation",
                f"Cannot complete trip: {unresolved} flagged cost(s) still under investigation",
                errors={"status": "Unresolved flagged costs remain"},
            )
        if trip.status != TripStatus.active:
            raise OperationFailed(
                "validation", f"Trip is already {trip.status.value}",
                errors={"status": f"Trip is already {trip.status.value}"},
            )
        completed = trip_rules.mark_trip_completed(trip, request.completed_by, request.reason, self._now())
        return self._save_trip(completed)

    # Cost entries
    @intent
    def add_cost_entry(self, trip_id: str, data: CostEntryCreate) -> CostEntry:
        self._check(validate_cost_entry(data.model_dump()))
        trip = self._require_trip(trip_id)
        entry_id = trip_rules.new_id()
        entry = CostEntry(
            id=entry_id,
            trip_id=trip.id,
            attachments=self._attachments(data.attachments, cost_id=entry_id),
            **data.model_dump(exclude={"attachments"}),
        )
        entry = self._stamp_investigation(entry)
        self._save_trip(trip_rules.add_cost_entry_to_trip(trip, entry, self._now()), trip)
        return entry

    @intent
    def update_cost_entry(self, cost_id: str, data: CostEntryUpdate) -> CostEntry:
        trip, existing = self._require_cost(cost_id)
        entry = _merged(CostEntry, existing, data.model_dump(exclude_unset=True))
        self._check(validate_cost_entry(entry.model_dump()))
        entry = self._stamp_investigation(entry, existing)
        self._save_trip(trip_rules.replace_cost_entry(trip, entry, self._now()), trip)
        return entry

    @intent
    def delete_cost_entry(self, cost_id: str) -> str:
        trip, _ = self._require_cost(cost_id)
        self._save_trip(trip_rules.remove_cost_entry(trip, cost_id))
        return cost_id

    @intent
    def flag_cost_entry(self, cost_id: str, flag: CostFlagUpdate) -> CostEntry:
        if not flag.flag_reason.strip():
            self._check({"flag_reason": "Flag reason is required when flagging a cost"})
        trip, existing = self._require_cost(cost_id)
        entry = trip_rules.flag_cost(existing, flag, self._now())
        self._save_trip(trip_rules.replace_cost_entry(trip, entry, self._now()), trip)
        return entry

    @intent
    def resolve_cost_flag(self, cost_id: str, resolution: CostResolveUpdate) -> CostEntry:
        trip, existing = self._require_cost(cost_id)
        if not existing.is_flagged:
            self._check({"is_flagged": "Only flagged costs can be resolved"})
        entry = trip_rules.resolve_cost(existing, resolution, self._now())
        self._save_trip(trip_rules.replace_cost_entry(trip, entry, self._now()), trip)
        return entry

    @intent
    def add_attachment(self, cost_id: str, data: AttachmentCreate) -> Attachment:
        trip, existing = self._require_cost(cost_id)
        attachment = self._attachments([data], cost_id=cost_id)[0]
        entry = existing.model_copy(update={"attachments": [*existing.attachments, attachment]})
        self._save_trip(trip_rules.replace_cost_entry(trip, entry, self._now()), trip)
        return attachment

    @intent
    def delete_attachment(self, attachment_id: str) -> str:
        for trip in self.cache.trips:
            for cost in trip.costs:
                if any(a.id == attachment_id for a in cost.attachments):
                    entry = cost.model_copy(update={
                        "attachments": [a for a in cost.attachments if a.id != attachment_id],
                    })
                    self._save_trip(trip_rules.replace_cost_entry(trip, entry, self._now()), trip)
                    return attachment_id
        raise OperationFailed("stale_reference", f"Attachment {attachment_id} not found",
                              attachment_id=attachment_id)

    # Additional costs and delays
    @intent
    def add_additional_cost(self, trip_id: str, data: AdditionalCostCreate) -> AdditionalCost:
        if data.amount <= 0:
            self._check({"amount": "Amount must be a valid positive number"})
        trip = self._require_trip(trip_id)
        cost = AdditionalCost(
            id=trip_rules.new_id(),
            trip_id=trip.id,
            added_at=self._now(),
            supporting_documents=self._attachments(data.supporting_documents, trip_id=trip.id),
            **data.model_dump(exclude={"supporting_documents"}),
        )
        self._save_trip(trip.model_copy(update={"additional_costs": [*trip.additional_costs, cost]}))
        return cost

    @intent
    def remove_additional_cost(self, trip_id: str, cost_id: str) -> str:
        trip = self._require_trip(trip_id)
        if not any(c.id == cost_id for c in trip.additional_costs):
            raise OperationFailed("stale_reference", f"Additional cost {cost_id} not found",
                                  trip_id=trip_id, cost_id=cost_id)
        self._save_trip(trip.model_copy(update={
            "additional_costs": [c for c in trip.additional_costs if c.id != cost_id],
        }))
        return cost_id

    @intent
    def add_delay_reason(self, trip_id: str, data: DelayReasonCreate) -> DelayReason:
        if data.delay_duration < 0:
            self._check({"delay_duration": "Delay duration cannot be negative"})
        trip = self._require_trip(trip_id)
        delay = DelayReason(id=trip_rules.new_id(), trip_id=trip.id, reported_at=self._now(), **data.model_dump())
        self._save_trip(trip.model_copy(update={"delay_reasons": [*trip.delay_reasons, delay]}))
        return delay

    # Invoicing
    @intent
    def update_invoice_payment(self, trip_id: str, payment: PaymentUpdate) -> Trip:
        trip = self._require_trip(trip_id)
        if payment.payment_amount is not None and payment.payment_amount < 0:
            self._check({"payment_amount": "Payment amount cannot be negative"})
        updated = trip_rules.apply_payment_update(trip, payment, self._now())
        logger.info("payment_recorded", trip_id=trip.id, payment_status=payment.payment_status.value)
        return self._save_trip(updated)

    @intent
    def update_invoice(self, trip_id: str, invoice: InvoiceUpdate) -> Trip:
        errors = {}
        if not invoice.invoice_number.strip():
            errors["invoice_number"] = "Invoice number is required"
        if not invoice.invoice_date.strip():
            errors["invoice_date"] = "Invoice date is required"
        self._check(errors)
        trip = self._require_trip(trip_id)
        return self._save_trip(trip_rules.apply_invoice(trip, invoice, self._now()))

    @intent
    def apply_system_costs(self, trip_id: str) -> Trip:
        trip = self._require_trip(trip_id)
        rates = self.system_cost_rates[trip.revenue_currency.value]
        updated = system_costs.apply_system_costs(trip, rates, self._now())
        logger.info("system_costs_applied", trip_id=trip.id, currency=rates.currency.value,
                    entries=sum(1 for c in updated.costs if c.is_system_generated))
        return self._save_trip(updated)

    # Missed loads
    @intent
    def add_missed_load(self, data: MissedLoadCreate) -> MissedLoad:
        if not data.customer_name.strip():
            self._check({"customer_name": "Customer name is required"})
        now = self._now()
        load = MissedLoad(
            id=trip_rules.new_id(),
            recorded_at=now,
            **data.model_dump(exclude={"load_request_date"}),
            load_request_date=data.load_request_date or now.date().isoformat(),
        )
        self._write("add", MISSED_LOADS, load.id, load.model_dump(mode="json"))
        return load

    @intent
    def update_missed_load(self, load_id: str, changes: MissedLoadUpdate) -> MissedLoad:
        load = self._require_missed_load(load_id)
        data = changes.model_dump(exclude_unset=True)
        if data.get("resolution_status") == ResolutionStatus.resolved and load.resolved_at is None:
            data["resolved_at"] = self._now()
        updated = _merged(MissedLoad, load, data)
        self._write("update", MISSED_LOADS, load.id, updated.model_dump(mode="json"))
        return updated

    @intent
    def delete_missed_load(self, load_id: str) -> str:
        self._require_missed_load(load_id)
        self._write("delete", MISSED_LOADS, load_id)
        return load_id

    # Diesel records
    @intent
    def add_diesel_record(self, data: DieselRecordCreate) -> DieselConsumptionRecord:
        self._check(validate_diesel_entry(data.model_dump()))
        if data.trip_id:
            self._require_trip(data.trip_id)
        record = self._build_diesel_record(trip_rules.new_id(), data.model_dump())
        self._write("add", DIESEL, record.id, record.model_dump(mode="json"))
        if record.trip_id:
            self._sync_diesel_allocation(record)
        return record

    @intent
    def update_diesel_record(self, record_id: str, changes: DieselRecordUpdate) -> DieselConsumptionRecord:
        existing = self._require_diesel(record_id)
        data = changes.model_dump(exclude_unset=True)
        if "trip_id" in data and not data["trip_id"]:
            data["trip_id"] = None
        merged = {**existing.model_dump(), **data}
        for field in ("distance_travelled", "km_per_litre"):
            merged.pop(field, None)
        if "cost_per_litre" not in data and ("total_cost" in data or "litres_filled" in data):
            merged["cost_per_litre"] = None
        self._check(validate_diesel_entry(merged))
        if merged.get("trip_id"):
            self._require_trip(merged["trip_id"])
        record = self._build_diesel_record(record_id, merged)
        self._write("update", DIESEL, record.id, record.model_dump(mode="json"))
        self._sync_diesel_allocation(record)
        return record

    @intent
    def delete_diesel_record(self, record_id: str) -> str:
        self._require_diesel(record_id)
        for trip in trip_rules.remove_diesel_allocation(self.cache.trips, record_id):
            self._save_trip(trip)
        self._write("delete", DIESEL, record_id)
        logger.info("diesel_record_deleted", diesel_id=record_id)
        return record_id

    @intent
    def update_diesel_debrief(self, record_id: str, debrief: DebriefUpdate) -> DieselConsumptionRecord:
        record = self._require_diesel(record_id)
        signed_at = debrief.debrief_signed_at
        if signed_at is None and debrief.debrief_signed_by:
            signed_at = self._now()
        updated = record.model_copy(update={
            "debrief_date": debrief.debrief_date,
            "debrief_notes": debrief.debrief_notes,
            "debrief_signed_by": debrief.debrief_signed_by,
            "debrief_signed_at": signed_at,
        })
        self._write("update", DIESEL, record.id, updated.model_dump(mode="json"))
        return updated

    @intent
    def allocate_diesel_to_trip(self, record_id: str, trip_id: str) -> DieselConsumptionRecord:
        record = self._require_diesel(record_id)
        self._require_trip(trip_id)
        linked = record.model_copy(update={"trip_id": trip_id})
        if linked != record:
            self._write("update", DIESEL, linked.id, linked.model_dump(mode="json"))
        self._sync_diesel_allocation(linked)
        return linked

    @intent
    def remove_diesel_from_trip(self, record_id: str) -> DieselConsumptionRecord:
        record = self._require_diesel(record_id)
        unlinked = record.model_copy(update={"trip_id": None})
        if record.trip_id:
            self._write("update", DIESEL, unlinked.id, unlinked.model_dump(mode="json"))
        for trip in trip_rules.remove_diesel_allocation(self.cache.trips, record_id):
            self._save_trip(trip)
        return unlinked

    # CSV imports
    def _parse_batch(self, text: str, mapper) -> list:
        try:
            return map_rows(parse_csv(text), mapper)
        except CSVImportError as e:
            raise OperationFailed("import", e.message, row=e.row)

    @intent
    def import_trips_from_csv(self, text: str) -> List[Trip]:
        rows = self._parse_batch(text, map_trip_row)
        trips = [self._new_trip(data) for data in rows]
        logger.info("csv_import_completed", kind="trips", count=len(trips))
        return trips

    @intent
    def import_diesel_from_csv(self, text: str) -> List[DieselConsumptionRecord]:
        rows = self._parse_batch(text, map_diesel_row)
        records = []
        for data in rows:
            record = self._build_diesel_record(trip_rules.new_id(), data.model_dump())
            self._write("add", DIESEL, record.id, record.model_dump(mode="json"))
            records.append(record)
        logger.info("csv_import_completed", kind="diesel", count=len(records))
        return records

    @intent
    def import_costs_from_csv(self, text: str) -> List[CostEntry]:
        rows = self._parse_batch(text, map_cost_row)
        for index, (trip_id, _) in enumerate(rows, start=1):
            if self.cache.get_trip(trip_id) is None:
                raise OperationFailed("import", f"Unknown trip {trip_id}", row=index)

        by_trip: Dict[str, List[CostEntryCreate]] = {}
        for trip_id, data in rows:
            by_trip.setdefault(trip_id, []).append(data)

        entries = []
        for trip_id, items in by_trip.items():
            original = self.cache.get_trip(trip_id)
            trip = original
            for data in items:
                entry = CostEntry(id=trip_rules.new_id(), trip_id=trip_id, **data.model_dump(exclude={"attachments"}))
                trip = trip_rules.add_cost_entry_to_trip(trip, entry, self._now())
                entries.append(entry)
            self._save_trip(trip, original)
        logger.info("csv_import_completed", kind="costs", count=len(entries))
        return entries

    # Configuration held in memory
    @intent
    def update_diesel_norms(self, norms: List[DieselNorm], updated_by: str = "System") -> List[DieselNorm]:
        errors = {
            n.fleet_number: "Expected km/L must be positive"
            for n in norms if n.expected_km_per_litre <= 0
        }
        self._check(errors)
        now = self._now()
        for norm in norms:
            self.diesel_norms[norm.fleet_number] = norm.model_copy(update={
                "last_updated": now,
                "updated_by": updated_by if norm.updated_by == "System Default" else norm.updated_by,
            })
        return list(self.diesel_norms.values())

    @intent
    def update_system_cost_rates(self, currency: str, update: SystemCostRatesUpdate) -> SystemCostRates:
        try:
            code = Currency(str(currency).upper())
        except ValueError:
            raise OperationFailed("validation", f"Unsupported currency {currency}",
                                  errors={"currency": "Currency must be USD or ZAR"})
        now = self._now()
        rates = SystemCostRates(
            currency=code,
            per_km_costs=update.per_km_costs,
            per_day_costs=update.per_day_costs,
            last_updated=now,
            updated_by=update.updated_by,
            effective_date=update.effective_date or now,
        )
        self.system_cost_rates[code.value] = rates
        logger.info("system_cost_rates_updated", currency=code.value, updated_by=update.updated_by)
        return rates
