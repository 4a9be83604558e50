from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

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
    InvoiceUpdate,
    PaymentUpdate,
    Trip,
    TripCompleteRequest,
    TripCreate,
    TripStatus,
    TripUpdate,
)
from ..services import metrics
from ..services.operations import FleetOperations
from .deps import get_operations, read_csv_upload, unwrap


router = APIRouter(prefix="/trips", tags=["trips"])


@router.get("", response_model=List[Trip])
def list_trips(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    client: Optional[str] = Query(None),
    currency: Optional[Currency] = Query(None),
    driver: Optional[str] = Query(None),
    status: Optional[TripStatus] = Query(None),
    ops: FleetOperations = Depends(get_operations),
):
    trips = metrics.filter_trips_by_date_range(ops.trips, start_date, end_date)
    trips = metrics.filter_trips_by_client(trips, client)
    trips = metrics.filter_trips_by_currency(trips, currency.value if currency else None)
    trips = metrics.filter_trips_by_driver(trips, driver)
    if status:
        trips = [t for t in trips if t.status == status]
    return trips


@router.post("", response_model=Trip)
def create_trip(payload: TripCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_trip(payload))


@router.post("/import", response_model=List[Trip])
async def import_trips(file: UploadFile = File(...), ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.import_trips_from_csv(await read_csv_upload(file)))


@router.post("/costs/import", response_model=List[CostEntry])
async def import_costs(file: UploadFile = File(...), ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.import_costs_from_csv(await read_csv_upload(file)))


@router.get("/{trip_id}", response_model=Trip)
def get_trip(trip_id: str, ops: FleetOperations = Depends(get_operations)):
    trip = ops.cache.get_trip(trip_id)
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    return trip


@router.put("/{trip_id}", response_model=Trip)
def update_trip(trip_id: str, payload: TripUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_trip(trip_id, payload))


@router.delete("/{trip_id}")
def delete_trip(trip_id: str, ops: FleetOperations = Depends(get_operations)):
    unwrap(ops.delete_trip(trip_id))
    return {"message": "Trip deleted successfully"}


@router.post("/{trip_id}/complete", response_model=Trip)
def complete_trip(trip_id: str, payload: TripCompleteRequest, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.complete_trip(trip_id, payload))


# Cost entries
@router.post("/{trip_id}/costs", response_model=CostEntry)
def create_cost_entry(trip_id: str, payload: CostEntryCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_cost_entry(trip_id, payload))


@router.put("/costs/{cost_id}", response_model=CostEntry)
def update_cost_entry(cost_id: str, payload: CostEntryUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_cost_entry(cost_id, payload))


@router.delete("/costs/{cost_id}")
def delete_cost_entry(cost_id: str, ops: FleetOperations = Depends(get_operations)):
    unwrap(ops.delete_cost_entry(cost_id))
    return {"message": "Cost entry deleted successfully"}


@router.post("/costs/{cost_id}/flag", response_model=CostEntry)
def flag_cost_entry(cost_id: str, payload: CostFlagUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.flag_cost_entry(cost_id, payload))


@router.post("/costs/{cost_id}/resolve", response_model=CostEntry)
def resolve_cost_flag(cost_id: str, payload: CostResolveUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.resolve_cost_flag(cost_id, payload))


@router.post("/costs/{cost_id}/attachments", response_model=Attachment)
def add_attachment(cost_id: str, payload: AttachmentCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_attachment(cost_id, payload))


@router.delete("/attachments/{attachment_id}")
def delete_attachment(attachment_id: str, ops: FleetOperations = Depends(get_operations)):
    unwrap(ops.delete_attachment(attachment_id))
    return {"message": "Attachment deleted successfully"}


# Additional costs and delays
@router.post("/{trip_id}/additional-costs", response_model=AdditionalCost)
def add_additional_cost(trip_id: str, payload: AdditionalCostCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_additional_cost(trip_id, payload))


@router.delete("/{trip_id}/additional-costs/{cost_id}")
def remove_additional_cost(trip_id: str, cost_id: str, ops: FleetOperations = Depends(get_operations)):
    unwrap(ops.remove_additional_cost(trip_id, cost_id))
    return {"message": "Additional cost removed successfully"}


@router.post("/{trip_id}/delays", response_model=DelayReason)
def add_delay_reason(trip_id: str, payload: DelayReasonCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_delay_reason(trip_id, payload))


# Invoicing
@router.post("/{trip_id}/invoice", response_model=Trip)
def update_invoice(trip_id: str, payload: InvoiceUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_invoice(trip_id, payload))


@router.post("/{trip_id}/payment", response_model=Trip)
def update_payment(trip_id: str, payload: PaymentUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_invoice_payment(trip_id, payload))


@router.post("/{trip_id}/system-costs", response_model=Trip)
def apply_system_costs(trip_id: str, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.apply_system_costs(trip_id))
