from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response

from ..schemas.diesel import (
    DebriefUpdate,
    DieselConsumptionRecord,
    DieselEfficiency,
    DieselNorm,
    DieselRecordCreate,
    DieselRecordUpdate,
    DieselSummary,
    DieselTripLink,
)
from ..services.csv_import import diesel_template_csv
from ..services.diesel_efficiency import analyze_record, filter_diesel_records, summarize_diesel
from ..services.operations import FleetOperations
from .deps import get_operations, read_csv_upload, unwrap


router = APIRouter(prefix="/diesel", tags=["diesel"])


@router.get("", response_model=List[DieselEfficiency])
def list_diesel_records(
    fleet_number: Optional[str] = Query(None),
    driver_name: Optional[str] = Query(None),
    date: Optional[str] = Query(None),
    requires_debrief: Optional[bool] = Query(None),
    ops: FleetOperations = Depends(get_operations),
):
    records = filter_diesel_records(ops.diesel_records, fleet_number, driver_name, date)
    analyses = [analyze_record(r, ops.diesel_norms, ops.trips) for r in records]
    if requires_debrief is not None:
        analyses = [a for a in analyses if a.requires_debrief == requires_debrief]
    return analyses


@router.get("/summary", response_model=DieselSummary)
def diesel_summary(
    fleet_number: Optional[str] = Query(None),
    driver_name: Optional[str] = Query(None),
    date: Optional[str] = Query(None),
    ops: FleetOperations = Depends(get_operations),
):
    records = filter_diesel_records(ops.diesel_records, fleet_number, driver_name, date)
    return summarize_diesel(records, ops.diesel_norms)


@router.get("/template")
def diesel_template():
    return Response(
        content=diesel_template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="diesel-import-template.csv"'},
    )


@router.get("/norms", response_model=List[DieselNorm])
def list_norms(ops: FleetOperations = Depends(get_operations)):
    return list(ops.diesel_norms.values())


@router.put("/norms", response_model=List[DieselNorm])
def update_norms(
    norms: List[DieselNorm] = Body(...),
    updated_by: str = Query("System"),
    ops: FleetOperations = Depends(get_operations),
):
    return unwrap(ops.update_diesel_norms(norms, updated_by))


@router.post("", response_model=DieselConsumptionRecord)
def create_diesel_record(payload: DieselRecordCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_diesel_record(payload))


@router.post("/import", response_model=List[DieselConsumptionRecord])
async def import_diesel(file: UploadFile = File(...), ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.import_diesel_from_csv(await read_csv_upload(file)))


@router.get("/{record_id}", response_model=DieselEfficiency)
def get_diesel_record(record_id: str, ops: FleetOperations = Depends(get_operations)):
    record = ops.cache.get_diesel_record(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Diesel record not found")
    return analyze_record(record, ops.diesel_norms, ops.trips)


@router.put("/{record_id}", response_model=DieselConsumptionRecord)
def update_diesel_record(record_id: str, payload: DieselRecordUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_diesel_record(record_id, payload))


@router.delete("/{record_id}")
def delete_diesel_record(record_id: str, ops: FleetOperations = Depends(get_operations)):
    unwrap(ops.delete_diesel_record(record_id))
    return {"message": "Diesel record deleted successfully"}


@router.post("/{record_id}/debrief", response_model=DieselConsumptionRecord)
def debrief_diesel_record(record_id: str, payload: DebriefUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_diesel_debrief(record_id, payload))


@router.post("/{record_id}/link", response_model=DieselConsumptionRecord)
def link_diesel_record(record_id: str, payload: DieselTripLink, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.allocate_diesel_to_trip(record_id, payload.trip_id))


@router.post("/{record_id}/unlink", response_model=DieselConsumptionRecord)
def unlink_diesel_record(record_id: str, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.remove_diesel_from_trip(record_id))
