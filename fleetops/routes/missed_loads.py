from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas.missed_loads import (
    MissedLoad,
    MissedLoadCreate,
    MissedLoadSummary,
    MissedLoadUpdate,
    ResolutionStatus,
)
from ..services.metrics import summarize_missed_loads
from ..services.operations import FleetOperations
from .deps import get_operations, unwrap


router = APIRouter(prefix="/missed-loads", tags=["missed-loads"])


@router.get("", response_model=List[MissedLoad])
def list_missed_loads(
    resolution_status: Optional[ResolutionStatus] = Query(None),
    customer_name: Optional[str] = Query(None),
    ops: FleetOperations = Depends(get_operations),
):
    loads = ops.missed_loads
    if resolution_status:
        loads = [m for m in loads if m.resolution_status == resolution_status]
    if customer_name:
        loads = [m for m in loads if m.customer_name == customer_name]
    return loads


@router.get("/summary", response_model=MissedLoadSummary)
def missed_load_summary(ops: FleetOperations = Depends(get_operations)):
    return summarize_missed_loads(ops.missed_loads)


@router.post("", response_model=MissedLoad)
def create_missed_load(payload: MissedLoadCreate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.add_missed_load(payload))


@router.get("/{load_id}", response_model=MissedLoad)
def get_missed_load(load_id: str, ops: FleetOperations = Depends(get_operations)):
    load = ops.cache.get_missed_load(load_id)
    if not load:
        raise HTTPException(status_code=404, detail="Missed load not found")
    return load


@router.put("/{load_id}", response_model=MissedLoad)
def update_missed_load(load_id: str, payload: MissedLoadUpdate, ops: FleetOperations = Depends(get_operations)):
    return unwrap(ops.update_missed_load(load_id, payload))


@router.delete("/{load_id}")
def delete_missed_load(load_id: str, ops: FleetOperations = Depends(get_operations)):
    unwrap(ops.delete_missed_load(load_id))
    return {"message": "Missed load deleted successfully"}
