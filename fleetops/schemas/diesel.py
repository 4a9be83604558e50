from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, field_validator


class PerformanceStatus(str, Enum):
    excellent = "excellent"
    normal = "normal"
    poor = "poor"


class DieselRecordBase(BaseModel):
    fleet_number: str
    date: str
    km_reading: float = 0
    previous_km_reading: Optional[float] = None
    litres_filled: float = 0
    cost_per_litre: Optional[float] = None
    total_cost: float = 0
    fuel_station: str = ""
    driver_name: str = ""
    notes: Optional[str] = None
    trip_id: Optional[str] = None

    @field_validator('trip_id', 'notes', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class DieselRecordCreate(DieselRecordBase):
    pass


class DieselRecordUpdate(BaseModel):
    fleet_number: Optional[str] = None
    date: Optional[str] = None
    km_reading: Optional[float] = None
    previous_km_reading: Optional[float] = None
    litres_filled: Optional[float] = None
    cost_per_litre: Optional[float] = None
    total_cost: Optional[float] = None
    fuel_station: Optional[str] = None
    driver_name: Optional[str] = None
    notes: Optional[str] = None
    trip_id: Optional[str] = None


class DieselConsumptionRecord(DieselRecordBase):
    id: str
    distance_travelled: Optional[float] = None
    km_per_litre: Optional[float] = None
    debrief_date: Optional[str] = None
    debrief_notes: Optional[str] = None
    debrief_signed_by: Optional[str] = None
    debrief_signed_at: Optional[datetime] = None


class DebriefUpdate(BaseModel):
    debrief_date: str
    debrief_notes: str
    debrief_signed_by: Optional[str] = None
    debrief_signed_at: Optional[datetime] = None


class DieselTripLink(BaseModel):
    trip_id: str


class DieselNorm(BaseModel):
    fleet_number: str
    expected_km_per_litre: float
    tolerance_percentage: float = 10
    last_updated: Optional[datetime] = None
    updated_by: str = "System Default"


class LinkedTripInfo(BaseModel):
    route: str
    start_date: str
    end_date: str


class DieselEfficiency(BaseModel):
    record: DieselConsumptionRecord
    distance_travelled: float
    km_per_litre: float
    cost_per_km: float
    cost_per_litre: float
    expected_km_per_litre: float
    efficiency_variance: float
    tolerance_range: float
    performance_status: PerformanceStatus
    requires_debrief: bool
    debrief_signed: bool
    linked_trip: Optional[LinkedTripInfo] = None


class DieselSummary(BaseModel):
    total_records: int = 0
    total_litres: float = 0
    total_cost: float = 0
    total_distance: float = 0
    average_km_per_litre: float = 0
    average_cost_per_km: float = 0
    records_requiring_debrief: int = 0
    pending_debriefs: int = 0
    poor_performance_records: int = 0
    excellent_performance_records: int = 0
    linked_to_trips: int = 0
