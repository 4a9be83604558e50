from datetime import datetime
from typing import Dict, Optional
from enum import Enum

from pydantic import BaseModel

from .trips import Currency


class MissedLoadReason(str, Enum):
    no_vehicle = "no_vehicle"
    late_response = "late_response"
    mechanical_issue = "mechanical_issue"
    driver_unavailable = "driver_unavailable"
    customer_cancelled = "customer_cancelled"
    rate_disagreement = "rate_disagreement"
    other = "other"


class ResolutionStatus(str, Enum):
    pending = "pending"
    resolved = "resolved"
    lost_opportunity = "lost_opportunity"
    rescheduled = "rescheduled"


class Impact(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class MissedLoadBase(BaseModel):
    customer_name: str
    load_request_date: str = ""
    requested_pickup_date: str = ""
    requested_delivery_date: str = ""
    route: str = ""
    estimated_revenue: float = 0
    currency: Currency = Currency.zar
    reason: MissedLoadReason = MissedLoadReason.other
    reason_description: Optional[str] = None
    resolution_status: ResolutionStatus = ResolutionStatus.pending
    follow_up_required: bool = False
    competitor_won: Optional[bool] = None
    recorded_by: str = ""
    impact: Impact = Impact.medium
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    compensation_offered: Optional[float] = None
    compensation_notes: Optional[str] = None


class MissedLoadCreate(MissedLoadBase):
    pass


class MissedLoadUpdate(BaseModel):
    customer_name: Optional[str] = None
    requested_pickup_date: Optional[str] = None
    requested_delivery_date: Optional[str] = None
    route: Optional[str] = None
    estimated_revenue: Optional[float] = None
    currency: Optional[Currency] = None
    reason: Optional[MissedLoadReason] = None
    reason_description: Optional[str] = None
    resolution_status: Optional[ResolutionStatus] = None
    follow_up_required: Optional[bool] = None
    competitor_won: Optional[bool] = None
    impact: Optional[Impact] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    compensation_offered: Optional[float] = None
    compensation_notes: Optional[str] = None


class MissedLoad(MissedLoadBase):
    id: str
    recorded_at: datetime


class MissedLoadSummary(BaseModel):
    total_missed_loads: int = 0
    revenue_lost: Dict[str, float] = {}
    by_reason: Dict[str, int] = {}
    by_impact: Dict[str, int] = {}
    by_resolution_status: Dict[str, int] = {}
    competitor_won_count: int = 0
    follow_ups_required: int = 0
