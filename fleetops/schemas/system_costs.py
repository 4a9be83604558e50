from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .trips import Currency


class PerKmCosts(BaseModel):
    repair_maintenance: float = 0
    tyre_cost: float = 0


class PerDayCosts(BaseModel):
    git_insurance: float = 0
    short_term_insurance: float = 0
    tracking_cost: float = 0
    fleet_management_system: float = 0
    licensing: float = 0
    vid_roadworthy: float = 0
    wages: float = 0
    depreciation: float = 0


class SystemCostRates(BaseModel):
    currency: Currency
    per_km_costs: PerKmCosts
    per_day_costs: PerDayCosts
    last_updated: Optional[datetime] = None
    updated_by: str = "System Default"
    effective_date: Optional[datetime] = None


class SystemCostRatesUpdate(BaseModel):
    per_km_costs: PerKmCosts
    per_day_costs: PerDayCosts
    updated_by: str
    effective_date: Optional[datetime] = None
