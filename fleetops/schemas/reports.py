from typing import Dict, List, Optional, Literal

from pydantic import BaseModel, Field

from .trips import CostEntry, Currency


class TripKPIs(BaseModel):
    total_revenue: float
    total_expenses: float
    net_profit: float
    profit_margin: float
    cost_per_km: float
    currency: Currency


class CostBreakdownItem(BaseModel):
    category: str
    total: float
    count: int
    percentage: float = 0


class TripReport(TripKPIs):
    cost_breakdown: List[CostBreakdownItem] = Field(default_factory=list)
    total_costs: float
    has_attachments: bool
    missing_receipts: List[CostEntry] = Field(default_factory=list)
    flagged_costs: List[CostEntry] = Field(default_factory=list)
    investigation_details: Optional[str] = None
    compliance_score: float


class DriverStats(BaseModel):
    trips: int = 0
    revenue: float = 0
    expenses: float = 0
    flags: int = 0
    internal_trips: int = 0
    external_trips: int = 0


class CurrencyFleetReport(BaseModel):
    currency: Currency
    total_trips: int
    active_trips: int
    completed_trips: int
    total_revenue: float
    total_expenses: float
    net_profit: float
    profit_margin: float
    avg_revenue_per_trip: float
    avg_cost_per_trip: float

    internal_trips: int
    external_trips: int
    internal_revenue: float
    internal_profit_margin: float
    external_revenue: float
    external_profit_margin: float

    total_flags: int
    unresolved_flags: int
    trips_with_investigations: int
    investigation_rate: float
    avg_flags_per_trip: float
    avg_resolution_time: float

    driver_stats: Dict[str, DriverStats] = Field(default_factory=dict)


AgingStatus = Literal["current", "warning", "critical", "overdue"]
RiskLevel = Literal["low", "medium", "high"]


class InvoiceAging(BaseModel):
    trip_id: str
    invoice_number: str
    customer_name: str
    invoice_date: str
    due_date: str
    amount: float
    currency: Currency
    aging_days: int
    status: AgingStatus
    payment_status: str
    last_follow_up: Optional[str] = None
    follow_up_count: int = 0
    risk_level: RiskLevel
    needs_follow_up: bool = False


class PaymentHistoryRecord(BaseModel):
    trip_id: str
    invoice_date: str
    due_date: str
    payment_date: Optional[str] = None
    days_late: int
    amount: float
    currency: Currency


class CustomerPerformance(BaseModel):
    customer_name: str
    total_trips: int
    total_revenue: float
    currency: Currency
    average_payment_days: float
    payment_score: float
    last_trip_date: str
    risk_level: RiskLevel
    is_at_risk: bool
    is_profitable: bool
    is_top_client: bool
    payment_history: List[PaymentHistoryRecord] = Field(default_factory=list)
    service_frequency_trend: Literal["increasing", "stable", "decreasing"]
    retention_score: float
