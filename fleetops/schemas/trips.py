from datetime import datetime
from typing import Annotated, List, Optional, Literal, Union
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class Currency(str, Enum):
    usd = "USD"
    zar = "ZAR"


class ClientType(str, Enum):
    internal = "internal"
    external = "external"


class TripStatus(str, Enum):
    active = "active"
    completed = "completed"
    invoiced = "invoiced"
    paid = "paid"


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"


class InvestigationStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    resolved = "resolved"


class AdditionalCostType(str, Enum):
    demurrage = "demurrage"
    clearing_fees = "clearing_fees"
    toll_charges = "toll_charges"
    detention = "detention"
    escort_fees = "escort_fees"
    storage = "storage"
    other = "other"


class DelayType(str, Enum):
    border_delays = "border_delays"
    breakdown = "breakdown"
    customer_not_ready = "customer_not_ready"
    paperwork_issues = "paperwork_issues"
    weather_conditions = "weather_conditions"
    traffic = "traffic"
    other = "other"


class DelaySeverity(str, Enum):
    minor = "minor"
    moderate = "moderate"
    major = "major"


class ContactMethod(str, Enum):
    call = "call"
    email = "email"
    whatsapp = "whatsapp"
    in_person = "in_person"
    sms = "sms"


class FollowUpStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    escalated = "escalated"


class FollowUpPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class FollowUpOutcome(str, Enum):
    no_response = "no_response"
    promised_payment = "promised_payment"
    dispute = "dispute"
    payment_received = "payment_received"
    partial_payment = "partial_payment"


# Fixed cost taxonomy offered by the entry forms
COST_CATEGORIES = {
    "Border Costs": [
        "Beitbridge Border Fee", "Gate Pass", "Coupon", "Carbon Tax Horse", "CVG Horse", "CVG Trailer",
        "Insurance (1 Month Horse)", "Insurance (3 Months Trailer)", "Road Access", "Bridge Fee",
        "Road Toll Fee", "Transit Permit Horse", "Transit Permit Trailer", "Electronic Seal",
        "EME Permit", "Zim Clearing", "Zim Supervision", "SA Clearing", "Runner Fee Beitbridge",
        "Runner Fee Zambia Kazungula", "Runner Fee Chirundu",
    ],
    "Parking": [
        "Bubi", "Lunde", "Mvuma", "Gweru", "Kadoma", "Chegutu", "Norton", "Harare", "Ruwa",
        "Marondera", "Rusape", "Mutare", "Bulawayo", "Gwanda", "Beitbridge", "Masvingo", "Kwekwe",
    ],
    "Diesel": [
        "ACM Petroleum Chirundu - Reefer", "ACM Petroleum Chirundu - Horse",
        "RAM Petroleum Harare - Reefer", "RAM Petroleum Harare - Horse",
        "Engen Beitbridge - Reefer", "Engen Beitbridge - Horse",
        "Shell Mutare - Reefer", "Shell Mutare - Horse",
    ],
    "Non-Value-Added Costs": [
        "Fines", "Penalties", "Passport Stamping", "Push Documents", "Jump Queue",
        "Dismiss Inspection", "Parcels", "Labour",
    ],
    "Trip Allowances": ["Food", "Airtime", "Taxi"],
    "Tolls": [
        "Tolls BB to JHB", "Tolls Cape Town to JHB", "Tolls JHB to CPT", "Tolls Mutare to BB",
        "Tolls JHB to Martinsdrift", "Tolls BB to Harare", "Tolls Zambia",
    ],
    "System Costs": [
        "Repair & Maintenance per KM", "Tyre Cost per KM", "GIT Insurance", "Short-Term Insurance",
        "Tracking Cost", "Fleet Management System", "Licensing", "VID / Roadworthy", "Wages",
        "Depreciation",
    ],
}


# Cost entry origin (tagged variant)
class ManualOrigin(BaseModel):
    kind: Literal["manual"] = "manual"


class DieselDerivedOrigin(BaseModel):
    kind: Literal["diesel-derived"] = "diesel-derived"
    diesel_record_id: str


class SystemOrigin(BaseModel):
    kind: Literal["system"] = "system"


CostOrigin = Annotated[
    Union[ManualOrigin, DieselDerivedOrigin, SystemOrigin],
    Field(discriminator="kind"),
]


class Attachment(BaseModel):
    id: str
    cost_entry_id: Optional[str] = None
    trip_id: Optional[str] = None
    filename: str
    file_url: str = ""
    file_type: str = ""
    file_size: Optional[int] = None
    uploaded_at: Optional[datetime] = None


class AttachmentCreate(BaseModel):
    filename: str
    file_url: str = ""
    file_type: str = ""
    file_size: Optional[int] = None


class CostEntryBase(BaseModel):
    category: str
    sub_category: str = ""
    amount: float
    currency: Currency = Currency.zar
    reference_number: str = ""
    date: str
    notes: Optional[str] = None
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    investigation_status: Optional[InvestigationStatus] = None
    investigation_notes: Optional[str] = None
    no_document_reason: Optional[str] = None
    flagged_at: Optional[datetime] = None
    flagged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class CostEntryCreate(CostEntryBase):
    attachments: List[AttachmentCreate] = Field(default_factory=list)


class CostEntry(CostEntryBase):
    id: str
    trip_id: str
    attachments: List[Attachment] = Field(default_factory=list)
    is_system_generated: bool = False
    system_cost_type: Optional[Literal["per-km", "per-day"]] = None
    calculation_details: Optional[str] = None
    origin: CostOrigin = Field(default_factory=ManualOrigin)


class CostEntryUpdate(BaseModel):
    category: Optional[str] = None
    sub_category: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[Currency] = None
    reference_number: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None
    is_flagged: Optional[bool] = None
    flag_reason: Optional[str] = None
    investigation_status: Optional[InvestigationStatus] = None
    investigation_notes: Optional[str] = None
    no_document_reason: Optional[str] = None


class CostFlagUpdate(BaseModel):
    flag_reason: str
    flagged_by: str
    investigation_notes: Optional[str] = None


class CostResolveUpdate(BaseModel):
    resolved_by: str
    investigation_notes: Optional[str] = None


class AdditionalCostCreate(BaseModel):
    cost_type: AdditionalCostType
    amount: float
    currency: Currency = Currency.zar
    notes: Optional[str] = None
    added_by: str = ""
    supporting_documents: List[AttachmentCreate] = Field(default_factory=list)


class AdditionalCost(BaseModel):
    id: str
    trip_id: str
    cost_type: AdditionalCostType
    amount: float
    currency: Currency = Currency.zar
    supporting_documents: List[Attachment] = Field(default_factory=list)
    notes: Optional[str] = None
    added_at: Optional[datetime] = None
    added_by: str = ""


class DelayReasonCreate(BaseModel):
    delay_type: DelayType
    description: str = ""
    delay_duration: float = 0  # hours
    severity: DelaySeverity = DelaySeverity.minor
    reported_by: str = ""


class DelayReason(DelayReasonCreate):
    id: str
    trip_id: str
    reported_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class FollowUpRecord(BaseModel):
    id: str
    trip_id: str
    follow_up_date: str
    contact_method: ContactMethod = ContactMethod.call
    responsible_staff: str = ""
    response_summary: str = ""
    next_follow_up_date: Optional[str] = None
    status: FollowUpStatus = FollowUpStatus.pending
    priority: FollowUpPriority = FollowUpPriority.medium
    outcome: FollowUpOutcome = FollowUpOutcome.no_response


class TripEditRecord(BaseModel):
    id: str
    trip_id: str
    edited_by: str
    edited_at: datetime
    reason: str
    field_changed: str
    old_value: str = ""
    new_value: str = ""
    change_type: Literal["update", "status_change", "completion", "auto_completion"] = "update"


class TripBase(BaseModel):
    fleet_number: str
    driver_name: str = ""
    client_name: str = ""
    client_type: ClientType = ClientType.external
    start_date: str = ""
    end_date: str = ""
    route: str = ""
    description: Optional[str] = None
    base_revenue: float = 0
    revenue_currency: Currency = Currency.zar
    distance_km: Optional[float] = None

    # Planned vs actual timestamps
    planned_arrival_date_time: Optional[datetime] = None
    planned_offload_date_time: Optional[datetime] = None
    planned_departure_date_time: Optional[datetime] = None
    actual_arrival_date_time: Optional[datetime] = None
    actual_offload_date_time: Optional[datetime] = None
    actual_departure_date_time: Optional[datetime] = None
    final_arrival_date_time: Optional[datetime] = None
    final_offload_date_time: Optional[datetime] = None
    final_departure_date_time: Optional[datetime] = None

    @field_validator('description', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class TripCreate(TripBase):
    pass


class TripUpdate(BaseModel):
    fleet_number: Optional[str] = None
    driver_name: Optional[str] = None
    client_name: Optional[str] = None
    client_type: Optional[ClientType] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    route: Optional[str] = None
    description: Optional[str] = None
    base_revenue: Optional[float] = None
    revenue_currency: Optional[Currency] = None
    distance_km: Optional[float] = None
    status: Optional[TripStatus] = None
    investigation_notes: Optional[str] = None
    planned_arrival_date_time: Optional[datetime] = None
    planned_offload_date_time: Optional[datetime] = None
    planned_departure_date_time: Optional[datetime] = None
    actual_arrival_date_time: Optional[datetime] = None
    actual_offload_date_time: Optional[datetime] = None
    actual_departure_date_time: Optional[datetime] = None
    final_arrival_date_time: Optional[datetime] = None
    final_offload_date_time: Optional[datetime] = None
    final_departure_date_time: Optional[datetime] = None
    edited_by: Optional[str] = None
    edit_reason: Optional[str] = None


class Trip(TripBase):
    id: str
    status: TripStatus = TripStatus.active
    payment_status: PaymentStatus = PaymentStatus.unpaid
    costs: List[CostEntry] = Field(default_factory=list)
    additional_costs: List[AdditionalCost] = Field(default_factory=list)
    delay_reasons: List[DelayReason] = Field(default_factory=list)
    follow_up_history: List[FollowUpRecord] = Field(default_factory=list)
    edit_history: List[TripEditRecord] = Field(default_factory=list)

    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    auto_completed_at: Optional[datetime] = None
    auto_completed_reason: Optional[str] = None
    investigation_notes: Optional[str] = None

    timeline_validated: bool = False
    timeline_validated_by: Optional[str] = None
    timeline_validated_at: Optional[datetime] = None

    # Invoice and payment tracking
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    invoice_due_date: Optional[str] = None
    invoice_submitted_at: Optional[datetime] = None
    invoice_submitted_by: Optional[str] = None
    invoice_validation_notes: Optional[str] = None
    payment_amount: Optional[float] = None
    payment_received_date: Optional[str] = None
    payment_method: Optional[str] = None
    bank_reference: Optional[str] = None
    last_follow_up_date: Optional[str] = None


class TripCompleteRequest(BaseModel):
    completed_by: str
    reason: str = "Trip completed"


class PaymentUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_amount: Optional[float] = None
    payment_received_date: Optional[str] = None
    payment_notes: Optional[str] = None
    payment_method: Optional[str] = None
    bank_reference: Optional[str] = None


class InvoiceUpdate(BaseModel):
    invoice_number: str
    invoice_date: str
    invoice_due_date: Optional[str] = None
    invoice_submitted_by: Optional[str] = None
    invoice_validation_notes: Optional[str] = None


class FlaggedCost(CostEntry):
    trip_fleet_number: str
    trip_route: str
    trip_driver_name: str
