from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..schemas.reports import CurrencyFleetReport, CustomerPerformance, InvoiceAging, TripReport
from ..schemas.system_costs import SystemCostRates, SystemCostRatesUpdate
from ..schemas.trips import Currency, FlaggedCost
from ..services import aging, metrics
from ..services.csv_import import currency_fleet_report_csv, report_filename
from ..services.formatting import business_today
from ..services.operations import FleetOperations
from .deps import get_operations, unwrap


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/trips/{trip_id}", response_model=TripReport)
def trip_report(trip_id: str, ops: FleetOperations = Depends(get_operations)):
    trip = ops.cache.get_trip(trip_id)
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    return metrics.generate_report(trip)


@router.get("/fleet/{currency}", response_model=CurrencyFleetReport)
def fleet_report(currency: Currency, ops: FleetOperations = Depends(get_operations)):
    return metrics.generate_currency_fleet_report(ops.trips, currency.value)


@router.get("/fleet/{currency}/csv")
def fleet_report_csv(currency: Currency, ops: FleetOperations = Depends(get_operations)):
    today = business_today()
    return Response(
        content=currency_fleet_report_csv(ops.trips, currency.value, today),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(currency.value, today)}"'},
    )


@router.get("/flagged-costs", response_model=List[FlaggedCost])
def flagged_costs(ops: FleetOperations = Depends(get_operations)):
    return metrics.get_all_flagged_costs(ops.trips)


@router.get("/invoice-aging", response_model=List[InvoiceAging])
def invoice_aging(ops: FleetOperations = Depends(get_operations)):
    return aging.generate_invoice_aging_report(ops.trips, business_today())


@router.get("/customers", response_model=List[CustomerPerformance])
def customer_performance(ops: FleetOperations = Depends(get_operations)):
    return aging.calculate_customer_performance(ops.trips, business_today())


@router.get("/system-cost-rates", response_model=Dict[str, SystemCostRates])
def get_system_cost_rates(ops: FleetOperations = Depends(get_operations)):
    return ops.system_cost_rates


@router.put("/system-cost-rates/{currency}", response_model=SystemCostRates)
def update_system_cost_rates(
    currency: Currency,
    payload: SystemCostRatesUpdate,
    ops: FleetOperations = Depends(get_operations),
):
    return unwrap(ops.update_system_cost_rates(currency.value, payload))
