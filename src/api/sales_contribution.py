from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from src.analytics.currency import BASE_CURRENCY
from src.api.dependencies import get_sales_contribution_service
from src.schemas.sales_contribution import (
    EmployeeContribution,
    ReportingSettings,
    ReportView,
    RolePercentageEntry,
    RolePercentagesUpdateRequest,
    SalesContributionReport,
)
from src.services.sales_contribution_service import SalesContributionService
from src.shared.response import Meta, ResponseEnvelope
from src.shared.time import resolve_report_window

router = APIRouter(prefix="/sales-contribution", tags=["sales-contribution"])

CALCULATION_VERSION = "v1"
REPORT_SOURCE = "leads_leadstage,leads,leads_lead,payment_plans,finances_paymentplanrow,employee_salary"


def _report_meta(report: SalesContributionReport, view: str = "department") -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source=REPORT_SOURCE,
        time_window=f"{view}:{report.from_date.isoformat()}..{report.to_date.isoformat()}",
        calculation_version=CALCULATION_VERSION,
        currency=BASE_CURRENCY,
        degraded=report.degraded,
        data_status="partial" if report.degraded else "complete",
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


def _config_meta(source: str) -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source=source,
        time_window="current",
        calculation_version=CALCULATION_VERSION,
    )


@router.get("/report")
async def sales_contribution_report(
    from_date: Optional[date] = Query(default=None),
    to_date: Optional[date] = Query(default=None),
    view: ReportView = Query(default="department"),
    refresh: bool = Query(default=False),
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[SalesContributionReport]:
    start, end = resolve_report_window(from_date, to_date)
    report = await service.get_report(start, end, refresh=refresh)
    return ResponseEnvelope(data=report, meta=_report_meta(report, view))


@router.get("/report/latest")
def latest_sales_contribution_report(
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[SalesContributionReport]:
    report = service.get_latest_report()
    return ResponseEnvelope(data=report, meta=_report_meta(report))


@router.get("/employees/{employee_id}")
async def sales_contribution_employee(
    employee_id: int,
    from_date: Optional[date] = Query(default=None),
    to_date: Optional[date] = Query(default=None),
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[EmployeeContribution]:
    start, end = resolve_report_window(from_date, to_date)
    employee = await service.get_employee_result(employee_id, start, end)
    meta = Meta(
        as_of_date=date.today().isoformat(),
        source=REPORT_SOURCE,
        time_window=f"{start.isoformat()}..{end.isoformat()}",
        calculation_version=CALCULATION_VERSION,
        currency=BASE_CURRENCY,
    )
    return ResponseEnvelope(data=employee, meta=meta)


@router.get("/role-percentages")
async def role_percentages(
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[List[RolePercentageEntry]]:
    data = await service.get_role_percentages()
    return ResponseEnvelope(data=data, meta=_config_meta("role_percentages"))


@router.put("/role-percentages")
async def update_role_percentages(
    request: RolePercentagesUpdateRequest,
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[List[RolePercentageEntry]]:
    data = await service.update_role_percentages(request.percentages)
    return ResponseEnvelope(data=data, meta=_config_meta("role_percentages"))


@router.get("/settings")
async def reporting_settings(
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[ReportingSettings]:
    data = await service.get_reporting_settings()
    return ResponseEnvelope(data=data, meta=_config_meta("sales_contribution_income"))


@router.put("/settings")
async def update_reporting_settings(
    request: ReportingSettings,
    service: SalesContributionService = Depends(get_sales_contribution_service),
) -> ResponseEnvelope[ReportingSettings]:
    data = await service.update_reporting_settings(request)
    return ResponseEnvelope(data=data, meta=_config_meta("sales_contribution_income"))
