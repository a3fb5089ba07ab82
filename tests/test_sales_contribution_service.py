from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from src.core.errors import BadRequestError, NotFoundError, UpstreamError
from src.models.sales_contribution import (
    CategoryRecord,
    CurrentInstallmentRecord,
    CurrentLeadRecord,
    EmployeeRecord,
    IncomeSettingsRecord,
    LegacyInstallmentRecord,
    LegacyLeadRecord,
    MainCategoryRecord,
    RolePercentageRecord,
    SalaryRecord,
    StageEventRecord,
)
from src.schemas.sales_contribution import ReportingSettings
from src.services.sales_contribution_service import SalesContributionService, latest_signed_events

FROM_DATE = date(2026, 3, 1)
TO_DATE = date(2026, 3, 31)


class StubSalesContributionRepository:
    def __init__(self) -> None:
        self.event_calls = 0
        self.failures: Dict[str, Exception] = {}
        self.on_events: Optional[Callable[[], None]] = None
        self.upserted: Optional[Dict[str, Decimal]] = None
        self.role_rows = [RolePercentageRecord(role_name="HANDLER", percentage=10)]
        self.income = IncomeSettingsRecord(id=1, income_amount=0, due_normalized_percentage=50)
        self.events = [
            StageEventRecord(id=1, stage=60, date="2026-03-05T10:00:00Z", newlead_id="a"),
            StageEventRecord(id=2, stage=60, date="2026-03-06T10:00:00Z", lead_id=5),
        ]
        self.current_leads = [
            CurrentLeadRecord(
                id="a", balance=10000, balance_currency="USD", subcontractor_fee=1000, closer=1, helper=2
            )
        ]
        self.legacy_leads = [
            LegacyLeadRecord(id=5, total_base=1200, currency_id=1, closer_id=1, case_handler_id=3)
        ]
        self.legacy_handler_leads = [
            LegacyLeadRecord(id=5, case_handler_id=3),
            LegacyLeadRecord(id=8, case_handler_id=3),
        ]
        self.legacy_installments = [
            LegacyInstallmentRecord(
                lead_id=5, value=1200, value_base=1200, currency_id=1, ready_to_pay=True, due_date="2026-03-10"
            ),
            LegacyInstallmentRecord(
                lead_id=8, value=500, currency_id=1, ready_to_pay=True, due_date="2026-03-20"
            ),
        ]
        self.employees = [
            EmployeeRecord(id=1, display_name="Avi", bonuses_role="s"),
            EmployeeRecord(id=2, display_name="Ben", bonuses_role="s"),
            EmployeeRecord(id=3, display_name="Dana", bonuses_role="h"),
            EmployeeRecord(id=4, display_name="FINANCE", bonuses_role="col"),
        ]
        self.salaries = [SalaryRecord(employee_id=1, net_salary=8000, gross_salary=10000)]

    def _check(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    async def list_signed_stage_events(self, from_iso: str, to_iso: str) -> List[StageEventRecord]:
        _ = from_iso, to_iso
        self.event_calls += 1
        if self.on_events is not None:
            self.on_events()
        self._check("events")
        return self.events

    async def list_current_leads(self, lead_ids: Sequence[str]) -> List[CurrentLeadRecord]:
        return [lead for lead in self.current_leads if lead.id in lead_ids]

    async def list_legacy_leads(self, lead_ids: Sequence[int]) -> List[LegacyLeadRecord]:
        return [lead for lead in self.legacy_leads if lead.id in lead_ids]

    async def list_current_handler_leads(
        self, employee_ids: Sequence[int], display_names: Sequence[str]
    ) -> List[CurrentLeadRecord]:
        _ = employee_ids, display_names
        return []

    async def list_legacy_handler_leads(self, employee_ids: Sequence[int]) -> List[LegacyLeadRecord]:
        return [lead for lead in self.legacy_handler_leads if lead.case_handler_id in employee_ids]

    async def list_current_installments(
        self, lead_ids: Sequence[str], from_iso: str, to_iso: str
    ) -> List[CurrentInstallmentRecord]:
        _ = lead_ids, from_iso, to_iso
        return []

    async def list_legacy_installments(
        self, lead_ids: Sequence[int], from_iso: str, to_iso: str
    ) -> List[LegacyInstallmentRecord]:
        _ = from_iso, to_iso
        self._check("installments")
        return [row for row in self.legacy_installments if row.lead_id in lead_ids]

    async def list_employees(self) -> List[EmployeeRecord]:
        self._check("employees")
        return self.employees

    async def list_categories(self) -> List[CategoryRecord]:
        return []

    async def list_main_categories(self) -> List[MainCategoryRecord]:
        return []

    async def list_salaries(self, month: int, year: int, employee_ids: Sequence[int]) -> List[SalaryRecord]:
        _ = month, year
        return [salary for salary in self.salaries if salary.employee_id in employee_ids]

    async def list_role_percentages(self) -> List[RolePercentageRecord]:
        self._check("role_percentages")
        return self.role_rows

    async def upsert_role_percentages(self, percentages: Dict[str, Decimal]) -> List[RolePercentageRecord]:
        self.upserted = dict(percentages)
        stored = {row.role_name: row.percentage for row in self.role_rows}
        stored.update(percentages)
        self.role_rows = [
            RolePercentageRecord(role_name=name, percentage=value) for name, value in stored.items()
        ]
        return self.role_rows

    async def get_income_settings(self) -> Optional[IncomeSettingsRecord]:
        return self.income

    async def save_income_settings(
        self, income_amount: Decimal, due_normalized_percentage: Decimal
    ) -> IncomeSettingsRecord:
        self.income = IncomeSettingsRecord(
            id=1, income_amount=income_amount, due_normalized_percentage=due_normalized_percentage
        )
        return self.income


def _service(repository: Any = None) -> SalesContributionService:
    return SalesContributionService(repository=repository or StubSalesContributionRepository())


def _employee(report: Any, employee_id: int) -> Any:
    return next(row for row in report.employees if row.employee_id == employee_id)


def test_latest_signed_events_keeps_each_case_once() -> None:
    events = [
        StageEventRecord(id=1, date="2026-03-01T00:00:00Z", newlead_id="a"),
        StageEventRecord(id=2, date="2026-03-04T00:00:00Z", newlead_id="a"),
        StageEventRecord(id=3, date="2026-03-02T00:00:00Z", lead_id=9),
        StageEventRecord(id=4, date="2026-03-02T00:00:00Z"),
    ]
    assert latest_signed_events(events) == (["a"], [9])


def test_report_attributes_signed_and_due_amounts() -> None:
    service = _service()
    report = asyncio.run(service.get_report(FROM_DATE, TO_DATE))

    assert [row.employee_id for row in report.employees] == [1, 2, 3]
    avi, ben, dana = (_employee(report, employee_id) for employee_id in (1, 2, 3))

    assert avi.signed == Decimal("34500")
    assert avi.signed_portion == Decimal("7140")
    assert avi.has_salary is True
    assert avi.max_incentive == Decimal("999.6") - Decimal("10000")
    assert ben.signed_portion == Decimal("6660")
    assert ben.has_salary is False

    assert dana.signed == Decimal("0")
    assert dana.due == Decimal("1700")
    assert dana.due_normalized == Decimal("850")
    assert dana.due_portion == Decimal("85")
    assert dana.department == "Handlers"

    assert report.totals.case_count == 2
    assert report.totals.signed == Decimal("34500")
    assert report.totals.signed_full == Decimal("38200")
    assert report.salary_month == 3
    assert report.salary_year == 2026
    assert report.degraded is False
    assert [row.category for row in report.categories] == ["Uncategorized"]
    assert service.get_latest_report().generation == report.generation


def test_report_is_cached_per_window_and_configuration() -> None:
    repository = StubSalesContributionRepository()
    service = _service(repository)

    first = asyncio.run(service.get_report(FROM_DATE, TO_DATE))
    second = asyncio.run(service.get_report(FROM_DATE, TO_DATE))
    assert second is first
    assert repository.event_calls == 1

    asyncio.run(service.get_report(FROM_DATE, TO_DATE, refresh=True))
    assert repository.event_calls == 2

    asyncio.run(service.get_report(FROM_DATE, date(2026, 3, 15)))
    assert repository.event_calls == 3


def test_role_percentage_update_invalidates_and_recomputes() -> None:
    repository = StubSalesContributionRepository()
    service = _service(repository)
    asyncio.run(service.get_report(FROM_DATE, TO_DATE))

    entries = asyncio.run(service.update_role_percentages({"HANDLER": Decimal("20")}))

    assert repository.upserted == {"HANDLER": Decimal("20")}
    assert {entry.role_name: entry.percentage for entry in entries}["HANDLER"] == Decimal("20")
    assert repository.event_calls == 2
    latest = service.get_latest_report()
    assert _employee(latest, 3).due_portion == Decimal("170")


def test_reporting_settings_update_applies_target_income() -> None:
    repository = StubSalesContributionRepository()
    service = _service(repository)
    asyncio.run(service.get_report(FROM_DATE, TO_DATE))

    saved = asyncio.run(
        service.update_reporting_settings(
            ReportingSettings(target_income=Decimal("17250"), due_normalized_percentage=Decimal("50"))
        )
    )
    assert saved.target_income == Decimal("17250")
    latest = service.get_latest_report()
    assert latest.totals.normalization_ratio == Decimal("0.5")
    assert _employee(latest, 1).signed_portion == Decimal("3570")


def test_invalid_role_percentages_are_rejected() -> None:
    repository = StubSalesContributionRepository()
    service = _service(repository)

    with pytest.raises(BadRequestError) as excinfo:
        asyncio.run(service.update_role_percentages({"CLOSER": Decimal("150"), "BOGUS": Decimal("5")}))

    assert set(excinfo.value.details["roles"]) == {"CLOSER", "BOGUS"}
    assert repository.upserted is None


def test_failed_installments_degrade_the_report() -> None:
    repository = StubSalesContributionRepository()
    repository.failures["installments"] = RuntimeError("timeout")
    report = asyncio.run(_service(repository).get_report(FROM_DATE, TO_DATE))

    assert report.degraded is True
    assert "finances_paymentplanrow" in report.degraded_sources
    assert _employee(report, 3).due == Decimal("0")
    assert _employee(report, 1).signed_portion == Decimal("7140")


def test_failed_configuration_falls_back_to_defaults() -> None:
    repository = StubSalesContributionRepository()
    repository.failures["role_percentages"] = RuntimeError("timeout")
    report = asyncio.run(_service(repository).get_report(FROM_DATE, TO_DATE))

    assert report.degraded_sources == ["role_percentages"]
    assert _employee(report, 3).due_portion == Decimal("0")


def test_failed_employee_load_aborts_the_batch() -> None:
    repository = StubSalesContributionRepository()
    repository.failures["employees"] = RuntimeError("connection refused")
    service = _service(repository)

    with pytest.raises(UpstreamError):
        asyncio.run(service.get_report(FROM_DATE, TO_DATE))
    with pytest.raises(NotFoundError):
        service.get_latest_report()


def test_configuration_change_during_batch_is_not_cached() -> None:
    repository = StubSalesContributionRepository()
    service = _service(repository)
    repository.on_events = service.invalidate

    report = asyncio.run(service.get_report(FROM_DATE, TO_DATE))

    assert report.totals.case_count == 2
    assert len(service._cache) == 0


def test_stale_generation_is_not_published() -> None:
    service = _service()
    report = asyncio.run(service.get_report(FROM_DATE, TO_DATE))

    service._publish(report, 5)
    service._publish(report, 3)

    assert service.get_latest_report().generation == 5


def test_unknown_employee_is_not_found() -> None:
    service = _service()
    with pytest.raises(NotFoundError):
        asyncio.run(service.get_employee_result(99, FROM_DATE, TO_DATE))
    employee = asyncio.run(service.get_employee_result(2, FROM_DATE, TO_DATE))
    assert employee.employee_name == "Ben"
