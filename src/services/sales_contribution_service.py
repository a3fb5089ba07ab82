from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, NamedTuple, Optional, Set, Tuple

from src.analytics.categories import build_category_lookup, resolve_main_category
from src.analytics.contribution import (
    EmployeeCalculationInput,
    apply_salaries,
    batch_calculate_employee_metrics,
    calculate_totals,
    rollup_categories,
    rollup_departments,
)
from src.analytics.currency import Converter, convert_to_base
from src.analytics.lead_amounts import LeadRecord, NormalizedCase, normalize_case
from src.analytics.payment_plans import aggregate_current_due, aggregate_legacy_due, sum_due_for_cases
from src.analytics.role_attribution import ROLE_PERCENTAGE_NAMES, RolePercentages
from src.core.config import get_excluded_employee_names, get_separate_main_categories, get_settings
from src.core.errors import BadRequestError, NotFoundError, UpstreamError
from src.models.sales_contribution import (
    CategoryRecord,
    CurrentInstallmentRecord,
    CurrentLeadRecord,
    EmployeeRecord,
    LegacyInstallmentRecord,
    LegacyLeadRecord,
    MainCategoryRecord,
    SalaryRecord,
    StageEventRecord,
)
from src.repositories.sales_contribution_repository import SalesContributionRepository
from src.schemas.sales_contribution import (
    EmployeeContribution,
    ReportingSettings,
    RolePercentageEntry,
    SalesContributionReport,
)
from src.shared.amounts import ZERO
from src.shared.time import day_bounds_utc, salary_period

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class ReportCacheKey(NamedTuple):
    from_date: date
    to_date: date
    target_income: Decimal
    due_normalized_percentage: Decimal
    role_percentages: Tuple[Tuple[str, Decimal], ...]


@dataclass
class BatchInputs:
    """Everything one batch run reads from the record store."""

    employees: List[EmployeeRecord]
    categories: List[CategoryRecord] = field(default_factory=list)
    main_categories: List[MainCategoryRecord] = field(default_factory=list)
    current_leads: List[CurrentLeadRecord] = field(default_factory=list)
    legacy_leads: List[LegacyLeadRecord] = field(default_factory=list)
    current_handler_leads: List[CurrentLeadRecord] = field(default_factory=list)
    legacy_handler_leads: List[LegacyLeadRecord] = field(default_factory=list)
    current_installments: List[CurrentInstallmentRecord] = field(default_factory=list)
    legacy_installments: List[LegacyInstallmentRecord] = field(default_factory=list)
    salaries: List[SalaryRecord] = field(default_factory=list)
    degraded_sources: List[str] = field(default_factory=list)


def latest_signed_events(events: List[StageEventRecord]) -> Tuple[List[str], List[int]]:
    """Case ids with a signed transition, keeping each case once."""
    latest: Dict[Tuple[str, Any], StageEventRecord] = {}
    for event in events:
        if event.newlead_id:
            key: Tuple[str, Any] = ("current", event.newlead_id)
        elif event.lead_id is not None:
            key = ("legacy", event.lead_id)
        else:
            continue
        existing = latest.get(key)
        if existing is None or (event.date and (existing.date is None or event.date > existing.date)):
            latest[key] = event
    current_ids = sorted(str(case_id) for kind, case_id in latest if kind == "current")
    legacy_ids = sorted(int(case_id) for kind, case_id in latest if kind == "legacy")
    return current_ids, legacy_ids


class SalesContributionService:
    def __init__(
        self,
        repository: SalesContributionRepository,
        converter: Converter = convert_to_base,
    ) -> None:
        self.repository = repository
        self.settings = get_settings()
        self.convert = converter
        self._cache: "OrderedDict[ReportCacheKey, SalesContributionReport]" = OrderedDict()
        self._generation = 0
        self._config_version = 0
        self._latest: Optional[SalesContributionReport] = None

    # Reports

    async def get_report(
        self, from_date: date, to_date: date, refresh: bool = False
    ) -> SalesContributionReport:
        self._generation += 1
        generation = self._generation
        config_version = self._config_version

        percentages, reporting, config_degraded = await self._load_configuration()
        key = ReportCacheKey(
            from_date=from_date,
            to_date=to_date,
            target_income=reporting.target_income,
            due_normalized_percentage=reporting.due_normalized_percentage,
            role_percentages=percentages.fingerprint,
        )
        cached = None if refresh else self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self._publish(cached, generation)
            return cached

        inputs = await self._fetch_inputs(from_date, to_date)
        inputs.degraded_sources[:0] = config_degraded
        report = self.calculate_report(
            inputs,
            from_date=from_date,
            to_date=to_date,
            percentages=percentages,
            reporting=reporting,
            generation=generation,
        )

        if config_version == self._config_version:
            self._store(key, report)
        else:
            logger.info("Configuration changed during batch %s; result not cached", generation)
        self._publish(report, generation)
        return report

    async def get_employee_result(
        self, employee_id: int, from_date: date, to_date: date
    ) -> EmployeeContribution:
        report = await self.get_report(from_date, to_date)
        for employee in report.employees:
            if employee.employee_id == employee_id:
                return employee
        raise NotFoundError(f"Employee {employee_id} is not part of the report")

    def get_latest_report(self) -> SalesContributionReport:
        if self._latest is None:
            raise NotFoundError("No report has been computed yet")
        return self._latest

    def _publish(self, report: SalesContributionReport, generation: int) -> None:
        if self._latest is not None and self._latest.generation > generation:
            logger.info(
                "Discarding stale batch %s; batch %s already published",
                generation,
                self._latest.generation,
            )
            return
        self._latest = report.model_copy(update={"generation": generation})

    def _store(self, key: ReportCacheKey, report: SalesContributionReport) -> None:
        self._cache[key] = report
        self._cache.move_to_end(key)
        while len(self._cache) > max(self.settings.result_cache_size, 1):
            self._cache.popitem(last=False)

    def invalidate(self) -> None:
        self._config_version += 1
        self._cache.clear()

    # Configuration

    async def _load_configuration(self) -> Tuple[RolePercentages, ReportingSettings, List[str]]:
        role_rows, income = await asyncio.gather(
            self.repository.list_role_percentages(),
            self.repository.get_income_settings(),
            return_exceptions=True,
        )
        degraded: List[str] = []
        if isinstance(role_rows, Exception):
            logger.warning("Role percentages unavailable, using defaults: %s", role_rows)
            degraded.append("role_percentages")
            role_rows = []
        if isinstance(income, Exception):
            logger.warning("Income settings unavailable, normalization disabled: %s", income)
            degraded.append("sales_contribution_income")
            income = None

        percentages = RolePercentages(
            {row.role_name: row.percentage for row in role_rows if row.percentage is not None},
            version=self._config_version,
        )
        reporting = ReportingSettings(
            target_income=(income.income_amount if income else None) or ZERO,
            due_normalized_percentage=(income.due_normalized_percentage if income else None) or ZERO,
        )
        return percentages, reporting, degraded

    async def get_role_percentages(self) -> List[RolePercentageEntry]:
        percentages, _, _ = await self._load_configuration()
        return [
            RolePercentageEntry(role_name=name, percentage=value)
            for name, value in percentages.effective().items()
        ]

    async def update_role_percentages(self, updates: Dict[str, Decimal]) -> List[RolePercentageEntry]:
        if not updates:
            raise BadRequestError("At least one role percentage is required")
        invalid: Dict[str, str] = {}
        for name, value in updates.items():
            if name not in ROLE_PERCENTAGE_NAMES:
                invalid[name] = "unknown role"
            elif not value.is_finite() or value < ZERO or value > HUNDRED:
                invalid[name] = "percentage must be between 0 and 100"
        if invalid:
            raise BadRequestError("Invalid role percentages", details={"roles": invalid})

        await self.repository.upsert_role_percentages(updates)
        logger.info("Role percentages updated: %s", sorted(updates))
        await self._after_configuration_change()
        return await self.get_role_percentages()

    async def get_reporting_settings(self) -> ReportingSettings:
        _, reporting, _ = await self._load_configuration()
        return reporting

    async def update_reporting_settings(self, reporting: ReportingSettings) -> ReportingSettings:
        income = reporting.target_income
        due_pct = reporting.due_normalized_percentage
        if not income.is_finite() or income < ZERO:
            raise BadRequestError("target_income must be zero or positive")
        if not due_pct.is_finite() or due_pct < ZERO or due_pct > HUNDRED:
            raise BadRequestError("due_normalized_percentage must be between 0 and 100")

        await self.repository.save_income_settings(income, due_pct)
        logger.info("Reporting settings updated: income=%s due_pct=%s", income, due_pct)
        await self._after_configuration_change()
        return ReportingSettings(target_income=income, due_normalized_percentage=due_pct)

    async def _after_configuration_change(self) -> None:
        self.invalidate()
        latest = self._latest
        if latest is None:
            return
        # The published snapshot was computed with the old configuration; rebuild it in full.
        try:
            await self.get_report(latest.from_date, latest.to_date, refresh=True)
        except UpstreamError as exc:
            logger.warning("Recompute after configuration change failed: %s", exc.message)

    # Fetch phase

    async def _guarded(self, name: str, awaitable: Awaitable[Any], degraded: List[str], default: Any) -> Any:
        try:
            return await awaitable
        except Exception as exc:  # any failure of a degradable source
            logger.warning("Sub-query %s failed, treating as empty: %s", name, exc)
            degraded.append(name)
            return default

    async def _fatal(self, name: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            logger.error("Batch aborted, %s unavailable: %s", name, exc)
            raise UpstreamError(f"Unable to load {name}") from exc

    async def _fetch_inputs(self, from_date: date, to_date: date) -> BatchInputs:
        from_iso, to_iso = day_bounds_utc(from_date, to_date)
        degraded: List[str] = []

        categories, main_categories, events, employees = await asyncio.gather(
            self._guarded("misc_category", self.repository.list_categories(), degraded, []),
            self._guarded("misc_maincategory", self.repository.list_main_categories(), degraded, []),
            self._fatal("signed cases", self.repository.list_signed_stage_events(from_iso, to_iso)),
            self._fatal("employees", self.repository.list_employees()),
        )
        excluded = get_excluded_employee_names()
        employees = [employee for employee in employees if employee.display_name not in excluded]
        current_ids, legacy_ids = latest_signed_events(events)
        employee_ids = [employee.id for employee in employees]
        employee_names = [employee.display_name for employee in employees]

        current_leads, legacy_leads, current_handler, legacy_handler = await asyncio.gather(
            self._fatal("signed cases", self.repository.list_current_leads(current_ids)),
            self._fatal("signed cases", self.repository.list_legacy_leads(legacy_ids)),
            self._guarded(
                "handler cases (current)",
                self.repository.list_current_handler_leads(employee_ids, employee_names),
                degraded,
                [],
            ),
            self._guarded(
                "handler cases (legacy)",
                self.repository.list_legacy_handler_leads(employee_ids),
                degraded,
                [],
            ),
        )

        due_current_ids = sorted({*current_ids, *(lead.id for lead in current_handler)})
        due_legacy_ids = sorted({*legacy_ids, *(lead.id for lead in legacy_handler)})
        month, year = salary_period(to_date)
        current_installments, legacy_installments, salaries = await asyncio.gather(
            self._guarded(
                "payment_plans",
                self.repository.list_current_installments(due_current_ids, from_iso, to_iso),
                degraded,
                [],
            ),
            self._guarded(
                "finances_paymentplanrow",
                self.repository.list_legacy_installments(due_legacy_ids, from_iso, to_iso),
                degraded,
                [],
            ),
            self._guarded(
                "employee_salary",
                self.repository.list_salaries(month, year, employee_ids),
                degraded,
                [],
            ),
        )
        logger.info(
            "Batch inputs loaded: %s employees, %s signed cases, %s handler cases",
            len(employees),
            len(current_leads) + len(legacy_leads),
            len(current_handler) + len(legacy_handler),
        )
        return BatchInputs(
            employees=employees,
            categories=categories,
            main_categories=main_categories,
            current_leads=current_leads,
            legacy_leads=legacy_leads,
            current_handler_leads=current_handler,
            legacy_handler_leads=legacy_handler,
            current_installments=current_installments,
            legacy_installments=legacy_installments,
            salaries=salaries,
            degraded_sources=degraded,
        )

    # Calculation phase: synchronous, no I/O.

    def calculate_report(
        self,
        inputs: BatchInputs,
        *,
        from_date: date,
        to_date: date,
        percentages: RolePercentages,
        reporting: ReportingSettings,
        generation: int = 0,
    ) -> SalesContributionReport:
        lookup = build_category_lookup(inputs.categories, inputs.main_categories)
        categories_by_id = {
            category.id: category for category in inputs.categories if category.id is not None
        }

        def resolve_category(lead: LeadRecord) -> str:
            return resolve_main_category(
                lead.category, lead.category_id, lead.misc_category, categories_by_id, lookup
            )

        signed_leads: List[LeadRecord] = [*inputs.current_leads, *inputs.legacy_leads]
        cases = sorted(
            (normalize_case(lead, self.convert, resolve_category) for lead in signed_leads),
            key=lambda case: case.case_key,
        )
        window = (from_date, to_date)
        due_by_case = {
            **aggregate_current_due(inputs.current_installments, self.convert, window),
            **aggregate_legacy_due(inputs.legacy_installments, self.convert, window),
        }

        handler_keys = self._handler_case_keys(
            inputs.employees,
            [
                *cases,
                *(normalize_case(lead, self.convert) for lead in inputs.current_handler_leads),
                *(normalize_case(lead, self.convert) for lead in inputs.legacy_handler_leads),
            ],
        )
        total_signed_overall = sum((case.amount for case in cases), ZERO)
        results = batch_calculate_employee_metrics(
            EmployeeCalculationInput(
                employee=employee,
                cases=cases,
                total_due=sum_due_for_cases(due_by_case, handler_keys.get(employee.id, set())),
                total_signed_overall=total_signed_overall,
                settings=reporting,
                percentages=percentages,
                due_by_case=due_by_case,
            )
            for employee in inputs.employees
        )
        employees = apply_salaries(inputs.employees, results, inputs.salaries)
        categories = rollup_categories(
            cases,
            results,
            due_by_case,
            reporting,
            total_signed_overall,
            get_separate_main_categories(),
            known_main_categories=[main.name for main in inputs.main_categories if main.name],
        )
        month, year = salary_period(to_date)
        logger.info(
            "Batch %s calculated: %s employees, %s cases, degraded=%s",
            generation,
            len(employees),
            len(cases),
            bool(inputs.degraded_sources),
        )
        return SalesContributionReport(
            from_date=from_date,
            to_date=to_date,
            salary_month=month,
            salary_year=year,
            generation=generation,
            degraded=bool(inputs.degraded_sources),
            degraded_sources=list(dict.fromkeys(inputs.degraded_sources)),
            totals=calculate_totals(
                cases, sum(due_by_case.values(), ZERO), reporting, len(employees)
            ),
            employees=employees,
            departments=rollup_departments(employees),
            categories=categories,
        )

    @staticmethod
    def _handler_case_keys(
        employees: List[EmployeeRecord], cases: List[NormalizedCase]
    ) -> Dict[int, Set[str]]:
        by_id: Dict[int, Set[str]] = defaultdict(set)
        by_name: Dict[str, Set[str]] = defaultdict(set)
        for case in cases:
            if case.handler.by_id is not None:
                by_id[case.handler.by_id].add(case.case_key)
            if case.handler.by_name is not None:
                by_name[case.handler.by_name.lower()].add(case.case_key)
        return {
            employee.id: by_id.get(employee.id, set())
            | by_name.get(employee.display_name.strip().lower(), set())
            for employee in employees
        }
