from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from src.analytics.categories import GENERAL_BUCKET, field_bucket
from src.analytics.lead_amounts import NormalizedCase
from src.analytics.role_attribution import (
    EXPERT,
    HANDLER,
    RolePercentages,
    combination_key,
    employee_roles,
    is_handler_only,
    signed_portion_amount,
)
from src.models.sales_contribution import EmployeeRecord, SalaryRecord
from src.schemas.sales_contribution import (
    CategoryContribution,
    ContributionTotals,
    DepartmentContribution,
    DepartmentName,
    EmployeeCalculationResult,
    EmployeeContribution,
    ReportingSettings,
    RoleCombination,
)
from src.shared.amounts import ZERO

# Business multipliers applied after normalization.
CONTRIBUTION_RATE = Decimal("0.35")
SALARY_BUDGET_RATE = Decimal("0.4")

ONE = Decimal("1")
HUNDRED = Decimal("100")

DEPARTMENT_ORDER: Tuple[DepartmentName, ...] = ("Sales", "Handlers", "Partners", "Marketing", "Finance")
DEPARTMENT_ROLE_CODES: Dict[DepartmentName, frozenset] = {
    "Sales": frozenset({"s", "z", "Z", "c", "e"}),
    "Handlers": frozenset({"h", "d", "dm"}),
    "Marketing": frozenset({"ma"}),
    "Partners": frozenset({"p", "m", "pm", "se", "b", "partners", "dv"}),
    "Finance": frozenset({"col"}),
}
FINANCE_DEPARTMENT_KEYWORDS = ("finance", "collection")
# Budgets for these departments come from salary cost, not case attribution.
COST_BUDGET_DEPARTMENTS = frozenset({"Marketing", "Finance"})


@dataclass(frozen=True)
class EmployeeCalculationInput:
    employee: EmployeeRecord
    cases: Sequence[NormalizedCase]
    total_due: Decimal
    total_signed_overall: Decimal
    settings: ReportingSettings
    percentages: RolePercentages
    due_by_case: Mapping[str, Decimal]


def normalization_ratio(target_income: Optional[Decimal], total_signed: Decimal) -> Decimal:
    """Scale-down factor for signed amounts; never scales up."""
    if target_income is not None and ZERO < target_income < total_signed:
        return target_income / total_signed
    return ONE


def due_ratio(due_normalized_percentage: Optional[Decimal]) -> Decimal:
    return (due_normalized_percentage or ZERO) / HUNDRED


def calculate_employee_metrics(data: EmployeeCalculationInput) -> EmployeeCalculationResult:
    employee = data.employee
    percentages = data.percentages

    combinations: Dict[str, RoleCombination] = {}
    raw_portions: Dict[str, Decimal] = {}
    total_signed = ZERO
    total_signed_portion = ZERO

    for case in data.cases:
        roles = employee_roles(case, employee.id, employee.display_name)
        if not roles:
            continue
        handler_only = is_handler_only(roles)
        signed_amount = ZERO if handler_only else case.amount
        due_amount = data.due_by_case.get(case.case_key, ZERO) if HANDLER in roles else ZERO

        key = combination_key(roles)
        existing = combinations.get(key)
        if existing is None:
            combinations[key] = RoleCombination(
                role=key, roles=list(roles), signed_total=signed_amount, due_total=due_amount
            )
        else:
            existing.signed_total += signed_amount
            existing.due_total += due_amount

        if handler_only:
            continue
        total_signed += case.amount
        portion = signed_portion_amount(case, employee.id, employee.display_name, percentages)
        raw_portions[case.case_key] = raw_portions.get(case.case_key, ZERO) + portion
        total_signed_portion += portion

    total_due = data.total_due
    if total_due > ZERO:
        # Due comes from every case the employee handles, not only the period's signed cases.
        handler_combination = combinations.get(HANDLER)
        if handler_combination is None:
            combinations[HANDLER] = RoleCombination(
                role=HANDLER, roles=[HANDLER], signed_total=ZERO, due_total=total_due
            )
        else:
            handler_combination.due_total = total_due

    ratio = normalization_ratio(data.settings.target_income, data.total_signed_overall)
    signed_normalized = total_signed * ratio
    due_normalized = total_due * due_ratio(data.settings.due_normalized_percentage)

    # Every role share is scaled by the same ratio, never split between employees.
    # A zero or negative signed total earns no signed portion.
    if total_signed > ZERO:
        signed_portion_normalized = total_signed_portion * ratio
        case_portions = {key: portion * ratio for key, portion in raw_portions.items()}
    else:
        signed_portion_normalized = ZERO
        case_portions = {}

    has_expert_role = any(EXPERT in combination.roles for combination in combinations.values())
    due_fraction = percentages.due_fraction("HANDLER") + percentages.due_fraction("HELPER_HANDLER")
    if has_expert_role:
        # Expert draws from both the signed and the due pool.
        due_fraction += percentages.due_fraction("EXPERT")
    due_portion_normalized = due_normalized * due_fraction

    contribution = (signed_portion_normalized + due_portion_normalized) * CONTRIBUTION_RATE
    return EmployeeCalculationResult(
        employee_id=employee.id,
        signed=total_signed,
        due=total_due,
        signed_normalized=signed_normalized,
        due_normalized=due_normalized,
        signed_portion=signed_portion_normalized,
        due_portion=due_portion_normalized,
        contribution=contribution,
        salary_budget=contribution * SALARY_BUDGET_RATE,
        has_expert_role=has_expert_role,
        role_breakdown=list(combinations.values()),
        case_portions=case_portions,
    )


def batch_calculate_employee_metrics(
    inputs: Iterable[EmployeeCalculationInput],
) -> Dict[int, EmployeeCalculationResult]:
    """Run every employee in one synchronous pass before anything is published."""
    return {data.employee.id: calculate_employee_metrics(data) for data in inputs}


def department_for(employee: EmployeeRecord) -> Optional[DepartmentName]:
    role = (employee.bonuses_role or "").strip()
    for department in ("Sales", "Handlers", "Marketing", "Partners"):
        if role in DEPARTMENT_ROLE_CODES[department]:
            return department
    department_name = (employee.department_name or "").lower()
    if role in DEPARTMENT_ROLE_CODES["Finance"] or any(
        keyword in department_name for keyword in FINANCE_DEPARTMENT_KEYWORDS
    ):
        return "Finance"
    return None


def apply_salaries(
    employees: Sequence[EmployeeRecord],
    results: Mapping[int, EmployeeCalculationResult],
    salaries: Iterable[SalaryRecord],
) -> List[EmployeeContribution]:
    salary_by_employee = {salary.employee_id: salary for salary in salaries}
    rows: List[EmployeeContribution] = []
    for employee in employees:
        result = results.get(employee.id) or EmployeeCalculationResult(employee_id=employee.id)
        salary = salary_by_employee.get(employee.id)
        salary_brutto = (salary.net_salary if salary else None) or ZERO
        total_salary_cost = (salary.gross_salary if salary else None) or ZERO
        rows.append(
            EmployeeContribution(
                **result.model_dump(),
                employee_name=employee.display_name,
                department=department_for(employee),
                salary_brutto=salary_brutto,
                total_salary_cost=total_salary_cost,
                max_incentive=result.salary_budget - total_salary_cost,
                has_salary=salary is not None,
            )
        )
    return rows


def rollup_departments(rows: Iterable[EmployeeContribution]) -> List[DepartmentContribution]:
    totals: Dict[DepartmentName, DepartmentContribution] = {
        name: DepartmentContribution(department=name) for name in DEPARTMENT_ORDER
    }
    for row in rows:
        if row.department is None:
            continue
        bucket = totals[row.department]
        bucket.employee_ids.append(row.employee_id)
        bucket.signed += row.signed
        bucket.signed_normalized += row.signed_normalized
        bucket.due += row.due
        bucket.due_normalized += row.due_normalized
        bucket.signed_portion += row.signed_portion
        bucket.due_portion += row.due_portion
        bucket.contribution += row.contribution
        bucket.salary_budget += row.salary_budget
        bucket.salary_brutto += row.salary_brutto
        bucket.total_salary_cost += row.total_salary_cost

    for name, bucket in totals.items():
        if name in COST_BUDGET_DEPARTMENTS:
            bucket.salary_budget = bucket.total_salary_cost
        bucket.max_incentive = bucket.salary_budget - bucket.total_salary_cost
    return [totals[name] for name in DEPARTMENT_ORDER]


def rollup_categories(
    cases: Sequence[NormalizedCase],
    results: Mapping[int, EmployeeCalculationResult],
    due_by_case: Mapping[str, Decimal],
    settings: ReportingSettings,
    total_signed_overall: Decimal,
    separate_categories: Sequence[str],
    known_main_categories: Iterable[str] = (),
) -> List[CategoryContribution]:
    """Field view: the period's cases grouped by main category.

    Main categories outside ``separate_categories`` fold into "General"; General is
    listed whenever any known main category would fold into it.
    """
    ratio = normalization_ratio(settings.target_income, total_signed_overall)
    due_pct = due_ratio(settings.due_normalized_percentage)

    portions_by_case: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for result in results.values():
        for case_key, portion in result.case_portions.items():
            portions_by_case[case_key] += portion

    buckets: Dict[str, CategoryContribution] = {}
    for case in cases:
        name = field_bucket(case.main_category, separate_categories)
        bucket = buckets.get(name)
        if bucket is None:
            bucket = buckets[name] = CategoryContribution(category=name)
        if case.main_category not in bucket.main_categories:
            bucket.main_categories.append(case.main_category)
        bucket.case_count += 1
        bucket.signed += case.amount
        bucket.signed_portion += portions_by_case.get(case.case_key, ZERO)
        bucket.due += due_by_case.get(case.case_key, ZERO)

    if GENERAL_BUCKET not in buckets and any(
        field_bucket(name, separate_categories) == GENERAL_BUCKET for name in known_main_categories
    ):
        buckets[GENERAL_BUCKET] = CategoryContribution(category=GENERAL_BUCKET)

    for bucket in buckets.values():
        bucket.main_categories.sort()
        bucket.signed_normalized = bucket.signed * ratio
        bucket.due_normalized = bucket.due * due_pct
        bucket.salary_budget = bucket.signed_portion * SALARY_BUDGET_RATE

    ordered = [buckets[name] for name in separate_categories if name in buckets]
    if GENERAL_BUCKET in buckets and GENERAL_BUCKET not in separate_categories:
        ordered.append(buckets[GENERAL_BUCKET])
    return ordered


def calculate_totals(
    cases: Sequence[NormalizedCase],
    total_due: Decimal,
    settings: ReportingSettings,
    employee_count: int,
) -> ContributionTotals:
    signed = sum((case.amount for case in cases), ZERO)
    return ContributionTotals(
        signed_full=sum((case.full_amount for case in cases), ZERO),
        signed=signed,
        due=total_due,
        normalization_ratio=normalization_ratio(settings.target_income, signed),
        target_income=settings.target_income,
        due_normalized_percentage=settings.due_normalized_percentage,
        case_count=len(cases),
        employee_count=employee_count,
    )
