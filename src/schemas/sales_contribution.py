from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import Field, field_validator

from src.shared.base import BaseSchema, Money

DepartmentName = Literal["Sales", "Handlers", "Partners", "Marketing", "Finance"]
ReportView = Literal["department", "field"]

ZERO = Decimal("0")


class RoleCombination(BaseSchema):
    role: str
    roles: List[str]
    signed_total: Money = ZERO
    due_total: Money = ZERO


class EmployeeCalculationResult(BaseSchema):
    employee_id: int
    signed: Money = ZERO
    due: Money = ZERO
    signed_normalized: Money = ZERO
    due_normalized: Money = ZERO
    signed_portion: Money = ZERO
    due_portion: Money = ZERO
    contribution: Money = ZERO
    salary_budget: Money = ZERO
    has_expert_role: bool = False
    role_breakdown: List[RoleCombination] = Field(default_factory=list)
    # Normalised signed portion per case key; feeds the field view only.
    case_portions: Dict[str, Decimal] = Field(default_factory=dict, exclude=True)


class EmployeeContribution(EmployeeCalculationResult):
    employee_name: str
    department: Optional[DepartmentName] = None
    salary_brutto: Money = ZERO
    total_salary_cost: Money = ZERO
    max_incentive: Money = ZERO
    has_salary: bool = False


class DepartmentContribution(BaseSchema):
    department: DepartmentName
    employee_ids: List[int] = Field(default_factory=list)
    signed: Money = ZERO
    signed_normalized: Money = ZERO
    due: Money = ZERO
    due_normalized: Money = ZERO
    signed_portion: Money = ZERO
    due_portion: Money = ZERO
    contribution: Money = ZERO
    salary_budget: Money = ZERO
    salary_brutto: Money = ZERO
    total_salary_cost: Money = ZERO
    max_incentive: Money = ZERO


class CategoryContribution(BaseSchema):
    category: str
    main_categories: List[str] = Field(default_factory=list)
    case_count: int = 0
    signed: Money = ZERO
    signed_normalized: Money = ZERO
    signed_portion: Money = ZERO
    due: Money = ZERO
    due_normalized: Money = ZERO
    salary_budget: Money = ZERO


class ContributionTotals(BaseSchema):
    signed_full: Money = ZERO
    signed: Money = ZERO
    due: Money = ZERO
    normalization_ratio: Decimal = Decimal("1")
    target_income: Money = ZERO
    due_normalized_percentage: Decimal = ZERO
    case_count: int = 0
    employee_count: int = 0


class SalesContributionReport(BaseSchema):
    from_date: date
    to_date: date
    salary_month: int
    salary_year: int
    generation: int
    degraded: bool = False
    degraded_sources: List[str] = Field(default_factory=list)
    totals: ContributionTotals
    employees: List[EmployeeContribution] = Field(default_factory=list)
    departments: List[DepartmentContribution] = Field(default_factory=list)
    categories: List[CategoryContribution] = Field(default_factory=list)


class RolePercentageEntry(BaseSchema):
    role_name: str
    percentage: Decimal


class RolePercentagesUpdateRequest(BaseSchema):
    percentages: Dict[str, Decimal]

    @field_validator("percentages")
    @classmethod
    def _normalise_names(cls, value: Dict[str, Decimal]) -> Dict[str, Decimal]:
        normalised: Dict[str, Decimal] = {}
        for name, percentage in value.items():
            key = name.strip().upper()
            if key in normalised:
                raise ValueError(f"duplicate role name after normalisation: {key}")
            normalised[key] = percentage
        return normalised


class ReportingSettings(BaseSchema):
    target_income: Money = ZERO
    due_normalized_percentage: Decimal = ZERO
