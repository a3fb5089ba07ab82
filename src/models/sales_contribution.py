from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from src.shared.amounts import parse_numeric_amount
from src.shared.time import parse_timestamp


def _amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return parse_numeric_amount(value)


def _first_joined(value: Any) -> Any:
    # PostgREST renders a to-one embed as an object, but a misdeclared FK yields a list.
    if isinstance(value, list):
        return value[0] if value else None
    return value


Amount = Annotated[Optional[Decimal], BeforeValidator(_amount)]
Timestamp = Annotated[Optional[datetime], BeforeValidator(parse_timestamp)]
RoleValue = Optional[Union[int, str]]


class RecordModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CurrencyRecord(RecordModel):
    id: Optional[int] = None
    iso_code: Optional[str] = None
    name: Optional[str] = None


class MainCategoryRecord(RecordModel):
    id: Optional[int] = None
    name: Optional[str] = None


class CategoryRecord(RecordModel):
    id: Optional[int] = None
    name: Optional[str] = None
    parent_id: Optional[int] = None
    main_category: Annotated[Optional[MainCategoryRecord], BeforeValidator(_first_joined)] = Field(
        default=None, alias="misc_maincategory"
    )


class StageEventRecord(RecordModel):
    id: Optional[int] = None
    stage: Optional[int] = None
    date: Timestamp = None
    lead_id: Optional[int] = None
    newlead_id: Optional[str] = None


class CurrentLeadRecord(RecordModel):
    kind: Literal["current"] = "current"
    id: str
    lead_number: Optional[str] = None
    balance: Amount = None
    balance_currency: Optional[str] = None
    proposal_total: Amount = None
    proposal_currency: Optional[str] = None
    currency_id: Optional[int] = None
    subcontractor_fee: Amount = None
    accounting_currencies: Annotated[Optional[CurrencyRecord], BeforeValidator(_first_joined)] = None
    category: Optional[str] = None
    category_id: Optional[int] = None
    misc_category: Annotated[Optional[CategoryRecord], BeforeValidator(_first_joined)] = None
    closer: RoleValue = None
    scheduler: RoleValue = None
    helper: RoleValue = None
    handler: RoleValue = None
    case_handler_id: Optional[int] = None
    manager: RoleValue = None
    meeting_manager_id: Optional[int] = None
    expert: RoleValue = None

    @field_validator("id", "lead_number", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @property
    def case_key(self) -> str:
        return f"current:{self.id}"


class LegacyLeadRecord(RecordModel):
    kind: Literal["legacy"] = "legacy"
    id: int
    lead_number: Optional[str] = None
    manual_id: Optional[str] = None
    total: Amount = None
    total_base: Amount = None
    currency_id: Optional[int] = None
    meeting_total_currency_id: Optional[int] = None
    subcontractor_fee: Amount = None
    accounting_currencies: Annotated[Optional[CurrencyRecord], BeforeValidator(_first_joined)] = None
    category: Optional[str] = None
    category_id: Optional[int] = None
    misc_category: Annotated[Optional[CategoryRecord], BeforeValidator(_first_joined)] = None
    closer_id: Optional[int] = None
    meeting_scheduler_id: Optional[int] = None
    meeting_lawyer_id: Optional[int] = None
    case_handler_id: Optional[int] = None
    meeting_manager_id: Optional[int] = None
    expert_id: Optional[int] = None

    @field_validator("lead_number", "manual_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @property
    def case_key(self) -> str:
        return f"legacy:{self.id}"


CaseRecord = Annotated[Union[CurrentLeadRecord, LegacyLeadRecord], Field(discriminator="kind")]


class CurrentInstallmentRecord(RecordModel):
    id: Optional[int] = None
    lead_id: str
    value: Amount = None
    value_vat: Amount = None
    currency: Optional[str] = None
    due_date: Timestamp = None
    ready_to_pay: Optional[bool] = None
    paid: Optional[bool] = None
    cancel_date: Timestamp = None

    @field_validator("lead_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @property
    def case_key(self) -> str:
        return f"current:{self.lead_id}"


class LegacyInstallmentRecord(RecordModel):
    id: Optional[int] = None
    lead_id: int
    value: Amount = None
    value_base: Amount = None
    vat_value: Amount = None
    currency_id: Optional[int] = None
    accounting_currencies: Annotated[Optional[CurrencyRecord], BeforeValidator(_first_joined)] = None
    due_date: Timestamp = None
    actual_date: Timestamp = None
    ready_to_pay: Optional[bool] = None
    cancel_date: Timestamp = None

    @property
    def case_key(self) -> str:
        return f"legacy:{self.lead_id}"


class EmployeeRecord(RecordModel):
    id: int
    display_name: str
    bonuses_role: Optional[str] = None
    department_name: Optional[str] = None


class SalaryRecord(RecordModel):
    employee_id: int
    net_salary: Amount = None
    gross_salary: Amount = None
    salary_month: Optional[int] = None
    salary_year: Optional[int] = None


class RolePercentageRecord(RecordModel):
    role_name: str
    percentage: Amount = None


class IncomeSettingsRecord(RecordModel):
    id: Optional[int] = None
    income_amount: Amount = None
    due_normalized_percentage: Amount = None
    updated_at: Timestamp = None
