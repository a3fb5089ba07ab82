from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from src.core.config import get_settings
from src.core.supabase import SupabaseClient
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

T = TypeVar("T")

CATEGORY_JOIN = "misc_category!category_id(id,name,parent_id,misc_maincategory!parent_id(id,name))"

CURRENT_LEAD_SELECT = (
    "id,lead_number,balance,balance_currency,proposal_total,proposal_currency,currency_id,"
    "subcontractor_fee,category,category_id,closer,scheduler,helper,handler,case_handler_id,"
    "manager,meeting_manager_id,expert,"
    "accounting_currencies!leads_currency_id_fkey(id,name,iso_code),"
    f"{CATEGORY_JOIN}"
)
LEGACY_LEAD_SELECT = (
    "id,lead_number,manual_id,total,total_base,currency_id,meeting_total_currency_id,"
    "subcontractor_fee,category,category_id,closer_id,meeting_scheduler_id,meeting_lawyer_id,"
    "case_handler_id,meeting_manager_id,expert_id,"
    "accounting_currencies!leads_lead_currency_id_fkey(id,name,iso_code),"
    f"{CATEGORY_JOIN}"
)
CURRENT_INSTALLMENT_SELECT = "id,lead_id,value,value_vat,currency,due_date,ready_to_pay,paid,cancel_date"
LEGACY_INSTALLMENT_SELECT = (
    "id,lead_id,value,value_base,vat_value,currency_id,due_date,actual_date,ready_to_pay,cancel_date,"
    "accounting_currencies!finances_paymentplanrow_currency_id_fkey(id,name,iso_code)"
)
EMPLOYEE_SELECT = (
    "id,email,employee_id,is_active,"
    "tenants_employee!employee_id(id,display_name,bonuses_role,department_id,"
    "tenant_departement!department_id(id,name))"
)


def chunked(values: Sequence[T], size: int) -> List[List[T]]:
    size = max(size, 1)
    return [list(values[index : index + size]) for index in range(0, len(values), size)]


def _in_filter(values: Iterable[Any]) -> str:
    return f"in.({','.join(_quote(value) for value in values)})"


def _quote(value: Any) -> str:
    # PostgREST list syntax: quote anything containing reserved characters.
    text = str(value)
    if any(char in text for char in ',()" '):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _joined(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, list):
        return value[0] if value else None
    return value if isinstance(value, dict) else None


class SalesContributionRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()
        self.settings = get_settings()

    async def _select_chunked(
        self,
        table: str,
        select: str,
        column: str,
        values: Sequence[Any],
        filters: Optional[List[Tuple[str, str]]] = None,
    ) -> List[Dict[str, Any]]:
        unique = list(dict.fromkeys(value for value in values if value is not None))
        if not unique:
            return []
        pages = await asyncio.gather(
            *(
                self.client.select_all(
                    table=table,
                    select=select,
                    filters=[*(filters or []), (column, _in_filter(chunk))],
                )
                for chunk in chunked(unique, self.settings.in_filter_chunk_size)
            )
        )
        return [row for page in pages for row in page]

    async def list_signed_stage_events(self, from_iso: str, to_iso: str) -> List[StageEventRecord]:
        rows = await self.client.select_all(
            table="leads_leadstage",
            select="id,stage,date,lead_id,newlead_id",
            filters=[
                ("stage", f"eq.{self.settings.signed_stage}"),
                ("date", f"gte.{from_iso}"),
                ("date", f"lte.{to_iso}"),
            ],
            order="date.asc,id.asc",
        )
        return [StageEventRecord.model_validate(row) for row in rows]

    async def list_current_leads(self, lead_ids: Sequence[str]) -> List[CurrentLeadRecord]:
        rows = await self._select_chunked("leads", CURRENT_LEAD_SELECT, "id", lead_ids)
        return [CurrentLeadRecord.model_validate(row) for row in rows]

    async def list_legacy_leads(self, lead_ids: Sequence[int]) -> List[LegacyLeadRecord]:
        rows = await self._select_chunked("leads_lead", LEGACY_LEAD_SELECT, "id", lead_ids)
        return [LegacyLeadRecord.model_validate(row) for row in rows]

    async def list_current_handler_leads(
        self, employee_ids: Sequence[int], display_names: Sequence[str]
    ) -> List[CurrentLeadRecord]:
        # Current cases store the handler as a name and/or an id; either may be set.
        by_id, by_name = await asyncio.gather(
            self._select_chunked("leads", "id,handler,case_handler_id", "case_handler_id", employee_ids),
            self._select_chunked("leads", "id,handler,case_handler_id", "handler", display_names),
        )
        unique: Dict[str, Dict[str, Any]] = {}
        for row in [*by_id, *by_name]:
            unique[str(row["id"])] = row
        return [CurrentLeadRecord.model_validate(row) for row in unique.values()]

    async def list_legacy_handler_leads(self, employee_ids: Sequence[int]) -> List[LegacyLeadRecord]:
        rows = await self._select_chunked(
            "leads_lead", "id,case_handler_id", "case_handler_id", employee_ids
        )
        return [LegacyLeadRecord.model_validate(row) for row in rows]

    async def list_current_installments(
        self, lead_ids: Sequence[str], from_iso: str, to_iso: str
    ) -> List[CurrentInstallmentRecord]:
        rows = await self._select_chunked(
            "payment_plans",
            CURRENT_INSTALLMENT_SELECT,
            "lead_id",
            lead_ids,
            filters=[
                ("ready_to_pay", "eq.true"),
                ("paid", "eq.false"),
                ("cancel_date", "is.null"),
                ("due_date", f"gte.{from_iso}"),
                ("due_date", f"lte.{to_iso}"),
            ],
        )
        return [CurrentInstallmentRecord.model_validate(row) for row in rows]

    async def list_legacy_installments(
        self, lead_ids: Sequence[int], from_iso: str, to_iso: str
    ) -> List[LegacyInstallmentRecord]:
        rows = await self._select_chunked(
            "finances_paymentplanrow",
            LEGACY_INSTALLMENT_SELECT,
            "lead_id",
            lead_ids,
            filters=[
                ("ready_to_pay", "eq.true"),
                ("actual_date", "is.null"),
                ("cancel_date", "is.null"),
                ("due_date", f"gte.{from_iso}"),
                ("due_date", f"lte.{to_iso}"),
            ],
        )
        return [LegacyInstallmentRecord.model_validate(row) for row in rows]

    async def list_employees(self) -> List[EmployeeRecord]:
        rows = await self.client.select_all(
            table="users",
            select=EMPLOYEE_SELECT,
            filters=[("is_active", "eq.true"), ("employee_id", "not.is.null")],
            order="id.asc",
        )
        employees: Dict[int, EmployeeRecord] = {}
        for row in rows:
            employee = _joined(row.get("tenants_employee"))
            if not employee or not row.get("email") or not employee.get("display_name"):
                continue
            department = _joined(employee.get("tenant_departement"))
            record = EmployeeRecord(
                id=employee["id"],
                display_name=employee["display_name"],
                bonuses_role=employee.get("bonuses_role"),
                department_name=department.get("name") if department else None,
            )
            employees.setdefault(record.id, record)
        return list(employees.values())

    async def list_categories(self) -> List[CategoryRecord]:
        rows = await self.client.select_all(
            table="misc_category",
            select="id,name,parent_id,misc_maincategory!parent_id(id,name)",
            order="name.asc",
        )
        return [CategoryRecord.model_validate(row) for row in rows]

    async def list_main_categories(self) -> List[MainCategoryRecord]:
        rows = await self.client.select_all(
            table="misc_maincategory",
            select="id,name",
            order="name.asc",
        )
        return [MainCategoryRecord.model_validate(row) for row in rows]

    async def list_role_percentages(self) -> List[RolePercentageRecord]:
        rows, _ = await self.client.select(
            table="role_percentages",
            select="role_name,percentage",
            order="role_name.asc",
        )
        return [RolePercentageRecord.model_validate(row) for row in rows]

    async def upsert_role_percentages(self, percentages: Dict[str, Decimal]) -> List[RolePercentageRecord]:
        if not percentages:
            return []
        now = datetime.now(timezone.utc).isoformat()
        inserted = await self.client.insert(
            table="role_percentages",
            payload=[
                {"role_name": name, "percentage": float(value), "updated_at": now}
                for name, value in sorted(percentages.items())
            ],
            upsert=True,
            on_conflict="role_name",
        )
        return [RolePercentageRecord.model_validate(row) for row in inserted]

    async def get_income_settings(self) -> Optional[IncomeSettingsRecord]:
        rows, _ = await self.client.select(
            table="sales_contribution_income",
            select="id,income_amount,due_normalized_percentage,updated_at",
            order="updated_at.desc",
            limit=1,
        )
        if not rows:
            return None
        return IncomeSettingsRecord.model_validate(rows[0])

    async def save_income_settings(
        self, income_amount: Decimal, due_normalized_percentage: Decimal
    ) -> IncomeSettingsRecord:
        payload = {
            "income_amount": float(income_amount),
            "due_normalized_percentage": float(due_normalized_percentage),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        existing = await self.get_income_settings()
        if existing is not None and existing.id is not None:
            rows = await self.client.update(
                table="sales_contribution_income",
                payload=payload,
                filters=[("id", f"eq.{existing.id}")],
            )
        else:
            rows = await self.client.insert(table="sales_contribution_income", payload=payload)
        return IncomeSettingsRecord.model_validate(rows[0] if rows else payload)

    async def list_salaries(self, month: int, year: int, employee_ids: Sequence[int]) -> List[SalaryRecord]:
        rows = await self._select_chunked(
            "employee_salary",
            "employee_id,net_salary,gross_salary,salary_month,salary_year",
            "employee_id",
            employee_ids,
            filters=[("salary_month", f"eq.{month}"), ("salary_year", f"eq.{year}")],
        )
        return [SalaryRecord.model_validate(row) for row in rows]
