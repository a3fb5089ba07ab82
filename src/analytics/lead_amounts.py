from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional, Union

from src.analytics.categories import UNCATEGORIZED
from src.analytics.currency import (
    BASE_CURRENCY_ID,
    Converter,
    build_currency_meta,
    convert_to_base,
)
from src.models.sales_contribution import CurrentLeadRecord, LegacyLeadRecord
from src.shared.amounts import ZERO

LeadRecord = Union[CurrentLeadRecord, LegacyLeadRecord]
CategoryResolver = Callable[[LeadRecord], str]


@dataclass(frozen=True)
class RoleAssignment:
    """Who holds a role slot on a case, by display name or by employee id."""

    by_name: Optional[str] = None
    by_id: Optional[int] = None

    @classmethod
    def from_value(cls, value: Any) -> "RoleAssignment":
        # Role columns hold a name, a number, or a number stored as text.
        if value is None or isinstance(value, bool):
            return cls()
        if isinstance(value, int):
            return cls(by_id=value)
        if isinstance(value, float):
            return cls(by_id=int(value)) if value.is_integer() else cls()
        text = str(value).strip()
        if not text:
            return cls()
        if text.lstrip("-").isdigit() and str(int(text)) == text:
            return cls(by_id=int(text))
        return cls(by_name=text)

    @property
    def assigned(self) -> bool:
        return self.by_name is not None or self.by_id is not None

    def matches(self, employee_id: int, employee_name: Optional[str]) -> bool:
        if self.by_id is not None and self.by_id == employee_id:
            return True
        if self.by_name is not None and employee_name:
            return self.by_name.lower() == employee_name.strip().lower()
        return False


@dataclass(frozen=True)
class NormalizedCase:
    case_key: str
    kind: str
    display_number: str
    amount: Decimal
    full_amount: Decimal
    main_category: str = UNCATEGORIZED
    closer: RoleAssignment = field(default_factory=RoleAssignment)
    scheduler: RoleAssignment = field(default_factory=RoleAssignment)
    helper_closer: RoleAssignment = field(default_factory=RoleAssignment)
    handler: RoleAssignment = field(default_factory=RoleAssignment)
    manager: RoleAssignment = field(default_factory=RoleAssignment)
    expert: RoleAssignment = field(default_factory=RoleAssignment)

    @property
    def has_helper_closer(self) -> bool:
        return self.helper_closer.assigned


def _current_currency(lead: CurrentLeadRecord) -> str:
    return build_currency_meta(
        lead.accounting_currencies, lead.balance_currency, lead.proposal_currency
    ).code


def _current_raw_amount(lead: CurrentLeadRecord) -> Decimal:
    if lead.balance is not None and lead.balance > ZERO:
        return lead.balance
    return lead.proposal_total or ZERO


def _legacy_currency(lead: LegacyLeadRecord) -> str:
    return build_currency_meta(
        lead.accounting_currencies, lead.meeting_total_currency_id, lead.currency_id
    ).code


def _fee(lead: LeadRecord, currency: str, convert: Converter) -> Decimal:
    return convert(lead.subcontractor_fee or ZERO, currency)


def current_lead_full_amount(lead: CurrentLeadRecord, convert: Converter = convert_to_base) -> Decimal:
    return convert(_current_raw_amount(lead), _current_currency(lead))


def current_lead_amount(lead: CurrentLeadRecord, convert: Converter = convert_to_base) -> Decimal:
    """Signed value in base currency net of the subcontractor fee; may be negative."""
    currency = _current_currency(lead)
    return convert(_current_raw_amount(lead), currency) - _fee(lead, currency, convert)


def legacy_lead_full_amount(lead: LegacyLeadRecord, convert: Converter = convert_to_base) -> Decimal:
    if lead.currency_id == BASE_CURRENCY_ID:
        # total_base is already in base currency; re-deriving it would use stale rates.
        return lead.total_base or ZERO
    return convert(lead.total or ZERO, _legacy_currency(lead))


def legacy_lead_amount(lead: LegacyLeadRecord, convert: Converter = convert_to_base) -> Decimal:
    return legacy_lead_full_amount(lead, convert) - _fee(lead, _legacy_currency(lead), convert)


def _current_handler(lead: CurrentLeadRecord) -> RoleAssignment:
    text = RoleAssignment.from_value(lead.handler)
    by_id = lead.case_handler_id if lead.case_handler_id is not None else text.by_id
    return RoleAssignment(by_name=text.by_name, by_id=by_id)


def _current_manager(lead: CurrentLeadRecord) -> RoleAssignment:
    manager = RoleAssignment.from_value(lead.manager)
    if manager.assigned:
        return manager
    return RoleAssignment(by_id=lead.meeting_manager_id)


def normalize_case(
    lead: LeadRecord,
    convert: Converter = convert_to_base,
    resolve_category: Optional[CategoryResolver] = None,
) -> NormalizedCase:
    main_category = resolve_category(lead) if resolve_category else UNCATEGORIZED
    if isinstance(lead, LegacyLeadRecord):
        return NormalizedCase(
            case_key=lead.case_key,
            kind=lead.kind,
            display_number=lead.lead_number or lead.manual_id or str(lead.id),
            amount=legacy_lead_amount(lead, convert),
            full_amount=legacy_lead_full_amount(lead, convert),
            main_category=main_category,
            closer=RoleAssignment(by_id=lead.closer_id),
            scheduler=RoleAssignment(by_id=lead.meeting_scheduler_id),
            helper_closer=RoleAssignment(by_id=lead.meeting_lawyer_id),
            handler=RoleAssignment(by_id=lead.case_handler_id),
            manager=RoleAssignment(by_id=lead.meeting_manager_id),
            expert=RoleAssignment(by_id=lead.expert_id),
        )
    return NormalizedCase(
        case_key=lead.case_key,
        kind=lead.kind,
        display_number=lead.lead_number or lead.id,
        amount=current_lead_amount(lead, convert),
        full_amount=current_lead_full_amount(lead, convert),
        main_category=main_category,
        closer=RoleAssignment.from_value(lead.closer),
        scheduler=RoleAssignment.from_value(lead.scheduler),
        helper_closer=RoleAssignment.from_value(lead.helper),
        handler=_current_handler(lead),
        manager=_current_manager(lead),
        expert=RoleAssignment.from_value(lead.expert),
    )
