from __future__ import annotations

from decimal import Decimal

from src.analytics.lead_amounts import (
    RoleAssignment,
    current_lead_amount,
    current_lead_full_amount,
    legacy_lead_amount,
    legacy_lead_full_amount,
    normalize_case,
)
from src.models.sales_contribution import CurrencyRecord, CurrentLeadRecord, LegacyLeadRecord


def test_current_lead_amount_converts_and_subtracts_fee() -> None:
    lead = CurrentLeadRecord(
        id="a",
        balance="10000",
        balance_currency="USD",
        subcontractor_fee=1000,
        closer=1,
        helper=2,
    )
    assert current_lead_full_amount(lead) == Decimal("37000")
    assert current_lead_amount(lead) == Decimal("33300")


def test_current_lead_falls_back_to_proposal_total() -> None:
    lead = CurrentLeadRecord(
        id="b",
        balance=0,
        proposal_total="2,500",
        proposal_currency="€",
    )
    assert current_lead_amount(lead) == Decimal("10000")


def test_current_lead_amount_may_go_negative() -> None:
    lead = CurrentLeadRecord(id="c", balance=100, balance_currency="NIS", subcontractor_fee=400)
    assert current_lead_amount(lead) == Decimal("-300")


def test_legacy_base_currency_uses_stored_base_total() -> None:
    lead = LegacyLeadRecord(id=5, total=999, total_base=1200, currency_id=1, subcontractor_fee=100)
    assert legacy_lead_full_amount(lead) == Decimal("1200")
    assert legacy_lead_amount(lead) == Decimal("1100")


def test_legacy_foreign_currency_converts_total() -> None:
    lead = LegacyLeadRecord(
        id=6,
        total=100,
        total_base=999,
        currency_id=3,
        accounting_currencies=CurrencyRecord(id=3, iso_code="USD"),
    )
    assert legacy_lead_amount(lead) == Decimal("370")


def test_role_assignment_from_value() -> None:
    assert RoleAssignment.from_value(7) == RoleAssignment(by_id=7)
    assert RoleAssignment.from_value("12") == RoleAssignment(by_id=12)
    assert RoleAssignment.from_value("012") == RoleAssignment(by_name="012")
    assert RoleAssignment.from_value(" Dana ") == RoleAssignment(by_name="Dana")
    assert not RoleAssignment.from_value("").assigned
    assert not RoleAssignment.from_value(None).assigned


def test_role_assignment_matches_by_id_or_name() -> None:
    assert RoleAssignment(by_id=3).matches(3, "Dana")
    assert RoleAssignment(by_name="dana").matches(9, " Dana ")
    assert not RoleAssignment(by_name="Dana").matches(9, None)
    assert not RoleAssignment().matches(3, "Dana")


def test_normalize_current_case_slots() -> None:
    lead = CurrentLeadRecord(
        id="d",
        lead_number="L-100",
        balance=1000,
        closer="Avi",
        scheduler="4",
        helper="",
        handler="Noa",
        case_handler_id=8,
        meeting_manager_id=9,
        expert=5,
    )
    case = normalize_case(lead, resolve_category=lambda _: "Germany")
    assert case.case_key == "current:d"
    assert case.display_number == "L-100"
    assert case.main_category == "Germany"
    assert case.closer == RoleAssignment(by_name="Avi")
    assert case.scheduler == RoleAssignment(by_id=4)
    assert not case.has_helper_closer
    assert case.handler == RoleAssignment(by_name="Noa", by_id=8)
    assert case.manager == RoleAssignment(by_id=9)
    assert case.expert == RoleAssignment(by_id=5)


def test_normalize_legacy_case_slots() -> None:
    lead = LegacyLeadRecord(
        id=12,
        manual_id="M-1",
        total_base=500,
        currency_id=1,
        closer_id=1,
        meeting_lawyer_id=2,
        case_handler_id=3,
    )
    case = normalize_case(lead)
    assert case.case_key == "legacy:12"
    assert case.display_number == "M-1"
    assert case.main_category == "Uncategorized"
    assert case.amount == Decimal("500")
    assert case.has_helper_closer
    assert case.handler == RoleAssignment(by_id=3)
    assert not case.expert.assigned
