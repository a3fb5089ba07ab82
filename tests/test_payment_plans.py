from __future__ import annotations

from datetime import date
from decimal import Decimal

from src.analytics.payment_plans import (
    aggregate_current_due,
    aggregate_legacy_due,
    is_current_installment_due,
    legacy_installment_amount,
    sum_due_for_cases,
)
from src.models.sales_contribution import CurrentInstallmentRecord, LegacyInstallmentRecord

MARCH = (date(2026, 3, 1), date(2026, 3, 31))


def _legacy(lead_id: int, **fields) -> LegacyInstallmentRecord:
    row = {"ready_to_pay": True, "due_date": "2026-03-10", "currency_id": 1}
    row.update(fields)
    return LegacyInstallmentRecord(lead_id=lead_id, **row)


def _current(lead_id: str, **fields) -> CurrentInstallmentRecord:
    row = {"ready_to_pay": True, "paid": False, "due_date": "2026-03-15T08:00:00Z", "currency": "NIS"}
    row.update(fields)
    return CurrentInstallmentRecord(lead_id=lead_id, **row)


def test_handler_due_excludes_cancelled_installments() -> None:
    rows = [
        _legacy(1, value=500),
        _legacy(2, value=800, cancel_date="2026-03-02"),
        _legacy(3, value="1,250", value_base=1200),
    ]
    due_by_case = aggregate_legacy_due(rows, window=MARCH)
    assert due_by_case == {"legacy:1": Decimal("500"), "legacy:3": Decimal("1200")}
    assert sum_due_for_cases(due_by_case, ["legacy:1", "legacy:2", "legacy:3"]) == Decimal("1700")


def test_legacy_installment_amount_converts_foreign_value() -> None:
    row = _legacy(4, value=100, value_base=999, currency_id=3)
    assert legacy_installment_amount(row) == Decimal("370")


def test_legacy_paid_or_not_ready_rows_are_skipped() -> None:
    rows = [
        _legacy(1, value=500, actual_date="2026-03-05"),
        _legacy(2, value=500, ready_to_pay=False),
        _legacy(3, value=500, due_date=None),
    ]
    assert aggregate_legacy_due(rows, window=MARCH) == {}


def test_current_due_filters_and_converts() -> None:
    rows = [
        _current("a", value=100, currency="$"),
        _current("a", value=50, value_vat=9),
        _current("b", value=100, paid=True),
        _current("c", value=100, ready_to_pay=None),
        _current("d", value=100, due_date="2026-04-01T00:00:00Z"),
    ]
    assert aggregate_current_due(rows, window=MARCH) == {"current:a": Decimal("420")}


def test_current_due_without_window_accepts_any_date() -> None:
    row = _current("d", value=100, due_date="2025-12-01")
    assert is_current_installment_due(row)
    assert not is_current_installment_due(row, MARCH)


def test_sum_due_counts_each_case_once() -> None:
    due_by_case = {"legacy:1": Decimal("500")}
    assert sum_due_for_cases(due_by_case, ["legacy:1", "legacy:1", "legacy:9"]) == Decimal("500")
