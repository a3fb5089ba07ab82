from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from src.analytics.currency import (
    BASE_CURRENCY_ID,
    Converter,
    build_currency_meta,
    convert_to_base,
)
from src.models.sales_contribution import CurrentInstallmentRecord, LegacyInstallmentRecord
from src.shared.amounts import ZERO
from src.shared.time import within_window

DueWindow = Tuple[date, date]


def _in_window(due_date: object, window: Optional[DueWindow]) -> bool:
    if window is None:
        return True
    return within_window(due_date, window[0], window[1])


def is_current_installment_due(row: CurrentInstallmentRecord, window: Optional[DueWindow] = None) -> bool:
    return (
        row.ready_to_pay is True
        and not row.paid
        and row.cancel_date is None
        and row.due_date is not None
        and _in_window(row.due_date, window)
    )


def is_legacy_installment_due(row: LegacyInstallmentRecord, window: Optional[DueWindow] = None) -> bool:
    return (
        row.ready_to_pay is True
        and row.actual_date is None
        and row.cancel_date is None
        and row.due_date is not None
        and _in_window(row.due_date, window)
    )


def legacy_installment_amount(row: LegacyInstallmentRecord, convert: Converter = convert_to_base) -> Decimal:
    currency = build_currency_meta(row.accounting_currencies, row.currency_id).code
    if row.currency_id == BASE_CURRENCY_ID and row.value_base is not None:
        return row.value_base
    return convert(row.value or row.value_base or ZERO, currency)


def current_installment_amount(row: CurrentInstallmentRecord, convert: Converter = convert_to_base) -> Decimal:
    # VAT is excluded; due figures use the net installment value.
    return convert(row.value or ZERO, build_currency_meta(row.currency).code)


def aggregate_current_due(
    rows: Iterable[CurrentInstallmentRecord],
    convert: Converter = convert_to_base,
    window: Optional[DueWindow] = None,
) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for row in rows:
        if is_current_installment_due(row, window):
            totals[row.case_key] += current_installment_amount(row, convert)
    return dict(totals)


def aggregate_legacy_due(
    rows: Iterable[LegacyInstallmentRecord],
    convert: Converter = convert_to_base,
    window: Optional[DueWindow] = None,
) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for row in rows:
        if is_legacy_installment_due(row, window):
            totals[row.case_key] += legacy_installment_amount(row, convert)
    return dict(totals)


def sum_due_for_cases(due_by_case: Dict[str, Decimal], case_keys: Iterable[str]) -> Decimal:
    return sum((due_by_case.get(key, ZERO) for key in set(case_keys)), ZERO)
