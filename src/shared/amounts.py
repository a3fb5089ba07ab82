from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_numeric_amount(value: Any) -> Decimal:
    """Read an amount from a number or a formatted string such as ``"₪1,250.50"``."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return ZERO
        return parsed if parsed.is_finite() else ZERO
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        if not cleaned:
            return ZERO
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return ZERO
    return ZERO
