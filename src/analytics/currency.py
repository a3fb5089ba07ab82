from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional

from pydantic import BaseModel

from src.shared.amounts import ZERO, parse_numeric_amount

BASE_CURRENCY = "NIS"
BASE_CURRENCY_ID = 1

CURRENCY_IDS: Dict[int, str] = {1: "NIS", 2: "EUR", 3: "USD", 4: "GBP"}
CURRENCY_SYMBOLS: Dict[str, str] = {"₪": "NIS", "€": "EUR", "$": "USD", "£": "GBP"}
DISPLAY_SYMBOLS: Dict[str, str] = {code: symbol for symbol, code in CURRENCY_SYMBOLS.items()}
CODE_ALIASES: Dict[str, str] = {"ILS": "NIS", "SHEKEL": "NIS", "SHEKELS": "NIS"}

# Static rates into NIS; the live FX source is injected through ``Converter``.
STATIC_RATES_TO_BASE: Dict[str, Decimal] = {
    "NIS": Decimal("1"),
    "USD": Decimal("3.7"),
    "EUR": Decimal("4.0"),
    "GBP": Decimal("4.7"),
}

Converter = Callable[[Decimal, str], Decimal]


class CurrencyMeta(NamedTuple):
    display_symbol: str
    code: str


def _meta(code: str) -> CurrencyMeta:
    return CurrencyMeta(display_symbol=DISPLAY_SYMBOLS.get(code, code), code=code)


def canonical_currency_code(value: Any) -> Optional[str]:
    """Map an id, symbol or code onto a canonical code; ``None`` when unrecognised."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return CURRENCY_IDS.get(value)
    if isinstance(value, float) and value.is_integer():
        return CURRENCY_IDS.get(int(value))
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.isdigit():
        return CURRENCY_IDS.get(int(text))
    if text in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text]
    upper = text.upper()
    if upper in CODE_ALIASES:
        return CODE_ALIASES[upper]
    if upper in STATIC_RATES_TO_BASE:
        return upper
    return None


def _joined_code(candidate: Any) -> Optional[str]:
    if isinstance(candidate, BaseModel):
        candidate = candidate.model_dump()
    if not isinstance(candidate, Mapping):
        return None
    for key in ("iso_code", "name"):
        code = canonical_currency_code(candidate.get(key))
        if code:
            return code
    return None


def build_currency_meta(*candidates: Any) -> CurrencyMeta:
    """Resolve the first usable currency among ordered candidates.

    Joined currency rows (``iso_code``/``name``) outrank raw ids and symbols, because
    they describe the currency the amount was actually recorded in.
    """
    for candidate in candidates:
        code = _joined_code(candidate)
        if code:
            return _meta(code)
    for candidate in candidates:
        if isinstance(candidate, (Mapping, BaseModel)):
            continue
        code = canonical_currency_code(candidate)
        if code:
            return _meta(code)
    return _meta(BASE_CURRENCY)


def convert_to_base(amount: Any, currency: Any) -> Decimal:
    value = parse_numeric_amount(amount)
    if value <= ZERO:
        return ZERO
    code = canonical_currency_code(currency) or BASE_CURRENCY
    rate = STATIC_RATES_TO_BASE.get(code, Decimal("1"))
    return value * rate
