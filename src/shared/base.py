from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from pydantic import BaseModel, PlainSerializer
from pydantic.config import ConfigDict

CENT = Decimal("0.01")


def to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


def _money_to_json(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


# Exact Decimal in Python, rounded to cents on the wire.
Money = Annotated[Decimal, PlainSerializer(_money_to_json, return_type=float, when_used="json")]


class BaseSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
