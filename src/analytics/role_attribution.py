from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from src.analytics.lead_amounts import NormalizedCase
from src.shared.amounts import ZERO, parse_numeric_amount

CLOSER = "Closer"
SCHEDULER = "Scheduler"
HELPER_CLOSER = "Helper Closer"
HANDLER = "Handler"
MEETING_MANAGER = "Meeting Manager"
HELPER_HANDLER = "Helper Handler"
EXPERT = "Expert"

ROLE_SLOTS: Tuple[str, ...] = (
    CLOSER,
    SCHEDULER,
    HELPER_CLOSER,
    HANDLER,
    MEETING_MANAGER,
    HELPER_HANDLER,
    EXPERT,
)

DEFAULT_ROLE_PERCENTAGES: Mapping[str, Decimal] = MappingProxyType(
    {
        "CLOSER": Decimal("40"),
        "SCHEDULER": Decimal("30"),
        "MANAGER": Decimal("20"),
        "EXPERT": Decimal("10"),
        "HANDLER": Decimal("0"),
        "CLOSER_WITH_HELPER": Decimal("20"),
        "HELPER_CLOSER": Decimal("20"),
        "HELPER_HANDLER": Decimal("0"),
        "DEPARTMENT_MANAGER": Decimal("0"),
    }
)
ROLE_PERCENTAGE_NAMES: Tuple[str, ...] = tuple(DEFAULT_ROLE_PERCENTAGES)

HUNDRED = Decimal("100")


class RolePercentages:
    """Immutable role-name -> percentage (0-100) table.

    Stored values override the defaults. Lookups for signed shares fall back to the
    defaults; lookups for due shares only honour stored values.
    """

    __slots__ = ("_stored", "_version")

    def __init__(self, stored: Optional[Mapping[str, object]] = None, version: int = 0) -> None:
        values: Dict[str, Decimal] = {}
        for name, value in (stored or {}).items():
            values[name.strip().upper()] = parse_numeric_amount(value)
        self._stored = MappingProxyType(values)
        self._version = version

    @property
    def version(self) -> int:
        return self._version

    @property
    def fingerprint(self) -> Tuple[Tuple[str, Decimal], ...]:
        return tuple(sorted(self._stored.items()))

    def with_version(self, version: int) -> "RolePercentages":
        return RolePercentages(self._stored, version=version)

    def percentage(self, role: str) -> Decimal:
        if role in self._stored:
            return self._stored[role]
        return DEFAULT_ROLE_PERCENTAGES.get(role, ZERO)

    def fraction(self, role: str) -> Decimal:
        return self.percentage(role) / HUNDRED

    def due_fraction(self, role: str) -> Decimal:
        return self._stored.get(role, ZERO) / HUNDRED

    def effective(self) -> Dict[str, Decimal]:
        merged = dict(DEFAULT_ROLE_PERCENTAGES)
        merged.update(self._stored)
        return merged

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RolePercentages):
            return NotImplemented
        return self.fingerprint == other.fingerprint

    def __hash__(self) -> int:
        return hash(self.fingerprint)

    def __repr__(self) -> str:
        return f"RolePercentages(version={self._version}, stored={dict(self._stored)!r})"


def employee_roles(case: NormalizedCase, employee_id: int, employee_name: Optional[str]) -> Tuple[str, ...]:
    """Sorted role names the employee holds on the case."""
    slots = {
        CLOSER: case.closer,
        SCHEDULER: case.scheduler,
        HELPER_CLOSER: case.helper_closer,
        HANDLER: case.handler,
        MEETING_MANAGER: case.manager,
        EXPERT: case.expert,
    }
    held = [role for role, assignment in slots.items() if assignment.matches(employee_id, employee_name)]
    # Helper Handler has no backing column and never matches.
    return tuple(sorted(held))


def combination_key(roles: Tuple[str, ...]) -> str:
    return ", ".join(sorted(roles))


def is_handler_only(roles: Tuple[str, ...]) -> bool:
    return roles == (HANDLER,)


def signed_portion_fraction(
    case: NormalizedCase,
    employee_id: int,
    employee_name: Optional[str],
    percentages: RolePercentages,
) -> Decimal:
    """Sum of role fractions the employee earns from the case's signed amount.

    Handler is paid only from the due pool and is never counted here.
    """
    fraction = ZERO
    if case.closer.matches(employee_id, employee_name):
        if case.has_helper_closer:
            fraction += percentages.fraction("CLOSER_WITH_HELPER")
        else:
            fraction += percentages.fraction("CLOSER")
    if case.helper_closer.matches(employee_id, employee_name):
        fraction += percentages.fraction("HELPER_CLOSER")
    if case.scheduler.matches(employee_id, employee_name):
        fraction += percentages.fraction("SCHEDULER")
    if case.manager.matches(employee_id, employee_name):
        fraction += percentages.fraction("MANAGER")
    if case.expert.matches(employee_id, employee_name):
        fraction += percentages.fraction("EXPERT")
    return fraction


def signed_portion_amount(
    case: NormalizedCase,
    employee_id: int,
    employee_name: Optional[str],
    percentages: RolePercentages,
) -> Decimal:
    return case.amount * signed_portion_fraction(case, employee_id, employee_name, percentages)
