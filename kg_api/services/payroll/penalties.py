# kg_api/services/payroll/penalties.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING
from typing import Any, Dict, Iterable, List

from kg_api.common.errors import ValidationError
from kg_api.models.settings import (
    LATE_PENALTY_TYPES,
    DEFAULT_LATE_PENALTY_TYPE,
    DEFAULT_LATE_PENALTY_RATE,
    DEFAULT_ABSENCE_PENALTY_RATE,
)
from .aggregator import LateDay

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# minutes per billed interval; None = flat per late day
_INTERVALS = {
    "fixed": None,
    "per_minute": 1,
    "per_5_minutes": 5,
    "per_10_minutes": 10,
}


def money(x) -> Decimal:
    """Round to the smallest currency unit (half-up)."""
    if x is None or x == "":
        return ZERO
    return Decimal(str(x)).quantize(CENT, rounding=ROUND_HALF_UP)


def non_negative(x: Decimal) -> Decimal:
    return x if x > 0 else ZERO


@dataclass(frozen=True)
class PenaltyPolicy:
    type: str = DEFAULT_LATE_PENALTY_TYPE
    rate: Decimal = DEFAULT_LATE_PENALTY_RATE
    absence_rate: Decimal = DEFAULT_ABSENCE_PENALTY_RATE

    def __post_init__(self):
        if self.type not in LATE_PENALTY_TYPES:
            raise ValidationError(
                f"unknown late penalty type '{self.type}'",
                payload={"allowed": list(LATE_PENALTY_TYPES)},
            )
        object.__setattr__(self, "rate", money(self.rate))
        object.__setattr__(self, "absence_rate", money(self.absence_rate))

    def as_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "rate": float(self.rate), "absenceRate": float(self.absence_rate)}


@dataclass(frozen=True)
class PenaltyResult:
    late_penalties: Decimal
    absence_penalties: Decimal
    details: List[Dict[str, Any]]


def late_penalty_for_day(policy: PenaltyPolicy, minutes: int) -> Decimal:
    interval = _INTERVALS[policy.type]
    if interval is None:
        amount = policy.rate
    else:
        units = (Decimal(max(minutes, 0)) / Decimal(interval)).to_integral_value(rounding=ROUND_CEILING)
        amount = units * policy.rate
    return non_negative(money(amount))


def late_penalties(policy: PenaltyPolicy, late_days: Iterable[LateDay]):
    """Per-day amounts (each rounded and clamped) and their sum."""
    lines = []
    total = ZERO
    for day in late_days:
        amount = late_penalty_for_day(policy, day.minutes)
        lines.append({
            "date": day.work_date.isoformat(),
            "type": "late",
            "minutes": day.minutes,
            "amount": float(amount),
        })
        total += amount
    return total, lines


def absence_penalties(policy: PenaltyPolicy, unexcused_absences: int) -> Decimal:
    return non_negative(money(Decimal(max(unexcused_absences, 0)) * policy.absence_rate))


def compute_penalties(policy: PenaltyPolicy, aggregate) -> PenaltyResult:
    late_total, lines = late_penalties(policy, aggregate.late_days)
    absence_total = absence_penalties(policy, aggregate.unexcused_absences)
    if absence_total > 0:
        lines.append({
            "type": "absence",
            "days": aggregate.unexcused_absences,
            "amount": float(absence_total),
        })
    return PenaltyResult(late_penalties=late_total, absence_penalties=absence_total, details=lines)
