# kg_api/services/payroll/compensation.py
"""
Compensation arithmetic for one PayrollRecord.

    total = accruals + bonuses - late_penalties - absence_penalties
            - user_fines - advance - deductions - debt_carry_in

Every overridable field resolves to a tagged value: Computed(v) when it comes
from attendance facts / defaults, Overridden(v) when an admin entered it.
Overrides live in PayrollRecord.overrides and win until a forced regeneration
clears the aggregate-derived ones.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Union

from kg_api.common.errors import ComputationError, ValidationError
from .penalties import money, ZERO, CENT

AGGREGATE_FIELDS = ("worked_days", "worked_shifts", "accruals", "late_penalties", "absence_penalties")
MANUAL_FIELDS = ("bonuses", "advance", "deductions")
OVERRIDABLE_FIELDS = AGGREGATE_FIELDS + MANUAL_FIELDS
UNIT_FIELDS = ("worked_days", "worked_shifts")


@dataclass(frozen=True)
class Computed:
    value: Any
    overridden = False


@dataclass(frozen=True)
class Overridden:
    value: Any
    overridden = True


FieldValue = Union[Computed, Overridden]


def _coerce(field_name: str, raw) -> Union[int, Decimal]:
    if field_name in UNIT_FIELDS:
        try:
            v = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"{field_name} must be an integer", payload={"field": field_name})
        if v < 0:
            raise ValidationError(f"{field_name} cannot be negative", payload={"field": field_name})
        return v
    try:
        v = money(raw)
    except Exception:
        raise ValidationError(f"{field_name} must be a number", payload={"field": field_name})
    if v < 0:
        raise ValidationError(f"{field_name} cannot be negative", payload={"field": field_name})
    return v


def resolve(field_name: str, computed, overrides: Optional[Mapping[str, Any]]) -> FieldValue:
    if overrides and field_name in overrides and overrides[field_name] is not None:
        return Overridden(_coerce(field_name, overrides[field_name]))
    return Computed(_coerce(field_name, computed))


def normalize_overrides(values: Mapping[str, Any], current: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Merge admin-entered values into the stored override map.
    A None value removes the override for that field.
    """
    out = dict(current or {})
    for k, raw in values.items():
        if k not in OVERRIDABLE_FIELDS:
            raise ValidationError(f"'{k}' cannot be overridden", payload={"allowed": list(OVERRIDABLE_FIELDS)})
        if raw is None:
            out.pop(k, None)
            continue
        v = _coerce(k, raw)
        out[k] = v if isinstance(v, int) else str(v)
    return out


def drop_aggregate_overrides(overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {k: v for k, v in (overrides or {}).items() if k not in AGGREGATE_FIELDS}


def apply_salary_config(record, staff, settings: Mapping[str, Any]) -> None:
    """Snapshot the staff member's pay terms onto the record (settings fill the gaps)."""
    base = money(staff.base_salary)
    if base <= 0:
        base = money(settings.get("default_base_salary"))
    record.base_salary = base
    record.base_salary_type = staff.base_salary_type or "month"
    record.shift_rate = money(staff.shift_rate)
    record.norm_days = int(staff.norm_days or settings.get("default_norm_days") or 0)


def day_rate(base_salary, norm_days) -> Decimal:
    try:
        nd = int(norm_days or 0)
    except (TypeError, ValueError):
        nd = 0
    if nd <= 0:
        raise ComputationError("norm_days must be a positive number of days", payload={"normDays": norm_days})
    return (Decimal(str(base_salary or 0)) / Decimal(nd)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_accruals(base_salary_type: str, base_salary, norm_days, shift_rate,
                     worked_days: int, worked_shifts: int) -> Decimal:
    if worked_days < 0 or worked_shifts < 0:
        raise ComputationError("worked units cannot be negative",
                               payload={"workedDays": worked_days, "workedShifts": worked_shifts})
    if base_salary_type == "shift":
        return money(money(shift_rate) * worked_shifts)
    if base_salary_type == "month":
        return money(day_rate(base_salary, norm_days) * worked_days)
    raise ComputationError(f"unknown base salary type '{base_salary_type}'")


def compute_total(accruals, bonuses, late_penalties, absence_penalties,
                  user_fines, advance, deductions, debt_carry_in) -> Decimal:
    return money(
        money(accruals) + money(bonuses)
        - money(late_penalties) - money(absence_penalties)
        - money(user_fines) - money(advance) - money(deductions)
        - money(debt_carry_in)
    )


def sum_fines(record) -> Decimal:
    return money(sum((money(f.amount) for f in record.fines.values()), ZERO))


def apply_aggregate(record, aggregate, penalties) -> None:
    """
    Write attendance-derived fields (respecting overrides), then the totals.
    `aggregate` is an AttendanceAggregate, `penalties` a PenaltyResult.
    """
    ov = record.overrides or {}
    worked_days = resolve("worked_days", aggregate.worked_days, ov).value
    worked_shifts = resolve("worked_shifts", aggregate.worked_shifts, ov).value

    computed_accruals = compute_accruals(
        record.base_salary_type, record.base_salary, record.norm_days, record.shift_rate,
        worked_days, worked_shifts,
    )

    record.worked_days = worked_days
    record.worked_shifts = worked_shifts
    record.accruals = resolve("accruals", computed_accruals, ov).value
    record.late_penalties = resolve("late_penalties", penalties.late_penalties, ov).value
    record.absence_penalties = resolve("absence_penalties", penalties.absence_penalties, ov).value
    record.penalty_details = penalties.details
    recompute_totals(record)


def recompute_totals(record) -> Decimal:
    """
    Full recompute of the record's mutable totals from its components:
    manual fields from overrides, user_fines from the fines ledger, then total.
    Aggregate-derived columns are taken as stored, except where an override
    was entered after the last regeneration.
    """
    ov = record.overrides or {}
    for f in ("worked_days", "worked_shifts", "late_penalties", "absence_penalties"):
        if f in ov:
            setattr(record, f, resolve(f, None, ov).value)
    if "accruals" in ov:
        record.accruals = resolve("accruals", None, ov).value
    elif "worked_days" in ov or "worked_shifts" in ov:
        record.accruals = compute_accruals(
            record.base_salary_type, record.base_salary, record.norm_days, record.shift_rate,
            int(record.worked_days or 0), int(record.worked_shifts or 0),
        )

    record.bonuses = resolve("bonuses", 0, ov).value
    record.advance = resolve("advance", 0, ov).value
    record.deductions = resolve("deductions", 0, ov).value
    record.user_fines = sum_fines(record)
    record.total = compute_total(
        record.accruals, record.bonuses, record.late_penalties, record.absence_penalties,
        record.user_fines, record.advance, record.deductions, record.debt_carry_in,
    )
    return record.total


def field_sources(record) -> Dict[str, str]:
    """{'accruals': 'computed'|'override', ...} for API consumers."""
    ov = record.overrides or {}
    return {f: ("override" if f in ov else "computed") for f in OVERRIDABLE_FIELDS}
