from decimal import Decimal
from types import SimpleNamespace

import pytest

from kg_api.common.errors import ComputationError, ValidationError
from kg_api.services.payroll.compensation import (
    Computed, Overridden, resolve, compute_accruals, compute_total, normalize_overrides,
    drop_aggregate_overrides, recompute_totals, apply_aggregate, day_rate,
)
from kg_api.services.payroll.penalties import PenaltyResult


def _record(**kw):
    base = dict(
        base_salary=Decimal("100000"), base_salary_type="month", shift_rate=Decimal("0"), norm_days=22,
        worked_days=0, worked_shifts=0, accruals=Decimal("0"), late_penalties=Decimal("0"),
        absence_penalties=Decimal("0"), penalty_details=None, bonuses=Decimal("0"), advance=Decimal("0"),
        deductions=Decimal("0"), debt_carry_in=Decimal("0"), user_fines=Decimal("0"), total=Decimal("0"),
        overrides={}, fines={},
    )
    base.update(kw)
    return SimpleNamespace(**base)


def test_monthly_accrual_rounds_day_rate():
    assert day_rate(100000, 22) == Decimal("4545.45")
    assert compute_accruals("month", 100000, 22, 0, 20, 0) == Decimal("90909.00")


def test_shift_accrual():
    assert compute_accruals("shift", 0, 22, 3000, 0, 5) == Decimal("15000.00")


@pytest.mark.parametrize("norm_days", [0, None, -3])
def test_norm_days_must_be_positive(norm_days):
    with pytest.raises(ComputationError):
        compute_accruals("month", 100000, norm_days, 0, 20, 0)


def test_total_formula():
    total = compute_total(Decimal("90909.00"), 5000, 850, 0, 0, 10000, 0, 0)
    assert total == Decimal("85059.00")
    assert compute_total(1000, 0, 0, 0, 300, 0, 200, 5000) == Decimal("-4500.00")


def test_resolve_tags():
    assert resolve("bonuses", 0, {}) == Computed(Decimal("0.00"))
    got = resolve("bonuses", 0, {"bonuses": "5000"})
    assert got == Overridden(Decimal("5000.00"))
    assert got.overridden
    assert resolve("worked_days", 20, {"worked_days": 18}).value == 18


def test_normalize_overrides():
    ov = normalize_overrides({"bonuses": 5000, "worked_days": "18"})
    assert ov == {"bonuses": "5000.00", "worked_days": 18}
    ov = normalize_overrides({"bonuses": None}, ov)
    assert ov == {"worked_days": 18}
    with pytest.raises(ValidationError):
        normalize_overrides({"total": 1})
    with pytest.raises(ValidationError):
        normalize_overrides({"advance": -1})
    assert drop_aggregate_overrides({"worked_days": 18, "advance": "10.00"}) == {"advance": "10.00"}


def test_end_to_end_record():
    rec = _record(overrides={"bonuses": "5000", "advance": "10000"})
    agg = SimpleNamespace(worked_days=20, worked_shifts=0)
    pen = PenaltyResult(Decimal("850.00"), Decimal("0.00"), [{"type": "late", "amount": 850.0}])

    apply_aggregate(rec, agg, pen)

    assert rec.accruals == Decimal("90909.00")
    assert rec.late_penalties == Decimal("850.00")
    assert rec.total == Decimal("85059.00")
    # same inputs, same total
    apply_aggregate(rec, agg, pen)
    assert rec.total == Decimal("85059.00")


def test_overridden_worked_days_drive_accruals():
    rec = _record(overrides={"worked_days": 10})
    apply_aggregate(rec, SimpleNamespace(worked_days=20, worked_shifts=0),
                    PenaltyResult(Decimal("0"), Decimal("0"), []))
    assert rec.worked_days == 10
    assert rec.accruals == Decimal("45454.50")


def test_recompute_includes_fines():
    rec = _record(accruals=Decimal("1000"), fines={
        "a": SimpleNamespace(amount=Decimal("300")),
        "b": SimpleNamespace(amount=Decimal("200.50")),
    })
    assert recompute_totals(rec) == Decimal("499.50")
    assert rec.user_fines == Decimal("500.50")
