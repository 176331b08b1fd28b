from datetime import date
from decimal import Decimal

import pytest

from kg_api.common.errors import ComputationError
from kg_api.services.payroll.aggregator import AttendanceFact, ShiftFact, aggregate, count_weekdays

START, END = date(2025, 9, 1), date(2025, 9, 30)


def _f(day, status="present", late=0, overtime=0, staff_id=1):
    return AttendanceFact(staff_id=staff_id, work_date=date(2025, 9, day), status=status,
                          late_minutes=late, overtime_minutes=overtime)


def test_worked_days_absences_and_late_days():
    facts = [
        _f(1), _f(2),
        _f(3, "late", late=17),
        _f(4, "absent"),
        _f(5, "sick"),
        _f(6),                      # Saturday, actually recorded
        _f(8, "present", late=4, overtime=30),
        _f(9, "vacation"),
    ]
    agg = aggregate(1, START, END, "month", facts)

    assert agg.worked_days == 5
    assert agg.worked_weekdays == 4
    assert agg.unexcused_absences == 1
    assert [(d.work_date.day, d.minutes) for d in agg.late_days] == [(3, 17), (8, 4)]
    assert agg.total_late_minutes == 21
    assert agg.total_overtime_minutes == 30
    assert agg.expected_workdays == 22
    assert agg.attendance_rate == Decimal("0.1818")


def test_facts_outside_period_are_ignored():
    facts = [_f(1), AttendanceFact(staff_id=1, work_date=date(2025, 10, 1), status="present")]
    agg = aggregate(1, START, END, "month", facts)
    assert agg.worked_days == 1


def test_shift_count_needs_completed_attendance():
    facts = [_f(1), _f(2, "late", late=5), _f(4, "absent")]
    shifts = [
        ShiftFact(1, date(2025, 9, 1), "full"),
        ShiftFact(1, date(2025, 9, 2), "overtime"),
        ShiftFact(1, date(2025, 9, 4), "full"),   # absent that day
        ShiftFact(1, date(2025, 9, 7), "full"),   # no attendance record
    ]
    agg = aggregate(1, START, END, "shift", facts, shifts)
    assert agg.worked_shifts == 2

    # monthly staff never accumulate shifts
    assert aggregate(1, START, END, "month", facts, shifts).worked_shifts == 0


def test_duplicate_day_is_rejected():
    with pytest.raises(ComputationError) as ei:
        aggregate(1, START, END, "month", [_f(1), _f(1, "late", late=3)])
    assert ei.value.code == "COMPUTATION_ERROR"
    assert ei.value.payload["date"] == "2025-09-01"


@pytest.mark.parametrize("fact", [
    _f(1, late=-1),
    _f(1, overtime=-5),
    _f(1, status="holiday"),
    _f(1, staff_id=2),
])
def test_invalid_facts_are_rejected(fact):
    with pytest.raises(ComputationError):
        aggregate(1, START, END, "month", [fact])


def test_empty_period():
    agg = aggregate(7, START, END, "month", [])
    assert agg.worked_days == 0
    assert agg.late_days == ()
    assert agg.attendance_rate == Decimal("0.0000")
    assert agg.as_dict()["staffId"] == 7


def test_count_weekdays():
    assert count_weekdays(date(2025, 9, 1), date(2025, 9, 30)) == 22
    assert count_weekdays(date(2025, 9, 6), date(2025, 9, 7)) == 0
