# kg_api/services/payroll/aggregator.py
"""
Attendance aggregation for one staff member over one period.

Pure functions over already-loaded facts: no session access, so the batch
orchestrator can run them in worker threads.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence, Tuple

from kg_api.common.errors import ComputationError

WORKED_STATUSES = frozenset({"present", "late"})
EXCUSED_STATUSES = frozenset({"sick", "vacation"})
KNOWN_STATUSES = WORKED_STATUSES | EXCUSED_STATUSES | {"absent"}
COUNTED_SHIFT_TYPES = frozenset({"full", "overtime"})


@dataclass(frozen=True)
class AttendanceFact:
    staff_id: int
    work_date: date
    status: str
    late_minutes: int = 0
    overtime_minutes: int = 0

    @classmethod
    def from_row(cls, row) -> "AttendanceFact":
        return cls(
            staff_id=int(row.staff_id),
            work_date=row.work_date,
            status=(row.status or "").strip().lower(),
            late_minutes=int(row.late_minutes or 0),
            overtime_minutes=int(row.overtime_minutes or 0),
        )


@dataclass(frozen=True)
class ShiftFact:
    staff_id: int
    work_date: date
    type: str

    @classmethod
    def from_row(cls, row) -> "ShiftFact":
        return cls(staff_id=int(row.staff_id), work_date=row.work_date,
                   type=(row.type or "").strip().lower())


@dataclass(frozen=True)
class LateDay:
    work_date: date
    minutes: int


@dataclass(frozen=True)
class AttendanceAggregate:
    staff_id: int
    period_start: date
    period_end: date
    base_salary_type: str
    worked_days: int = 0
    worked_shifts: int = 0
    total_late_minutes: int = 0
    total_overtime_minutes: int = 0
    unexcused_absences: int = 0
    late_days: Tuple[LateDay, ...] = field(default_factory=tuple)
    expected_workdays: int = 0
    worked_weekdays: int = 0

    @property
    def attendance_rate(self) -> Decimal:
        """Worked weekdays over expected weekdays; weekends stay out of the denominator."""
        if not self.expected_workdays:
            return Decimal("0")
        rate = Decimal(self.worked_weekdays) / Decimal(self.expected_workdays)
        return rate.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

    def as_dict(self) -> dict:
        return {
            "staffId": self.staff_id,
            "workedDays": self.worked_days,
            "workedShifts": self.worked_shifts,
            "totalLateMinutes": self.total_late_minutes,
            "totalOvertimeMinutes": self.total_overtime_minutes,
            "unexcusedAbsences": self.unexcused_absences,
            "expectedWorkdays": self.expected_workdays,
            "attendanceRate": float(self.attendance_rate),
        }


def count_weekdays(start: date, end: date) -> int:
    n = 0
    d = start
    while d <= end:
        if d.weekday() < 5:
            n += 1
        d += timedelta(days=1)
    return n


def aggregate(
    staff_id: int,
    period_start: date,
    period_end: date,
    base_salary_type: str,
    attendance: Iterable[AttendanceFact],
    shifts: Optional[Sequence[ShiftFact]] = None,
) -> AttendanceAggregate:
    """
    Reduce the staff member's attendance (and, for shift pay, shift) facts
    inside [period_start, period_end] into worked units and lateness totals.

    Raises ComputationError on duplicate (staff, date) rows, negative minutes,
    unknown statuses or facts that belong to another staff member.
    """
    if period_end < period_start:
        raise ComputationError("period end precedes period start",
                               payload={"staffId": staff_id})

    by_date = {}
    for fact in attendance:
        if fact.staff_id != staff_id:
            raise ComputationError("attendance fact belongs to another staff member",
                                   payload={"staffId": staff_id, "foreignStaffId": fact.staff_id})
        if not (period_start <= fact.work_date <= period_end):
            continue
        if fact.work_date in by_date:
            raise ComputationError(
                "duplicate attendance records for one day",
                payload={"staffId": staff_id, "date": fact.work_date.isoformat()},
            )
        if fact.status not in KNOWN_STATUSES:
            raise ComputationError(
                f"unknown attendance status '{fact.status}'",
                payload={"staffId": staff_id, "date": fact.work_date.isoformat()},
            )
        if fact.late_minutes < 0 or fact.overtime_minutes < 0:
            raise ComputationError(
                "negative minutes in attendance record",
                payload={"staffId": staff_id, "date": fact.work_date.isoformat()},
            )
        by_date[fact.work_date] = fact

    worked_days = 0
    worked_weekdays = 0
    late_total = 0
    overtime_total = 0
    absences = 0
    late_days: List[LateDay] = []

    for d in sorted(by_date):
        fact = by_date[d]
        if fact.status in WORKED_STATUSES:
            worked_days += 1
            if d.weekday() < 5:
                worked_weekdays += 1
            late_total += fact.late_minutes
            overtime_total += fact.overtime_minutes
            if fact.status == "late" or fact.late_minutes > 0:
                late_days.append(LateDay(work_date=d, minutes=fact.late_minutes))
        elif fact.status == "absent":
            absences += 1

    worked_shifts = 0
    if base_salary_type == "shift":
        for s in shifts or ():
            if s.staff_id != staff_id or not (period_start <= s.work_date <= period_end):
                continue
            if s.type not in COUNTED_SHIFT_TYPES:
                continue
            fact = by_date.get(s.work_date)
            if fact is not None and fact.status in WORKED_STATUSES:
                worked_shifts += 1

    return AttendanceAggregate(
        staff_id=staff_id,
        period_start=period_start,
        period_end=period_end,
        base_salary_type=base_salary_type,
        worked_days=worked_days,
        worked_shifts=worked_shifts,
        total_late_minutes=late_total,
        total_overtime_minutes=overtime_total,
        unexcused_absences=absences,
        late_days=tuple(late_days),
        expected_workdays=count_weekdays(period_start, period_end),
        worked_weekdays=worked_weekdays,
    )
