# kg_api/services/attendance_store.py
"""
Read/write access to recorded attendance and shift facts.
Capture (clock-in/out, geolocation) happens elsewhere; this module only
imports finished facts and hands them to payroll as plain value objects.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time as _time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select

from kg_api.extensions import db
from kg_api.common.errors import ValidationError, NotFoundError
from kg_api.models.attendance import AttendanceRecord, ShiftRecord, ATTENDANCE_STATUSES, SHIFT_TYPES
from kg_api.models.staff import StaffProfile
from kg_api.services.payroll.aggregator import AttendanceFact, ShiftFact

log = logging.getLogger(__name__)


def _d(s) -> Optional[date]:
    if not s:
        return None
    if isinstance(s, date):
        return s
    try:
        return date.fromisoformat(str(s))
    except Exception:
        return None


def _dt(s) -> Optional[datetime]:
    if not s:
        return None
    try:
        return datetime.fromisoformat(str(s))
    except Exception:
        return None


def _t(s) -> Optional[_time]:
    if not s:
        return None
    try:
        return _time.fromisoformat(str(s))
    except Exception:
        return None


def _minutes(row: Mapping[str, Any], key: str, idx: int) -> int:
    raw = row.get(key, 0) or 0
    try:
        v = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"rows[{idx}].{key} must be an integer")
    if v < 0:
        raise ValidationError(f"rows[{idx}].{key} cannot be negative")
    return v


# ---------- bulk loads for payroll ----------

def load_attendance(staff_ids: Sequence[int], start: date, end: date) -> Dict[int, List[AttendanceFact]]:
    """All attendance facts of the given staff inside [start, end], grouped by staff id."""
    out: Dict[int, List[AttendanceFact]] = defaultdict(list)
    if not staff_ids:
        return out
    rows = db.session.execute(
        select(AttendanceRecord)
        .where(AttendanceRecord.staff_id.in_(list(staff_ids)),
               AttendanceRecord.work_date >= start,
               AttendanceRecord.work_date <= end)
        .order_by(AttendanceRecord.staff_id, AttendanceRecord.work_date, AttendanceRecord.id)
    ).scalars()
    for r in rows:
        out[r.staff_id].append(AttendanceFact.from_row(r))
    return out


def load_shifts(staff_ids: Sequence[int], start: date, end: date) -> Dict[int, List[ShiftFact]]:
    out: Dict[int, List[ShiftFact]] = defaultdict(list)
    if not staff_ids:
        return out
    rows = db.session.execute(
        select(ShiftRecord)
        .where(ShiftRecord.staff_id.in_(list(staff_ids)),
               ShiftRecord.work_date >= start,
               ShiftRecord.work_date <= end)
        .order_by(ShiftRecord.staff_id, ShiftRecord.work_date, ShiftRecord.id)
    ).scalars()
    for r in rows:
        out[r.staff_id].append(ShiftFact.from_row(r))
    return out


# ---------- import / listing ----------

def _known_staff(ids: Iterable[int]) -> set:
    ids = set(ids)
    if not ids:
        return set()
    found = db.session.execute(select(StaffProfile.id).where(StaffProfile.id.in_(ids))).scalars()
    return set(found)


def import_attendance(rows: Sequence[Mapping[str, Any]], replace: bool = True) -> Dict[str, int]:
    """
    Store finished attendance days. With `replace`, an existing row for the same
    (staff, date) is overwritten instead of duplicated.
    """
    if not isinstance(rows, (list, tuple)) or not rows:
        raise ValidationError("rows must be a non-empty list")

    parsed = []
    for i, row in enumerate(rows):
        try:
            staff_id = int(row.get("staffId"))
        except (TypeError, ValueError):
            raise ValidationError(f"rows[{i}].staffId is required")
        work_date = _d(row.get("date"))
        if not work_date:
            raise ValidationError(f"rows[{i}].date must be YYYY-MM-DD")
        status = str(row.get("status") or "present").strip().lower()
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError(f"rows[{i}].status must be one of {', '.join(ATTENDANCE_STATUSES)}")
        parsed.append(dict(
            staff_id=staff_id,
            work_date=work_date,
            status=status,
            late_minutes=_minutes(row, "lateMinutes", i),
            overtime_minutes=_minutes(row, "overtimeMinutes", i),
            actual_start=_dt(row.get("actualStart")),
            actual_end=_dt(row.get("actualEnd")),
            notes=(row.get("notes") or None),
        ))

    missing = {p["staff_id"] for p in parsed} - _known_staff(p["staff_id"] for p in parsed)
    if missing:
        raise NotFoundError("Unknown staff", payload={"staffIds": sorted(missing)})

    created = updated = 0
    for p in parsed:
        existing = None
        if replace:
            existing = AttendanceRecord.query.filter_by(staff_id=p["staff_id"], work_date=p["work_date"]).first()
        if existing:
            for k, v in p.items():
                setattr(existing, k, v)
            updated += 1
        else:
            db.session.add(AttendanceRecord(**p))
            created += 1
    db.session.commit()
    log.info("attendance import: created=%s updated=%s", created, updated)
    return {"created": created, "updated": updated}


def import_shifts(rows: Sequence[Mapping[str, Any]]) -> Dict[str, int]:
    if not isinstance(rows, (list, tuple)) or not rows:
        raise ValidationError("rows must be a non-empty list")

    objs = []
    for i, row in enumerate(rows):
        try:
            staff_id = int(row.get("staffId"))
        except (TypeError, ValueError):
            raise ValidationError(f"rows[{i}].staffId is required")
        work_date = _d(row.get("date"))
        if not work_date:
            raise ValidationError(f"rows[{i}].date must be YYYY-MM-DD")
        typ = str(row.get("type") or "full").strip().lower()
        if typ not in SHIFT_TYPES:
            raise ValidationError(f"rows[{i}].type must be one of {', '.join(SHIFT_TYPES)}")
        objs.append(ShiftRecord(staff_id=staff_id, work_date=work_date, type=typ,
                                start_time=_t(row.get("startTime")), end_time=_t(row.get("endTime"))))

    missing = {o.staff_id for o in objs} - _known_staff(o.staff_id for o in objs)
    if missing:
        raise NotFoundError("Unknown staff", payload={"staffIds": sorted(missing)})

    db.session.add_all(objs)
    db.session.commit()
    return {"created": len(objs)}


def attendance_row(r: AttendanceRecord) -> Dict[str, Any]:
    return {
        "id": r.id,
        "staffId": r.staff_id,
        "date": r.work_date.isoformat(),
        "status": r.status,
        "lateMinutes": r.late_minutes,
        "overtimeMinutes": r.overtime_minutes,
        "actualStart": r.actual_start.isoformat() if r.actual_start else None,
        "actualEnd": r.actual_end.isoformat() if r.actual_end else None,
        "notes": r.notes,
    }


def shift_row(r: ShiftRecord) -> Dict[str, Any]:
    return {
        "id": r.id,
        "staffId": r.staff_id,
        "date": r.work_date.isoformat(),
        "type": r.type,
        "startTime": r.start_time.isoformat() if r.start_time else None,
        "endTime": r.end_time.isoformat() if r.end_time else None,
    }
