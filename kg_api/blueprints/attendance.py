from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy import select

from kg_api.extensions import db
from kg_api.common.auth import requires_roles
from kg_api.common.errors import ValidationError
from kg_api.common.http import ok, created
from kg_api.common.period import period_bounds
from kg_api.models.attendance import AttendanceRecord, ShiftRecord
from kg_api.services import attendance_store

bp = Blueprint("attendance", __name__, url_prefix="/api/v1/attendance")


def _rows_body():
    j = request.get_json(silent=True)
    rows = j.get("rows") if isinstance(j, dict) else j
    if not isinstance(rows, list):
        raise ValidationError("rows must be a list")
    return rows, (j if isinstance(j, dict) else {})


def _filters(model):
    if not request.args.get("period"):
        raise ValidationError("period is required")
    start, end = period_bounds(request.args["period"])
    q = select(model).where(model.work_date >= start, model.work_date <= end)
    if request.args.get("staffId"):
        try:
            q = q.where(model.staff_id == int(request.args["staffId"]))
        except ValueError:
            raise ValidationError("staffId must be integer")
    return q.order_by(model.staff_id, model.work_date, model.id)


@bp.post("/import")
@requires_roles("admin")
def import_attendance():
    rows, j = _rows_body()
    replace = j.get("replace", True)
    return created(attendance_store.import_attendance(rows, replace=bool(replace)))


@bp.get("")
@requires_roles("admin")
def list_attendance():
    rows = db.session.execute(_filters(AttendanceRecord)).scalars().all()
    return ok([attendance_store.attendance_row(r) for r in rows], total=len(rows))


@bp.post("/shifts/import")
@requires_roles("admin")
def import_shifts():
    rows, _ = _rows_body()
    return created(attendance_store.import_shifts(rows))


@bp.get("/shifts")
@requires_roles("admin")
def list_shifts():
    rows = db.session.execute(_filters(ShiftRecord)).scalars().all()
    return ok([attendance_store.shift_row(r) for r in rows], total=len(rows))
