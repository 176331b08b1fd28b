from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import Blueprint, request

from kg_api.extensions import db
from kg_api.common.auth import requires_roles
from kg_api.common.errors import ValidationError, NotFoundError, ConflictError
from kg_api.common.http import ok, created
from kg_api.common.paging import page_limit
from kg_api.models.staff import StaffProfile, SALARY_TYPES
from kg_api.models.user import User

bp = Blueprint("staff", __name__, url_prefix="/api/v1/staff")

# ---------- helpers ----------
def _dec(x, name: str) -> Optional[Decimal]:
    if x is None or x == "":
        return None
    try:
        v = Decimal(str(x))
    except Exception:
        raise ValidationError(f"{name} must be a number")
    if v < 0:
        raise ValidationError(f"{name} cannot be negative")
    return v

def _row(s: StaffProfile) -> Dict[str, Any]:
    return {
        "id": s.id,
        "userId": s.user_id,
        "fullName": s.full_name,
        "role": s.role,
        "baseSalary": float(s.base_salary or 0),
        "baseSalaryType": s.base_salary_type,
        "shiftRate": float(s.shift_rate or 0),
        "normDays": s.norm_days,
        "active": bool(s.active),
        "payrollEligible": s.payroll_eligible,
    }

def _get_or_404(staff_id: int) -> StaffProfile:
    s = db.session.get(StaffProfile, staff_id)
    if s is None:
        raise NotFoundError("Staff not found", payload={"staffId": staff_id})
    return s

def _apply(s: StaffProfile, j: Dict[str, Any]):
    if "fullName" in j:
        name = (j.get("fullName") or "").strip()
        if not name:
            raise ValidationError("fullName is required")
        s.full_name = name
    if "role" in j:
        s.role = (j.get("role") or "teacher").strip().lower()
    if "baseSalaryType" in j:
        t = (j.get("baseSalaryType") or "").strip().lower()
        if t not in SALARY_TYPES:
            raise ValidationError(f"baseSalaryType must be one of {', '.join(SALARY_TYPES)}")
        s.base_salary_type = t
    if "baseSalary" in j:
        s.base_salary = _dec(j.get("baseSalary"), "baseSalary") or 0
    if "shiftRate" in j:
        s.shift_rate = _dec(j.get("shiftRate"), "shiftRate") or 0
    if "normDays" in j:
        nd = j.get("normDays")
        if nd in (None, ""):
            s.norm_days = None
        else:
            try:
                nd = int(nd)
            except (TypeError, ValueError):
                raise ValidationError("normDays must be an integer")
            if nd <= 0:
                raise ValidationError("normDays must be positive")
            s.norm_days = nd
    if "active" in j:
        s.active = bool(j.get("active"))
    if "userId" in j:
        uid = j.get("userId")
        if uid is not None and db.session.get(User, uid) is None:
            raise NotFoundError("User not found", payload={"userId": uid})
        s.user_id = uid

# ---------- routes ----------
@bp.get("")
@requires_roles("admin")
def list_staff():
    q = StaffProfile.query
    if request.args.get("role"):
        q = q.filter(StaffProfile.role == request.args["role"].strip().lower())
    if request.args.get("active") is not None:
        q = q.filter(StaffProfile.active.is_(request.args["active"].lower() in ("1", "true", "yes")))
    page, size = page_limit()
    total = q.count()
    rows = q.order_by(StaffProfile.full_name.asc(), StaffProfile.id.asc()).offset((page - 1) * size).limit(size).all()
    return ok([_row(s) for s in rows], page=page, size=size, total=total)

@bp.post("")
@requires_roles("admin")
def create_staff():
    j = request.get_json(silent=True) or {}
    if not (j.get("fullName") or "").strip():
        raise ValidationError("fullName is required")
    s = StaffProfile(role="teacher", base_salary_type="month", active=True)
    _apply(s, j)
    db.session.add(s)
    db.session.commit()
    return created(_row(s))

@bp.get("/<int:staff_id>")
@requires_roles("admin")
def get_staff(staff_id: int):
    return ok(_row(_get_or_404(staff_id)))

@bp.patch("/<int:staff_id>")
@requires_roles("admin")
def patch_staff(staff_id: int):
    s = _get_or_404(staff_id)
    _apply(s, request.get_json(silent=True) or {})
    db.session.commit()
    return ok(_row(s))

@bp.delete("/<int:staff_id>")
@requires_roles("admin")
def delete_staff(staff_id: int):
    """Staff with payroll history are deactivated rather than removed."""
    from kg_api.models.payroll import PayrollRecord
    s = _get_or_404(staff_id)
    if PayrollRecord.query.filter_by(staff_id=s.id).first() is not None:
        if not s.active:
            raise ConflictError("Staff member has payroll records and is already inactive")
        s.active = False
        db.session.commit()
        return ok({"deactivated": staff_id})
    db.session.delete(s)
    db.session.commit()
    return ok({"deleted": staff_id})
