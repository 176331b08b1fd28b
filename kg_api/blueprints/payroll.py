from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import Blueprint, request
from sqlalchemy import select, func, or_

from kg_api.extensions import db
from kg_api.common.auth import requires_roles, current_identity
from kg_api.common.errors import ValidationError, AuthorizationError, ConflictError
from kg_api.common.http import ok, created, fail
from kg_api.common.paging import page_limit
from kg_api.common.period import normalize_period
from kg_api.models.payroll import PayrollRecord, PAYROLL_STATUSES
from kg_api.models.user import User
from kg_api.services.payroll import fines_ledger
from kg_api.services.payroll.compensation import (
    normalize_overrides, recompute_totals, field_sources, OVERRIDABLE_FIELDS,
)
from kg_api.services.payroll.debt import calculate_debt, ensure_not_closed
from kg_api.services.payroll.generation import GenerationOrchestrator
from kg_api.services.payroll.store import PayrollStore

bp = Blueprint("payroll", __name__, url_prefix="/api/v1/payroll")

# client field -> column
_CAMEL = {
    "workedDays": "worked_days",
    "workedShifts": "worked_shifts",
    "accruals": "accruals",
    "bonuses": "bonuses",
    "advance": "advance",
    "deductions": "deductions",
    "latePenalties": "late_penalties",
    "absencePenalties": "absence_penalties",
}

# ---------- helpers ----------
def _d(s) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(str(s))
    except Exception:
        return None

def _f(x) -> Optional[float]:
    return float(x) if x is not None else None

def _int(x, name: str) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} is required and must be an integer")

def _body() -> Dict[str, Any]:
    j = request.get_json(silent=True)
    return j if isinstance(j, dict) else {}

def _bool(x) -> bool:
    if isinstance(x, str):
        return x.strip().lower() in ("1", "true", "yes", "y")
    return bool(x)

def _row(r: PayrollRecord, staff=None) -> Dict[str, Any]:
    staff = staff or r.staff
    return {
        "id": r.id,
        "staffId": r.staff_id,
        "staffName": staff.full_name if staff else None,
        "staffRole": staff.role if staff else None,
        "period": r.period,
        "baseSalary": _f(r.base_salary),
        "baseSalaryType": r.base_salary_type,
        "shiftRate": _f(r.shift_rate),
        "normDays": r.norm_days,
        "workedDays": r.worked_days,
        "workedShifts": r.worked_shifts,
        "accruals": _f(r.accruals),
        "bonuses": _f(r.bonuses),
        "bonusDetails": r.bonus_details or [],
        "advance": _f(r.advance),
        "advanceDate": r.advance_date.isoformat() if r.advance_date else None,
        "latePenalties": _f(r.late_penalties),
        "absencePenalties": _f(r.absence_penalties),
        "penaltyDetails": r.penalty_details or [],
        "userFines": _f(r.user_fines),
        "fines": [fines_ledger.fine_json(f) for f in r.fine_list()],
        "deductions": _f(r.deductions),
        "debtCarryIn": _f(r.debt_carry_in),
        "total": _f(r.total),
        "debt": _f(r.debt),
        "debtProcessed": bool(r.debt_processed),
        "status": r.status,
        "paymentDate": r.payment_date.isoformat() if r.payment_date else None,
        "sources": field_sources(r),
        "history": r.history or [],
        "version": r.version,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
        "updatedAt": r.updated_at.isoformat() if r.updated_at else None,
    }

def _own_staff_id(ident) -> Optional[int]:
    u = db.session.get(User, ident.user_id) if ident.user_id is not None else None
    return u.staff_id if u else None

def _ensure_can_view(r: PayrollRecord):
    ident = current_identity()
    if ident.is_admin:
        return
    if r.staff_id != _own_staff_id(ident):
        raise AuthorizationError("You can only view your own payroll")

# ---------- batch ----------
@bp.post("/generate-sheets")
@requires_roles("admin")
def generate_sheets():
    j = _body()
    period = normalize_period(j.get("period"))
    timeout = j.get("timeout")
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise ValidationError("timeout must be a number of seconds")
    result = GenerationOrchestrator.for_app().generate_sheets(
        period, force=_bool(j.get("force")), timeout=timeout, by=current_identity().user_id,
    )
    return ok(result)

@bp.post("/calculate")
@requires_roles("admin")
def calculate():
    j = _body()
    staff_id = _int(j.get("staffId"), "staffId")
    period = normalize_period(j.get("period"))
    rec = GenerationOrchestrator.for_app().calculate(
        staff_id, period, force=_bool(j.get("force")), by=current_identity().user_id,
    )
    return ok(_row(rec))

@bp.post("/calculate-debt")
@requires_roles("admin")
def debt():
    j = _body()
    return ok(calculate_debt(normalize_period(j.get("period")), by=current_identity().user_id))

# ---------- read ----------
@bp.get("")
@requires_roles("admin", "staff")
def list_payrolls():
    ident = current_identity()
    period = normalize_period(request.args["period"]) if request.args.get("period") else None
    status = (request.args.get("status") or "").strip().lower() or None
    if status and status not in PAYROLL_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(PAYROLL_STATUSES)}")

    staff_id = None
    if request.args.get("staffId"):
        staff_id = _int(request.args.get("staffId"), "staffId")
    if not ident.is_admin:
        own = _own_staff_id(ident)
        if own is None or (staff_id is not None and staff_id != own):
            page, size = page_limit()
            return ok([], page=page, size=size, total=0)
        staff_id = own

    page, size = page_limit()
    rows, total = PayrollStore().list(period=period, staff_id=staff_id, status=status, page=page, size=size)
    return ok([_row(r) for r in rows], page=page, size=size, total=total)

@bp.get("/by-users")
@requires_roles("admin", "staff")
def list_by_users():
    """Every eligible staff member for the period; unsaved rows carry id null."""
    ident = current_identity()
    period = normalize_period(request.args.get("period"))
    staff_ids = None
    if request.args.get("staffId"):
        staff_ids = [_int(request.args.get("staffId"), "staffId")]
    if not ident.is_admin:
        own = _own_staff_id(ident)
        if own is None or (staff_ids is not None and staff_ids != [own]):
            return ok([], total=0)
        staff_ids = [own]

    out = []
    for sheet in GenerationOrchestrator.for_app().preview(period, staff_ids=staff_ids):
        row = _row(sheet.record, staff=sheet.staff)
        row["virtual"] = sheet.virtual
        if sheet.error:
            row["error"] = sheet.error
        out.append(row)
    return ok(out, total=len(out))

@bp.get("/summary")
@requires_roles("admin")
def summary():
    period = normalize_period(request.args.get("period"))
    q = select(
        func.count(PayrollRecord.id),
        func.coalesce(func.sum(PayrollRecord.accruals), 0),
        func.coalesce(func.sum(PayrollRecord.advance), 0),
        func.coalesce(func.sum(PayrollRecord.late_penalties + PayrollRecord.absence_penalties
                               + PayrollRecord.user_fines), 0),
        func.coalesce(func.sum(PayrollRecord.total), 0),
    ).where(
        PayrollRecord.period == period,
        or_(PayrollRecord.worked_days > 0, PayrollRecord.worked_shifts > 0),
    )
    n, accruals, advance, penalties, payout = db.session.execute(q).one()
    return ok({
        "period": period,
        "totalEmployees": int(n or 0),
        "totalAccruals": float(Decimal(str(accruals))),
        "totalAdvance": float(Decimal(str(advance))),
        "totalPenalties": float(Decimal(str(penalties))),
        "totalPayout": float(Decimal(str(payout))),
    })

@bp.get("/<int:payroll_id>")
@requires_roles("admin", "staff")
def get_payroll(payroll_id: int):
    r = PayrollStore().get_or_404(payroll_id)
    _ensure_can_view(r)
    return ok(_row(r))

# ---------- manual edit ----------
@bp.patch("/<int:payroll_id>")
@requires_roles("admin")
def patch_payroll(payroll_id: int):
    j = _body()
    raw = dict(j.get("overrides") or {})
    for k, col in _CAMEL.items():
        if k in j:
            raw[k] = j[k]
    values = {}
    for k, v in raw.items():
        col = _CAMEL.get(k, k)
        if col not in OVERRIDABLE_FIELDS:
            raise ValidationError(f"'{k}' cannot be edited")
        values[col] = v

    advance_date = None
    if j.get("advanceDate"):
        advance_date = _d(j.get("advanceDate"))
        if advance_date is None:
            raise ValidationError("advanceDate must be YYYY-MM-DD")
    bonus_details = j.get("bonusDetails")
    if bonus_details is not None and not isinstance(bonus_details, list):
        raise ValidationError("bonusDetails must be a list")
    by = current_identity().user_id

    def _edit(r: PayrollRecord):
        if r.status != "draft":
            raise ConflictError(f"Payroll in status '{r.status}' cannot be edited",
                                payload={"id": r.id, "status": r.status})
        ensure_not_closed(r)
        r.overrides = normalize_overrides(values, r.overrides)
        if bonus_details is not None:
            r.bonus_details = bonus_details
        if advance_date is not None:
            r.advance_date = advance_date
        recompute_totals(r)
        r.add_history("edited", comment=j.get("comment") or ", ".join(sorted(values)), by=by)

    return ok(_row(PayrollStore().mutate(payroll_id, _edit)))

@bp.delete("/<int:payroll_id>")
@requires_roles("admin")
def delete_payroll(payroll_id: int):
    PayrollStore().delete(payroll_id)
    return ok({"deleted": payroll_id})

# ---------- status ----------
@bp.patch("/<int:payroll_id>/approve")
@requires_roles("admin")
def approve(payroll_id: int):
    j = _body()
    r = PayrollStore().transition(payroll_id, "approved", by=current_identity().user_id,
                                  comment=j.get("comment"))
    return ok(_row(r))

@bp.patch("/<int:payroll_id>/mark-paid")
@requires_roles("admin")
def mark_paid(payroll_id: int):
    j = _body()
    pay_date = date.today()
    if j.get("paymentDate"):
        pay_date = _d(j.get("paymentDate"))
        if pay_date is None:
            raise ValidationError("paymentDate must be YYYY-MM-DD")
    r = PayrollStore().transition(payroll_id, "paid", by=current_identity().user_id,
                                  comment=j.get("comment"), payment_date=pay_date)
    return ok(_row(r))

# ---------- fines ----------
@bp.post("/<int:payroll_id>/fines")
@requires_roles("admin")
def add_fine(payroll_id: int):
    r = fines_ledger.add_fine(payroll_id, _body(), created_by=current_identity().user_id)
    return created(_row(r))

@bp.post("/fines")
@requires_roles("admin")
def add_fine_for_staff():
    j = _body()
    staff_id = _int(j.get("staffId"), "staffId")
    if not j.get("period"):
        return fail("period is required", 422, code="VALIDATION_ERROR")
    r = fines_ledger.add_fine_for(staff_id, j.get("period"), j, created_by=current_identity().user_id)
    return created(_row(r))

@bp.delete("/<int:payroll_id>/fines/<fine_id>")
@requires_roles("admin")
def remove_fine(payroll_id: int, fine_id: str):
    r = fines_ledger.remove_fine(payroll_id, fine_id, by=current_identity().user_id)
    return ok(_row(r))
