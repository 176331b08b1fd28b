# kg_api/services/payroll/fines_ledger.py
"""
Manual fines attached to a payroll record.

Fines are keyed by a stable uuid hex id. Each add/remove recomputes
user_fines and total on the same record and commits once.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from kg_api.extensions import db
from kg_api.common.errors import ValidationError, ConflictError, NotFoundError
from kg_api.common.period import normalize_period
from kg_api.models.payroll import PayrollRecord, FineEntry, FINE_TYPES
from kg_api.models.staff import StaffProfile
from .compensation import recompute_totals, apply_salary_config
from .debt import carry_in_for, ensure_not_closed
from .penalties import money
from .store import PayrollStore

log = logging.getLogger(__name__)


def validate_fine(data: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError("fine must be an object")
    try:
        amount = Decimal(str(data.get("amount")))
    except Exception:
        raise ValidationError("amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be greater than 0")
    reason = str(data.get("reason") or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    typ = str(data.get("type") or "manual").strip().lower()
    if typ not in FINE_TYPES:
        raise ValidationError(f"type must be one of {', '.join(FINE_TYPES)}")
    raw_date = data.get("date")
    fine_date = date.today()
    if raw_date:
        try:
            fine_date = date.fromisoformat(str(raw_date))
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")
    return {"amount": money(amount), "reason": reason[:255], "type": typ, "date": fine_date}


def _ensure_open(rec: PayrollRecord):
    if rec.status == "paid":
        raise ConflictError("Fines cannot be changed on a paid payroll record",
                            payload={"id": rec.id, "status": rec.status})
    ensure_not_closed(rec)


def _attach(rec: PayrollRecord, fine: Dict[str, Any], created_by=None) -> FineEntry:
    _ensure_open(rec)
    entry = FineEntry(id=uuid4().hex, created_by=created_by, **fine)
    rec.fines[entry.id] = entry
    recompute_totals(rec)
    rec.add_history("fine_added", comment=f"{entry.amount} {entry.reason}", by=created_by)
    return entry


def add_fine(payroll_id: int, data: Mapping[str, Any], created_by=None,
             store: Optional[PayrollStore] = None) -> PayrollRecord:
    fine = validate_fine(data)
    store = store or PayrollStore()
    rec = store.mutate(payroll_id, lambda r: _attach(r, fine, created_by))
    log.info("fine added payroll=%s amount=%s", payroll_id, fine["amount"])
    return rec


def add_fine_for(staff_id: int, period: str, data: Mapping[str, Any], created_by=None,
                 store: Optional[PayrollStore] = None, settings: Optional[Mapping[str, Any]] = None) -> PayrollRecord:
    """Attach a fine by (staff, period), creating an empty draft record when none exists."""
    fine = validate_fine(data)
    period = normalize_period(period)
    store = store or PayrollStore()

    rec = store.find(staff_id, period)
    if rec is None:
        staff = db.session.get(StaffProfile, staff_id)
        if staff is None:
            raise NotFoundError("Staff not found", payload={"staffId": staff_id})
        if not staff.payroll_eligible:
            raise ValidationError("Staff member is not on payroll",
                                  payload={"staffId": staff_id, "role": staff.role, "active": bool(staff.active)})
        if settings is None:
            from kg_api.services.settings_store import SettingsStore
            settings = SettingsStore.for_app().get()

        def _init(r: PayrollRecord, created: bool):
            if not created:
                return
            apply_salary_config(r, staff, settings)
            r.debt_carry_in = carry_in_for(staff_id, period, store.session)
            recompute_totals(r)
            r.add_history("created", comment="created by fine", by=created_by)

        try:
            rec, outcome = store.upsert_draft(staff_id, period, _init)
            if outcome == "created":
                _attach(rec, fine, created_by)
                store.session.commit()
                log.info("fine added to new draft staff=%s period=%s", staff_id, period)
                return rec
            store.session.commit()
        except Exception:
            store.session.rollback()
            raise

    return add_fine(rec.id, fine, created_by=created_by, store=store)


def remove_fine(payroll_id: int, fine_id: str, by=None,
                store: Optional[PayrollStore] = None) -> PayrollRecord:
    store = store or PayrollStore()

    def _detach(rec: PayrollRecord):
        entry = rec.fines.get(fine_id)
        if entry is None:
            raise NotFoundError("Fine not found", payload={"id": payroll_id, "fineId": fine_id})
        _ensure_open(rec)
        del rec.fines[fine_id]
        recompute_totals(rec)
        rec.add_history("fine_removed", comment=f"{entry.amount} {entry.reason}", by=by)

    return store.mutate(payroll_id, _detach)


def fine_json(f: FineEntry) -> Dict[str, Any]:
    return {
        "id": f.id,
        "amount": float(f.amount),
        "reason": f.reason,
        "type": f.type,
        "date": f.date.isoformat() if f.date else None,
        "createdBy": f.created_by,
        "createdAt": f.created_at.isoformat() if f.created_at else None,
    }
