# kg_api/services/payroll/debt.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy import select

from kg_api.extensions import db
from kg_api.common.errors import ConflictError
from kg_api.common.period import normalize_period, next_period, previous_period
from kg_api.models.payroll import PayrollRecord
from .compensation import recompute_totals
from .penalties import money, ZERO
from .store import PayrollStore

log = logging.getLogger(__name__)


def ensure_not_closed(rec: PayrollRecord) -> None:
    """A record whose negative total became debt keeps that total for good."""
    if rec.debt_processed:
        raise ConflictError(
            "Payroll record is closed by the debt run, its total can no longer change",
            payload={"id": rec.id, "debt": float(money(rec.debt))},
        )


def carry_in_for(staff_id: int, period: str, session=None) -> Decimal:
    """Debt recorded on the staff member's previous-period record, if processed."""
    session = session if session is not None else db.session
    prev = session.execute(
        select(PayrollRecord.debt, PayrollRecord.debt_processed).where(
            PayrollRecord.staff_id == staff_id,
            PayrollRecord.period == previous_period(period),
        )
    ).first()
    if prev is None or not prev.debt_processed:
        return ZERO
    return money(prev.debt)


def calculate_debt(period: str, store: Optional[PayrollStore] = None, by=None) -> Dict[str, Any]:
    """
    Turn negative totals of `period` into debt carried into the next period.
    Only records not yet processed are touched, so re-running is a no-op.
    """
    period = normalize_period(period)
    store = store or PayrollStore()
    session = store.session
    nxt = next_period(period)

    ids = session.execute(
        select(PayrollRecord.id).where(
            PayrollRecord.period == period,
            PayrollRecord.debt_processed.is_(False),
            PayrollRecord.total < 0,
        ).order_by(PayrollRecord.id)
    ).scalars().all()

    processed = 0
    total_debt = ZERO
    for rid in ids:
        def _mark(rec: PayrollRecord):
            # re-checked on the fresh row
            if rec.debt_processed or money(rec.total) >= 0:
                raise _AlreadyProcessed()
            rec.debt = money(-money(rec.total))
            rec.debt_processed = True
            rec.add_history("debt_calculated", comment=f"debt {rec.debt}", by=by)

        try:
            rec = store.mutate(rid, _mark)
        except _AlreadyProcessed:
            continue

        processed += 1
        total_debt += rec.debt

        following = store.find(rec.staff_id, nxt)
        if following is not None and following.status == "draft":
            debt = rec.debt

            def _carry(f: PayrollRecord):
                if f.status != "draft" or f.debt_processed:
                    return
                f.debt_carry_in = debt
                recompute_totals(f)
                f.add_history("debt_carried_in", comment=f"from {period}", by=by)

            store.mutate(following.id, _carry)

    log.info("debt run period=%s processed=%s total=%s", period, processed, total_debt)
    return {"period": period, "processed": processed, "totalDebt": float(money(total_debt))}


class _AlreadyProcessed(Exception):
    pass
