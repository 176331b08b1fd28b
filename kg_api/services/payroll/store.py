# kg_api/services/payroll/store.py
"""
Persistence for PayrollRecord.

- One record per (staff_id, period): the unique key is the arbiter, inserts
  go through a SAVEPOINT and fall back to "reload and update if draft".
- Writes to an existing record are read-modify-write under SQLAlchemy's
  version counter; a stale version is retried, then surfaced as ConflictError.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from kg_api.extensions import db
from kg_api.common.errors import ConflictError, NotFoundError
from kg_api.models.payroll import PayrollRecord

log = logging.getLogger(__name__)

DEFAULT_RETRIES = 3


class PayrollStore:
    def __init__(self, session=None, retries: int = DEFAULT_RETRIES):
        self._session = session if session is not None else db.session
        self._retries = max(int(retries), 1)

    @property
    def session(self):
        return self._session

    # ---------- reads ----------
    def get(self, record_id: int) -> Optional[PayrollRecord]:
        return self._session.get(PayrollRecord, record_id)

    def get_or_404(self, record_id: int) -> PayrollRecord:
        rec = self.get(record_id)
        if rec is None:
            raise NotFoundError("Payroll record not found", payload={"id": record_id})
        return rec

    def find(self, staff_id: int, period: str, fresh: bool = False) -> Optional[PayrollRecord]:
        q = select(PayrollRecord).where(
            PayrollRecord.staff_id == staff_id,
            PayrollRecord.period == period,
        )
        if fresh:
            q = q.execution_options(populate_existing=True)
        return self._session.execute(q).unique().scalar_one_or_none()

    def list(self, period=None, staff_id=None, status=None, page=None, size=None) -> Tuple[list, int]:
        q = select(PayrollRecord)
        if period:
            q = q.where(PayrollRecord.period == period)
        if staff_id is not None:
            q = q.where(PayrollRecord.staff_id == staff_id)
        if status:
            q = q.where(PayrollRecord.status == status)

        total = self._session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
        q = q.order_by(PayrollRecord.period.desc(), PayrollRecord.staff_id.asc(), PayrollRecord.id.asc())
        if page and size:
            q = q.offset((page - 1) * size).limit(size)
        return list(self._session.execute(q).scalars().unique()), total

    # ---------- writes ----------
    def insert(self, record: PayrollRecord) -> PayrollRecord:
        """Plain insert; a second record for the same (staff, period) is a conflict."""
        savepoint = self._session.begin_nested()
        try:
            self._session.add(record)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise ConflictError(
                "Payroll record already exists for this staff member and period",
                payload={"staffId": record.staff_id, "period": record.period},
            )
        return record

    def upsert_draft(
        self,
        staff_id: int,
        period: str,
        build: Callable[[PayrollRecord, bool], None],
        force: bool = False,
    ) -> Tuple[PayrollRecord, str]:
        """
        Insert-or-update-if-draft through the (staff_id, period) key.

        `build(record, created)` fills the record; it runs before the insert
        and again on the reloaded row when a concurrent writer won the insert.
        Returns (record, "created" | "updated" | "skipped").
        Non-draft records are left alone unless `force`. Records already
        closed by a debt run are never rebuilt.
        """
        existing = self.find(staff_id, period)
        if existing is None:
            record = PayrollRecord(staff_id=staff_id, period=period, status="draft",
                                   overrides={}, history=[])
            build(record, True)
            savepoint = self._session.begin_nested()
            try:
                self._session.add(record)
                self._session.flush()
                savepoint.commit()
                return record, "created"
            except IntegrityError:
                # another writer created the row first
                log.info("payroll upsert race staff=%s period=%s, reloading", staff_id, period)
                savepoint.rollback()
                existing = self.find(staff_id, period, fresh=True)
                if existing is None:
                    raise

        if existing.debt_processed or (existing.status != "draft" and not force):
            return existing, "skipped"

        build(existing, False)
        self._session.flush()
        return existing, "updated"

    def mutate(self, record_id: int, fn: Callable[[PayrollRecord], None]) -> PayrollRecord:
        """
        Load, apply `fn`, commit. A concurrent commit in between raises
        StaleDataError on flush; the session is rolled back and the whole
        read-modify-write is retried on fresh state.
        """
        last_exc = None
        for attempt in range(1, self._retries + 1):
            rec = self._session.execute(
                select(PayrollRecord)
                .where(PayrollRecord.id == record_id)
                .execution_options(populate_existing=True)
            ).unique().scalar_one_or_none()
            if rec is None:
                raise NotFoundError("Payroll record not found", payload={"id": record_id})
            try:
                fn(rec)
                self._session.commit()
                return rec
            except StaleDataError as e:
                self._session.rollback()
                last_exc = e
                log.warning("stale payroll record id=%s (attempt %s/%s)", record_id, attempt, self._retries)
            except Exception:
                self._session.rollback()
                raise
        raise ConflictError(
            "Payroll record was modified concurrently, please retry",
            payload={"id": record_id},
        ) from last_exc

    def delete(self, record_id: int) -> None:
        rec = self.get_or_404(record_id)
        if rec.status == "paid":
            raise ConflictError("Paid payroll records cannot be deleted", payload={"id": record_id})
        self._session.delete(rec)
        self._session.commit()

    # ---------- status ----------
    def transition(self, record_id: int, to_status: str, by=None, comment=None, **changes) -> PayrollRecord:
        """Forward-only: draft -> approved -> paid."""
        allowed = {"approved": "draft", "paid": "approved"}
        if to_status not in allowed:
            raise ConflictError(f"Unsupported status '{to_status}'")

        def _apply(rec: PayrollRecord):
            if rec.status != allowed[to_status]:
                raise ConflictError(
                    f"Cannot move payroll from '{rec.status}' to '{to_status}'",
                    payload={"id": rec.id, "status": rec.status},
                )
            rec.status = to_status
            for k, v in changes.items():
                setattr(rec, k, v)
            rec.add_history(to_status, comment=comment, by=by)

        return self.mutate(record_id, _apply)
