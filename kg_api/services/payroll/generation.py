# kg_api/services/payroll/generation.py
"""
Batch generation of payroll sheets for a period.

1. main thread: load roster, settings and all facts of the period in bulk
2. worker pool: aggregate attendance + price penalties per staff member
   (pure, disjoint per staff, no session access)
3. main thread: serial upsert per staff member, one commit each

Per-staff failures are collected, never abort the batch. The overall timeout
covers both phases: staff whose computation is still running, or whose record
was not yet written when it expires, are reported as pending. Records already
written stay written and a re-run picks up the rest.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from flask import current_app
from sqlalchemy import select, or_

from kg_api.extensions import db
from kg_api.common.errors import APIError, ConflictError, NotFoundError, ValidationError
from kg_api.common.period import normalize_period, period_bounds
from kg_api.models.payroll import PayrollRecord
from kg_api.models.staff import StaffProfile, EXCLUDED_ROLES
from kg_api.services import attendance_store
from kg_api.services.settings_store import SettingsStore
from .aggregator import AttendanceAggregate, AttendanceFact, ShiftFact, aggregate
from .compensation import apply_aggregate, apply_salary_config, drop_aggregate_overrides
from .debt import carry_in_for, ensure_not_closed
from .penalties import PenaltyPolicy, PenaltyResult, compute_penalties
from .store import PayrollStore

log = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class StaffJob:
    staff_id: int
    base_salary_type: str
    period_start: Any
    period_end: Any
    attendance: Sequence[AttendanceFact] = field(default_factory=tuple)
    shifts: Sequence[ShiftFact] = field(default_factory=tuple)


@dataclass(frozen=True)
class StaffComputation:
    staff_id: int
    aggregate: AttendanceAggregate
    penalties: PenaltyResult


@dataclass
class StaffSheet:
    staff: StaffProfile
    record: PayrollRecord
    error: Optional[Dict[str, Any]] = None

    @property
    def virtual(self) -> bool:
        return self.record.id is None


def compute_staff(job: StaffJob, policy: PenaltyPolicy) -> StaffComputation:
    agg = aggregate(job.staff_id, job.period_start, job.period_end, job.base_salary_type,
                    job.attendance, job.shifts)
    return StaffComputation(staff_id=job.staff_id, aggregate=agg, penalties=compute_penalties(policy, agg))


def _error(staff_id, exc: Exception) -> Dict[str, Any]:
    if isinstance(exc, APIError):
        return {"staffId": staff_id, "code": exc.code, "message": exc.message}
    return {"staffId": staff_id, "code": "INTERNAL_ERROR", "message": str(exc) or exc.__class__.__name__}


class GenerationOrchestrator:
    def __init__(
        self,
        store: Optional[PayrollStore] = None,
        settings_store: Optional[SettingsStore] = None,
        workers: int = DEFAULT_WORKERS,
        timeout: Optional[float] = None,
        compute: Callable[[StaffJob, PenaltyPolicy], StaffComputation] = compute_staff,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store or PayrollStore()
        self.settings_store = settings_store or SettingsStore()
        self.workers = max(int(workers or 1), 1)
        self.timeout = timeout
        self._compute = compute
        self._clock = clock

    @classmethod
    def for_app(cls, app=None, **kw) -> "GenerationOrchestrator":
        app = app or current_app
        kw.setdefault("settings_store", SettingsStore.for_app(app))
        kw.setdefault("workers", app.config.get("PAYROLL_WORKERS", DEFAULT_WORKERS))
        kw.setdefault("timeout", app.config.get("PAYROLL_GENERATION_TIMEOUT"))
        return cls(**kw)

    # ---------- helpers ----------
    def _eligible_staff(self, staff_ids: Optional[Sequence[int]] = None) -> List[StaffProfile]:
        q = select(StaffProfile).where(
            StaffProfile.active.is_(True),
            StaffProfile.role.notin_(EXCLUDED_ROLES),
        )
        if staff_ids is not None:
            q = q.where(StaffProfile.id.in_(list(staff_ids)))
        return list(db.session.execute(q.order_by(StaffProfile.id)).scalars().unique())

    def _jobs(self, staff: Sequence[StaffProfile], period: str) -> List[StaffJob]:
        start, end = period_bounds(period)
        ids = [s.id for s in staff]
        facts = attendance_store.load_attendance(ids, start, end)
        shifts = attendance_store.load_shifts(ids, start, end)
        return [
            StaffJob(
                staff_id=s.id,
                base_salary_type=s.base_salary_type or "month",
                period_start=start,
                period_end=end,
                attendance=tuple(facts.get(s.id, ())),
                shifts=tuple(shifts.get(s.id, ())),
            )
            for s in staff
        ]

    def _write(self, staff: StaffProfile, period: str, result: StaffComputation,
               settings: Dict[str, Any], force: bool, by=None):
        def _build(rec: PayrollRecord, created: bool):
            if force and not created:
                rec.overrides = drop_aggregate_overrides(rec.overrides)
            apply_salary_config(rec, staff, settings)
            rec.debt_carry_in = carry_in_for(staff.id, period, self.store.session)
            apply_aggregate(rec, result.aggregate, result.penalties)
            if created:
                rec.add_history("generated", by=by)
            elif force:
                rec.add_history("regenerated", comment="forced", by=by)

        return self.store.upsert_draft(staff.id, period, _build, force=force)

    def _persist(self, staff: StaffProfile, period: str, fut, settings, force: bool, by=None):
        """Write one finished computation in its own transaction -> (outcome, error)."""
        exc = fut.exception()
        if exc is not None:
            log.warning("payroll computation failed staff=%s period=%s: %s", staff.id, period, exc)
            return None, _error(staff.id, exc)
        try:
            _, outcome = self._write(staff, period, fut.result(), settings, force, by=by)
            self.store.session.commit()
        except Exception as e:
            self.store.session.rollback()
            if not isinstance(e, APIError):
                log.exception("payroll write failed staff=%s period=%s", staff.id, period)
            return None, _error(staff.id, e)
        return outcome, None

    # ---------- operations ----------
    def generate_sheets(self, period: str, force: bool = False, timeout: Optional[float] = None,
                        by=None) -> Dict[str, Any]:
        period = normalize_period(period)
        timeout = self.timeout if timeout is None else timeout
        settings = self.settings_store.get()
        policy = self.settings_store.policy()

        deadline = None if timeout is None else self._clock() + timeout

        staff = self._eligible_staff()
        closed = PayrollRecord.debt_processed.is_(True)
        frozen = set(db.session.execute(
            select(PayrollRecord.staff_id).where(
                PayrollRecord.period == period,
                closed if force else or_(PayrollRecord.status != "draft", closed),
            )
        ).scalars())

        todo = [s for s in staff if s.id not in frozen]
        skipped = len(staff) - len(todo)
        by_id = {s.id: s for s in todo}
        jobs = self._jobs(todo, period)

        generated = 0
        errors: List[Dict[str, Any]] = []

        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="payroll")
        futures = {pool.submit(self._compute, job, policy): job.staff_id for job in jobs}
        outstanding = set(futures)
        try:
            remaining = None if deadline is None else max(deadline - self._clock(), 0)
            # results are written as they arrive; one deadline bounds compute and writes
            for fut in as_completed(futures, timeout=remaining):
                outstanding.discard(fut)
                sid = futures[fut]
                outcome, err = self._persist(by_id[sid], period, fut, settings, force, by)
                if err is not None:
                    errors.append(err)
                elif outcome == "skipped":
                    skipped += 1
                else:
                    generated += 1
                if deadline is not None and outstanding and self._clock() >= deadline:
                    break
        except FuturesTimeoutError:
            log.info("payroll generation period=%s reached its deadline", period)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        pending = sorted(futures[f] for f in outstanding)
        errors.sort(key=lambda e: e["staffId"])

        timed_out = bool(pending)
        if timed_out:
            log.warning("payroll generation period=%s timed out, %s pending", period, len(pending))
        log.info("payroll generation period=%s generated=%s skipped=%s errors=%s",
                 period, generated, skipped, len(errors))
        return {
            "period": period,
            "generated": generated,
            "skipped": skipped,
            "errors": errors,
            "timedOut": timed_out,
            "pending": pending,
        }

    def calculate(self, staff_id: int, period: str, force: bool = False, by=None) -> PayrollRecord:
        """Recompute one staff member's record; refuses non-draft records unless forced."""
        period = normalize_period(period)
        staff = db.session.get(StaffProfile, staff_id)
        if staff is None:
            raise NotFoundError("Staff not found", payload={"staffId": staff_id})
        if not staff.payroll_eligible:
            raise ValidationError("Staff member is not on payroll", payload={"staffId": staff_id, "role": staff.role})

        settings = self.settings_store.get()
        job = self._jobs([staff], period)[0]
        result = self._compute(job, self.settings_store.policy())

        try:
            rec, outcome = self._write(staff, period, result, settings, force, by=by)
            if outcome == "skipped":
                ensure_not_closed(rec)
                raise ConflictError(
                    f"Payroll record is '{rec.status}', use force to recalculate",
                    payload={"id": rec.id, "status": rec.status},
                )
            self.store.session.commit()
        except Exception:
            self.store.session.rollback()
            raise
        return rec

    def preview(self, period: str, staff_ids: Optional[Sequence[int]] = None) -> List[StaffSheet]:
        """
        One sheet per eligible staff member: the stored record, or an unsaved
        record computed from the current facts when none exists yet.
        Nothing is written.
        """
        period = normalize_period(period)
        staff = self._eligible_staff(staff_ids)
        stored = {
            r.staff_id: r
            for r in db.session.execute(
                select(PayrollRecord).where(
                    PayrollRecord.period == period,
                    PayrollRecord.staff_id.in_([s.id for s in staff]),
                )
            ).scalars().unique()
        }

        missing = [s for s in staff if s.id not in stored]
        jobs = {job.staff_id: job for job in self._jobs(missing, period)} if missing else {}
        settings = self.settings_store.get() if missing else None
        policy = self.settings_store.policy() if missing else None

        sheets = []
        for s in staff:
            if s.id in stored:
                sheets.append(StaffSheet(staff=s, record=stored[s.id]))
                continue
            virtual = PayrollRecord(staff_id=s.id, period=period, status="draft", overrides={}, history=[])
            try:
                result = self._compute(jobs[s.id], policy)
                apply_salary_config(virtual, s, settings)
                virtual.debt_carry_in = carry_in_for(s.id, period, self.store.session)
                apply_aggregate(virtual, result.aggregate, result.penalties)
            except APIError as e:
                sheets.append(StaffSheet(staff=s, record=virtual, error=_error(s.id, e)))
                continue
            sheets.append(StaffSheet(staff=s, record=virtual))
        return sheets
