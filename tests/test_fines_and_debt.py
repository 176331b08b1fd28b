from decimal import Decimal

import pytest

from kg_api.common.errors import ConflictError, NotFoundError, ValidationError
from kg_api.models.payroll import FineEntry, PayrollRecord
from kg_api.services.payroll import fines_ledger
from kg_api.services.payroll.debt import calculate_debt
from kg_api.services.payroll.generation import GenerationOrchestrator
from kg_api.services.payroll.store import PayrollStore

PERIOD = "2025-09"


@pytest.fixture
def draft(app, session, staff_a):
    GenerationOrchestrator.for_app(app).generate_sheets(PERIOD)
    return PayrollStore().find(staff_a.id, PERIOD)


def test_ledger_keeps_user_fines_equal_to_entries(session, draft):
    base_total = draft.total
    rid = draft.id

    rec = fines_ledger.add_fine(rid, {"amount": 300, "reason": "Late report", "type": "manual"})
    rec = fines_ledger.add_fine(rid, {"amount": "200.50", "reason": "Uniform", "type": "late",
                                      "date": "2025-09-10"})
    assert rec.user_fines == Decimal("500.50")
    assert rec.total == base_total - Decimal("500.50")
    assert sum(f.amount for f in rec.fine_list()) == rec.user_fines
    assert len({f.id for f in rec.fine_list()}) == 2

    first_id = rec.fine_list()[0].id
    rec = fines_ledger.remove_fine(rid, first_id)
    assert rec.user_fines == Decimal("200.50")
    assert rec.total == base_total - Decimal("200.50")
    assert [h["action"] for h in rec.history][-3:] == ["fine_added", "fine_added", "fine_removed"]
    assert session.query(FineEntry).count() == 1


def test_unknown_fine_is_not_found_and_changes_nothing(draft):
    fines_ledger.add_fine(draft.id, {"amount": 100, "reason": "x"})
    with pytest.raises(NotFoundError):
        fines_ledger.remove_fine(draft.id, "does-not-exist")
    rec = PayrollStore().get(draft.id)
    assert rec.user_fines == Decimal("100.00")
    assert len(rec.fines) == 1


@pytest.mark.parametrize("payload", [
    {"amount": 0, "reason": "x"},
    {"amount": -5, "reason": "x"},
    {"amount": "abc", "reason": "x"},
    {"amount": 10, "reason": "  "},
    {"amount": 10, "reason": "x", "type": "bonus"},
    {"amount": 10, "reason": "x", "date": "10/09/2025"},
])
def test_invalid_fines(draft, payload):
    with pytest.raises(ValidationError):
        fines_ledger.add_fine(draft.id, payload)


def test_paid_records_refuse_fines(draft):
    fine_id = fines_ledger.add_fine(draft.id, {"amount": 100, "reason": "x"}).fine_list()[0].id
    store = PayrollStore()
    store.transition(draft.id, "approved")
    store.transition(draft.id, "paid")
    with pytest.raises(ConflictError):
        fines_ledger.add_fine(draft.id, {"amount": 100, "reason": "y"})
    with pytest.raises(ConflictError):
        fines_ledger.remove_fine(draft.id, fine_id)


def test_fine_for_missing_record_creates_draft(app, session, staff_a):
    rec = fines_ledger.add_fine_for(staff_a.id, " 2025-09 ", {"amount": 300, "reason": "Broken toy"})
    assert rec.period == "2025-09"
    assert rec.status == "draft"
    assert rec.accruals == Decimal("0.00")
    assert rec.total == Decimal("-300.00")
    assert [h["action"] for h in rec.history] == ["created", "fine_added"]

    # the second fine lands on the same record
    rec = fines_ledger.add_fine_for(staff_a.id, PERIOD, {"amount": 100, "reason": "Again"})
    assert len(rec.fines) == 2

    # generation later fills in the attendance side and keeps the fines
    GenerationOrchestrator.for_app(app).generate_sheets(PERIOD)
    rec = PayrollStore().find(staff_a.id, PERIOD)
    assert rec.user_fines == Decimal("400.00")
    assert rec.total == Decimal("90909.00") - Decimal("850.00") - Decimal("400.00")


def test_fine_for_unknown_staff(session):
    with pytest.raises(NotFoundError):
        fines_ledger.add_fine_for(4242, PERIOD, {"amount": 1, "reason": "x"})


def test_debt_carries_into_next_period(app, session, make_staff):
    s = make_staff("Indebted")
    sid = s.id
    fines_ledger.add_fine_for(sid, PERIOD, {"amount": 5000, "reason": "Damage"})

    res = calculate_debt(PERIOD)
    assert res == {"period": PERIOD, "processed": 1, "totalDebt": 5000.0}
    rec = PayrollStore().find(sid, PERIOD)
    assert rec.debt == Decimal("5000.00")
    assert rec.debt_processed is True
    version = rec.version

    # next period generated afterwards picks the carry-in up
    GenerationOrchestrator.for_app(app).generate_sheets("2025-10")
    nxt = PayrollStore().find(sid, "2025-10")
    assert nxt.debt_carry_in == Decimal("5000.00")
    assert nxt.total == Decimal("-5000.00")

    # re-running is a no-op for processed records
    assert calculate_debt(PERIOD)["processed"] == 0
    rec = PayrollStore().find(sid, PERIOD)
    assert rec.debt == Decimal("5000.00")
    assert rec.version == version


def test_debt_updates_existing_next_draft(app, session, staff_a):
    orch = GenerationOrchestrator.for_app(app)
    fines_ledger.add_fine_for(staff_a.id, "2025-08", {"amount": 5000, "reason": "Damage"})
    orch.generate_sheets(PERIOD)
    before = PayrollStore().find(staff_a.id, PERIOD).total

    calculate_debt("2025-08")
    rec = PayrollStore().find(staff_a.id, PERIOD)
    assert rec.debt_carry_in == Decimal("5000.00")
    assert rec.total == before - Decimal("5000.00")
    assert rec.history[-1]["action"] == "debt_carried_in"


def test_debt_leaves_approved_next_record_alone(app, session, staff_a):
    orch = GenerationOrchestrator.for_app(app)
    fines_ledger.add_fine_for(staff_a.id, "2025-08", {"amount": 5000, "reason": "Damage"})
    orch.generate_sheets(PERIOD)
    rec = PayrollStore().find(staff_a.id, PERIOD)
    PayrollStore().transition(rec.id, "approved")

    assert calculate_debt("2025-08")["processed"] == 1
    assert PayrollStore().find(staff_a.id, PERIOD).debt_carry_in == Decimal("0.00")


def test_positive_totals_carry_no_debt(app, session, staff_a):
    GenerationOrchestrator.for_app(app).generate_sheets(PERIOD)
    assert calculate_debt(PERIOD) == {"period": PERIOD, "processed": 0, "totalDebt": 0.0}


@pytest.mark.parametrize("kw", [{"role": "tenant"}, {"role": "speech_therapist"}, {"active": False}])
def test_fine_for_staff_off_payroll_is_refused(session, make_staff, kw):
    s = make_staff("Off payroll", **kw)
    with pytest.raises(ValidationError):
        fines_ledger.add_fine_for(s.id, PERIOD, {"amount": 100, "reason": "x"})
    assert session.query(PayrollRecord).count() == 0


def test_debt_closed_record_keeps_its_total(app, session, make_staff):
    sid = make_staff("Indebted").id
    rec = fines_ledger.add_fine_for(sid, PERIOD, {"amount": 5000, "reason": "Damage"})
    rid, fine_id = rec.id, rec.fine_list()[0].id
    calculate_debt(PERIOD)

    with pytest.raises(ConflictError):
        fines_ledger.remove_fine(rid, fine_id)
    with pytest.raises(ConflictError):
        fines_ledger.add_fine(rid, {"amount": 1, "reason": "more"})

    orch = GenerationOrchestrator.for_app(app)
    res = orch.generate_sheets(PERIOD, force=True)
    assert res["generated"] == 0 and res["skipped"] == 1
    with pytest.raises(ConflictError):
        orch.calculate(sid, PERIOD, force=True)

    orch.generate_sheets("2025-10")
    closed = PayrollStore().get(rid)
    nxt = PayrollStore().find(sid, "2025-10")
    assert closed.total == Decimal("-5000.00")
    assert closed.debt == Decimal("5000.00")
    assert nxt.debt_carry_in == closed.debt
