from decimal import Decimal

import pytest
from sqlalchemy import update

from kg_api.common.errors import ConflictError, NotFoundError
from kg_api.models.payroll import PayrollRecord
from kg_api.services.payroll.store import PayrollStore

PERIOD = "2025-09"


def _new(staff_id, period=PERIOD, **kw):
    return PayrollRecord(staff_id=staff_id, period=period, norm_days=22, overrides={}, history=[], **kw)


def test_upsert_creates_then_updates(session, make_staff):
    s = make_staff()
    store = PayrollStore()

    rec, outcome = store.upsert_draft(s.id, PERIOD, lambda r, created: setattr(r, "bonuses", Decimal("10")))
    session.commit()
    assert outcome == "created" and rec.version == 1

    rec, outcome = store.upsert_draft(s.id, PERIOD, lambda r, created: setattr(r, "bonuses", Decimal("20")))
    session.commit()
    assert outcome == "updated"
    assert rec.bonuses == Decimal("20.00")
    assert rec.version == 2


def test_upsert_race_lands_on_a_single_record(session, make_staff):
    """The writer that loses the insert reloads the winner's row and updates it."""
    s = make_staff()
    PayrollStore().insert(_new(s.id, bonuses=Decimal("1")))
    session.commit()

    store = PayrollStore()
    real_find = store.find
    calls = []

    def racing_find(staff_id, period, fresh=False):
        calls.append(fresh)
        # first lookup happens before the competing insert became visible
        return None if len(calls) == 1 else real_find(staff_id, period, fresh=fresh)

    store.find = racing_find
    seen = []

    def build(r, created):
        seen.append(created)
        r.bonuses = Decimal("7")

    rec, outcome = store.upsert_draft(s.id, PERIOD, build)
    session.commit()

    assert outcome == "updated"
    assert seen == [True, False]
    assert calls == [False, True]
    assert session.query(PayrollRecord).filter_by(staff_id=s.id, period=PERIOD).count() == 1
    assert rec.bonuses == Decimal("7.00")


def test_upsert_race_respects_non_draft_winner(session, make_staff):
    s = make_staff()
    PayrollStore().insert(_new(s.id, status="approved"))
    session.commit()

    store = PayrollStore()
    real_find = store.find
    first = [True]

    def racing_find(staff_id, period, fresh=False):
        if first:
            first.pop()
            return None
        return real_find(staff_id, period, fresh=fresh)

    store.find = racing_find
    rec, outcome = store.upsert_draft(s.id, PERIOD, lambda r, created: setattr(r, "bonuses", 99))
    session.commit()
    assert outcome == "skipped"
    assert rec.bonuses == Decimal("0.00")


def test_direct_insert_duplicate_is_conflict(session, make_staff):
    s = make_staff()
    store = PayrollStore()
    store.insert(_new(s.id))
    session.commit()
    with pytest.raises(ConflictError):
        store.insert(_new(s.id))


def test_mutate_retries_stale_version(session, make_staff):
    s = make_staff()
    rec = PayrollStore().insert(_new(s.id))
    session.commit()
    rid = rec.id
    attempts = []

    def bump_then_edit(r):
        attempts.append(r.version)
        if len(attempts) == 1:
            # a concurrent writer commits in between our read and our write
            session.execute(update(PayrollRecord.__table__)
                            .where(PayrollRecord.__table__.c.id == rid)
                            .values(version=r.version + 1))
        r.deductions = Decimal("5")

    out = PayrollStore().mutate(rid, bump_then_edit)
    assert len(attempts) == 2
    assert out.deductions == Decimal("5.00")


def test_mutate_gives_up_with_conflict(session, make_staff):
    s = make_staff()
    rec = PayrollStore().insert(_new(s.id))
    session.commit()
    rid = rec.id

    def always_stale(r):
        session.execute(update(PayrollRecord.__table__)
                        .where(PayrollRecord.__table__.c.id == rid)
                        .values(version=r.version + 1))
        r.deductions = Decimal("5")

    with pytest.raises(ConflictError):
        PayrollStore(retries=3).mutate(rid, always_stale)
    assert PayrollStore().get(rid).deductions == Decimal("0.00")


def test_mutate_unknown_record(session):
    with pytest.raises(NotFoundError):
        PayrollStore().mutate(12345, lambda r: None)


def test_status_is_forward_only(session, make_staff):
    s = make_staff()
    rid = PayrollStore().insert(_new(s.id)).id
    session.commit()
    store = PayrollStore()

    with pytest.raises(ConflictError):
        store.transition(rid, "paid")
    assert store.transition(rid, "approved", by=1).status == "approved"
    with pytest.raises(ConflictError):
        store.transition(rid, "approved")
    with pytest.raises(ConflictError):
        store.transition(rid, "draft")

    from datetime import date
    rec = store.transition(rid, "paid", payment_date=date(2025, 10, 5))
    assert rec.status == "paid"
    assert rec.payment_date == date(2025, 10, 5)
    assert [h["action"] for h in rec.history] == ["approved", "paid"]


def test_delete(session, make_staff):
    s = make_staff()
    t = make_staff("Other")
    store = PayrollStore()
    rid = store.insert(_new(s.id)).id
    paid_id = store.insert(_new(t.id, status="paid")).id
    session.commit()

    with pytest.raises(ConflictError):
        store.delete(paid_id)
    store.delete(rid)
    assert store.get(rid) is None
    with pytest.raises(NotFoundError):
        store.delete(rid)


def test_list_filters(session, make_staff):
    a, b = make_staff("A"), make_staff("B")
    store = PayrollStore()
    store.insert(_new(a.id))
    store.insert(_new(a.id, period="2025-10"))
    store.insert(_new(b.id, status="approved"))
    session.commit()

    rows, total = store.list(period=PERIOD)
    assert total == 2
    rows, total = store.list(staff_id=a.id)
    assert [r.period for r in rows] == ["2025-10", "2025-09"]
    rows, total = store.list(status="approved")
    assert total == 1 and rows[0].staff_id == b.id
    rows, total = store.list(page=2, size=2)
    assert total == 3 and len(rows) == 1


def test_find_and_mutate_with_linked_login(session, make_staff):
    """Staff linked to a login eager-load its roles collection along with the record."""
    from kg_api.models.security import UserRole, ensure_role
    from kg_api.models.user import User

    u = User(email="linked@kg.local", full_name="Linked", status="active")
    u.set_password("x")
    session.add(u)
    session.flush()
    session.add(UserRole(user_id=u.id, role_id=ensure_role("staff").id))
    session.add(UserRole(user_id=u.id, role_id=ensure_role("admin").id))
    session.commit()

    s = make_staff("Linked", user_id=u.id)
    store = PayrollStore()
    rid = store.insert(_new(s.id)).id
    session.commit()

    assert store.find(s.id, PERIOD).id == rid
    assert store.find(s.id, PERIOD, fresh=True).id == rid
    rec = store.mutate(rid, lambda r: setattr(r, "deductions", Decimal("3")))
    assert rec.deductions == Decimal("3.00")
    assert rec.staff.user.email == "linked@kg.local"
    rows, total = store.list(period=PERIOD)
    assert total == 1 and [r.id for r in rows] == [rid]


def test_debt_closed_record_is_not_rebuilt(session, make_staff):
    s = make_staff()
    store = PayrollStore()
    store.insert(_new(s.id, debt_processed=True, debt=Decimal("10")))
    session.commit()

    rec, outcome = store.upsert_draft(s.id, PERIOD, lambda r, created: setattr(r, "bonuses", 5), force=True)
    assert outcome == "skipped"
    assert rec.bonuses == Decimal("0.00")
