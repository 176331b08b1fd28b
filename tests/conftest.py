import os
from datetime import date, timedelta

import pytest

from kg_api import create_app
from kg_api.extensions import db
from kg_api.models.attendance import AttendanceRecord, ShiftRecord
from kg_api.models.staff import StaffProfile

PERIOD = "2025-09"


def _mk_app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["SETTINGS_CACHE_TTL"] = "60"
    return create_app()


@pytest.fixture(scope="function")
def app():
    app = _mk_app()
    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture(scope="function")
def session(app):
    with app.app_context():
        yield db.session


def weekdays(year, month, count):
    """First `count` Mon-Fri dates of the month."""
    d = date(year, month, 1)
    out = []
    while len(out) < count:
        if d.weekday() < 5:
            out.append(d)
        d += timedelta(days=1)
    return out


@pytest.fixture
def make_staff(session):
    def _make(full_name="Staff A", role="teacher", base_salary=100000, base_salary_type="month",
              shift_rate=0, norm_days=22, **kw):
        s = StaffProfile(full_name=full_name, role=role, base_salary=base_salary,
                         base_salary_type=base_salary_type, shift_rate=shift_rate,
                         norm_days=norm_days, active=kw.pop("active", True), **kw)
        session.add(s)
        session.commit()
        return s
    return _make


@pytest.fixture
def add_attendance(session):
    def _add(staff_id, days, status="present", late_minutes=0):
        for d in days:
            session.add(AttendanceRecord(staff_id=staff_id, work_date=d, status=status,
                                         late_minutes=late_minutes, overtime_minutes=0))
        session.commit()
    return _add


@pytest.fixture
def add_shifts(session):
    def _add(staff_id, days, type="full"):
        for d in days:
            session.add(ShiftRecord(staff_id=staff_id, work_date=d, type=type))
        session.commit()
    return _add


@pytest.fixture
def staff_a(make_staff, add_attendance):
    """100000/month, 22 norm days, 20 worked days in 2025-09, one of them 17 minutes late."""
    s = make_staff("Staff A")
    days = weekdays(2025, 9, 20)
    add_attendance(s.id, [d for d in days if d != date(2025, 9, 3)])
    add_attendance(s.id, [date(2025, 9, 3)], status="late", late_minutes=17)
    return s
