from datetime import datetime
from kg_api.extensions import db

ATTENDANCE_STATUSES = ("present", "absent", "late", "sick", "vacation")
SHIFT_TYPES = ("full", "overtime")


class AttendanceRecord(db.Model):
    """
    One recorded working day of a staff member.
    (staff_id, work_date) is expected to be unique, but legacy imports are not
    constrained; the payroll aggregator refuses duplicates.
    """
    __tablename__ = "staff_attendance"

    id       = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date = db.Column(db.Date, nullable=False)
    status   = db.Column(db.String(16), nullable=False, default="present")

    late_minutes     = db.Column(db.Integer, nullable=False, default=0)
    overtime_minutes = db.Column(db.Integer, nullable=False, default=0)
    actual_start     = db.Column(db.DateTime, nullable=True)
    actual_end       = db.Column(db.DateTime, nullable=True)
    notes            = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_staff_attendance_staff_date", "staff_id", "work_date"),
    )


class ShiftRecord(db.Model):
    __tablename__ = "staff_shifts"

    id       = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=True)
    end_time   = db.Column(db.Time, nullable=True)
    type       = db.Column(db.String(16), nullable=False, default="full")  # full|overtime

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_staff_shifts_staff_date", "staff_id", "work_date"),
    )
