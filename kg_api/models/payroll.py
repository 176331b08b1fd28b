from datetime import datetime, date
from kg_api.extensions import db
from sqlalchemy.orm.collections import attribute_keyed_dict

PAYROLL_STATUSES = ("draft", "approved", "paid")
FINE_TYPES = ("late", "absence", "manual")


class PayrollRecord(db.Model):
    """
    Compensation of one staff member for one period (YYYY-MM).
    Mutable totals are always rewritten together by the compensation engine;
    `version` is bumped on every write (optimistic locking).
    """
    __tablename__ = "payroll_records"

    id       = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_profiles.id", ondelete="RESTRICT"), nullable=False, index=True)
    period   = db.Column(db.String(7), nullable=False)  # YYYY-MM

    # salary configuration snapshot
    base_salary      = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    base_salary_type = db.Column(db.String(16), nullable=False, default="month")
    shift_rate       = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    norm_days        = db.Column(db.Integer, nullable=False, default=22)

    # attendance-derived units
    worked_days   = db.Column(db.Integer, nullable=False, default=0)
    worked_shifts = db.Column(db.Integer, nullable=False, default=0)

    # money
    accruals          = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    bonuses           = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    bonus_details     = db.Column(db.JSON)
    advance           = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    advance_date      = db.Column(db.Date)
    late_penalties    = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    absence_penalties = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    penalty_details   = db.Column(db.JSON)
    user_fines        = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    deductions        = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    debt_carry_in     = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total             = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # negative balance carried to the next period
    debt           = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    debt_processed = db.Column(db.Boolean, nullable=False, default=False)

    status       = db.Column(db.String(16), nullable=False, default="draft")  # draft|approved|paid
    payment_date = db.Column(db.Date)

    overrides = db.Column(db.JSON, nullable=False, default=dict)  # {field: value} entered by admin
    history   = db.Column(db.JSON, nullable=False, default=list)  # [{date, action, comment, by}]

    version    = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    staff = db.relationship("StaffProfile", lazy="joined")
    fines = db.relationship(
        "FineEntry",
        back_populates="payroll",
        collection_class=attribute_keyed_dict("id"),
        cascade="all, delete-orphan",
        order_by=lambda: [FineEntry.created_at, FineEntry.id],
        lazy="selectin",
    )

    __table_args__ = (
        db.UniqueConstraint("staff_id", "period", name="uq_payroll_staff_period"),
        db.Index("ix_payroll_records_period_status", "period", "status"),
    )
    __mapper_args__ = {"version_id_col": version}

    def fine_list(self):
        return list(self.fines.values())

    def add_history(self, action: str, comment: str = None, by=None):
        entry = {"date": datetime.utcnow().isoformat(), "action": action}
        if comment:
            entry["comment"] = comment
        if by is not None:
            entry["by"] = by
        # reassign so the JSON column is flagged dirty
        self.history = list(self.history or []) + [entry]

    def __repr__(self) -> str:
        return f"<PayrollRecord id={self.id} staff={self.staff_id} period={self.period} status={self.status}>"


class FineEntry(db.Model):
    __tablename__ = "payroll_fines"

    id         = db.Column(db.String(32), primary_key=True)  # uuid4 hex, stable
    payroll_id = db.Column(db.Integer, db.ForeignKey("payroll_records.id", ondelete="CASCADE"), nullable=False, index=True)

    amount     = db.Column(db.Numeric(14, 2), nullable=False)
    reason     = db.Column(db.String(255), nullable=False)
    type       = db.Column(db.String(16), nullable=False, default="manual")  # late|absence|manual
    date       = db.Column(db.Date, nullable=False, default=date.today)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    payroll = db.relationship("PayrollRecord", back_populates="fines")
