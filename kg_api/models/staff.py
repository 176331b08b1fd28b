from datetime import datetime
from kg_api.extensions import db

SALARY_TYPES = ("month", "shift")

# billed by the facility, never on payroll
EXCLUDED_ROLES = ("tenant", "speech_therapist")


class StaffProfile(db.Model):
    __tablename__ = "staff_profiles"

    id        = db.Column(db.Integer, primary_key=True)
    user_id   = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)
    full_name = db.Column(db.String(255), nullable=False)
    role      = db.Column(db.String(32), nullable=False, default="teacher")

    base_salary      = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    base_salary_type = db.Column(db.String(16), nullable=False, default="month")  # month|shift
    shift_rate       = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    norm_days        = db.Column(db.Integer, nullable=True)                       # None -> settings default

    active     = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user = db.relationship("User", lazy="joined")

    __table_args__ = (
        db.Index("ix_staff_profiles_active_role", "active", "role"),
    )

    @property
    def payroll_eligible(self) -> bool:
        return bool(self.active) and (self.role or "") not in EXCLUDED_ROLES

    def __repr__(self) -> str:
        return f"<StaffProfile id={self.id} role={self.role!r}>"
