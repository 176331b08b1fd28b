from datetime import datetime
from decimal import Decimal
from kg_api.extensions import db

LATE_PENALTY_TYPES = ("fixed", "per_minute", "per_5_minutes", "per_10_minutes")

DEFAULT_LATE_PENALTY_TYPE = "per_minute"
DEFAULT_LATE_PENALTY_RATE = Decimal("50")
DEFAULT_ABSENCE_PENALTY_RATE = Decimal("0")
DEFAULT_NORM_DAYS = 22


class PayrollSettings(db.Model):
    """Single-row table (id=1) holding the kindergarten-wide payroll policy."""
    __tablename__ = "payroll_settings"

    id = db.Column(db.Integer, primary_key=True)

    late_penalty_type    = db.Column(db.String(20), nullable=False, default=DEFAULT_LATE_PENALTY_TYPE)
    late_penalty_rate    = db.Column(db.Numeric(12, 2), nullable=False, default=DEFAULT_LATE_PENALTY_RATE)
    absence_penalty_rate = db.Column(db.Numeric(12, 2), nullable=False, default=DEFAULT_ABSENCE_PENALTY_RATE)
    default_norm_days    = db.Column(db.Integer, nullable=False, default=DEFAULT_NORM_DAYS)
    default_base_salary  = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
