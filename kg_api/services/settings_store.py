# kg_api/services/settings_store.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from flask import current_app

from kg_api.extensions import db
from kg_api.common.cache import TTLCache
from kg_api.common.errors import ValidationError
from kg_api.models.settings import (
    PayrollSettings,
    LATE_PENALTY_TYPES,
    DEFAULT_LATE_PENALTY_TYPE,
    DEFAULT_LATE_PENALTY_RATE,
    DEFAULT_ABSENCE_PENALTY_RATE,
    DEFAULT_NORM_DAYS,
)
from kg_api.services.payroll.penalties import PenaltyPolicy, money

log = logging.getLogger(__name__)

CACHE_KEY = "payroll_settings"
SETTINGS_ID = 1

# request field -> column
_FIELDS = {
    "latePenaltyType": "late_penalty_type",
    "latePenaltyRate": "late_penalty_rate",
    "absencePenaltyRate": "absence_penalty_rate",
    "defaultNormDays": "default_norm_days",
    "defaultBaseSalary": "default_base_salary",
}


def _snapshot(row: Optional[PayrollSettings]) -> Dict[str, Any]:
    """Plain, session-independent copy safe to share across threads."""
    if row is None:
        return {
            "late_penalty_type": DEFAULT_LATE_PENALTY_TYPE,
            "late_penalty_rate": money(DEFAULT_LATE_PENALTY_RATE),
            "absence_penalty_rate": money(DEFAULT_ABSENCE_PENALTY_RATE),
            "default_norm_days": DEFAULT_NORM_DAYS,
            "default_base_salary": money(0),
        }
    return {
        "late_penalty_type": row.late_penalty_type or DEFAULT_LATE_PENALTY_TYPE,
        "late_penalty_rate": money(row.late_penalty_rate),
        "absence_penalty_rate": money(row.absence_penalty_rate),
        "default_norm_days": int(row.default_norm_days or DEFAULT_NORM_DAYS),
        "default_base_salary": money(row.default_base_salary),
    }


def settings_json(s: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "latePenaltyType": s["late_penalty_type"],
        "latePenaltyRate": float(s["late_penalty_rate"]),
        "absencePenaltyRate": float(s["absence_penalty_rate"]),
        "defaultNormDays": s["default_norm_days"],
        "defaultBaseSalary": float(s["default_base_salary"]),
    }


class SettingsStore:
    """Payroll policy, read through an injected TTLCache."""

    def __init__(self, cache: Optional[TTLCache] = None, session=None):
        self._cache = cache if cache is not None else TTLCache(ttl_seconds=0)
        self._session = session if session is not None else db.session

    @classmethod
    def for_app(cls, app=None) -> "SettingsStore":
        app = app or current_app
        return cls(cache=app.extensions.get("kg_cache"))

    def get(self) -> Dict[str, Any]:
        return self._cache.get_or_load(CACHE_KEY, self._load)

    def _load(self) -> Dict[str, Any]:
        return _snapshot(self._session.get(PayrollSettings, SETTINGS_ID))

    def policy(self) -> PenaltyPolicy:
        s = self.get()
        return PenaltyPolicy(
            type=s["late_penalty_type"],
            rate=s["late_penalty_rate"],
            absence_rate=s["absence_penalty_rate"],
        )

    def update(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = [k for k in payload if k not in _FIELDS]
        if unknown:
            raise ValidationError("Unknown settings fields", payload={"fields": unknown})

        values: Dict[str, Any] = {}
        for key, col in _FIELDS.items():
            if key not in payload or payload[key] is None:
                continue
            raw = payload[key]
            if col == "late_penalty_type":
                v = str(raw).strip()
                if v not in LATE_PENALTY_TYPES:
                    raise ValidationError(f"{key} must be one of {', '.join(LATE_PENALTY_TYPES)}")
            elif col == "default_norm_days":
                try:
                    v = int(raw)
                except (TypeError, ValueError):
                    raise ValidationError(f"{key} must be an integer")
                if v <= 0:
                    raise ValidationError(f"{key} must be positive")
            else:
                try:
                    v = Decimal(str(raw))
                except Exception:
                    raise ValidationError(f"{key} must be a number")
                if v < 0:
                    raise ValidationError(f"{key} cannot be negative")
                v = money(v)
            values[col] = v

        row = self._session.get(PayrollSettings, SETTINGS_ID)
        if row is None:
            row = PayrollSettings(id=SETTINGS_ID)
            self._session.add(row)
        for col, v in values.items():
            setattr(row, col, v)
        self._session.commit()
        self._cache.invalidate(CACHE_KEY)
        log.info("payroll settings updated: %s", sorted(values))
        return self.get()
