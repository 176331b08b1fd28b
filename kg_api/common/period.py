# kg_api/common/period.py
from __future__ import annotations

import calendar
import re
from datetime import date
from typing import Tuple

from kg_api.common.errors import ValidationError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_period(raw) -> Tuple[int, int]:
    """'2025-09' -> (2025, 9). Raises ValidationError on anything else."""
    m = _PERIOD_RE.match(str(raw or "").strip())
    if not m:
        raise ValidationError("period must be YYYY-MM", payload={"period": raw})
    y, mm = int(m.group(1)), int(m.group(2))
    if not 1 <= mm <= 12:
        raise ValidationError("period month must be 01..12", payload={"period": raw})
    return y, mm


def normalize_period(raw) -> str:
    y, m = parse_period(raw)
    return f"{y:04d}-{m:02d}"


def period_bounds(raw) -> Tuple[date, date]:
    """First and last calendar day of the period (both inclusive)."""
    y, m = parse_period(raw)
    return date(y, m, 1), date(y, m, calendar.monthrange(y, m)[1])


def next_period(raw) -> str:
    y, m = parse_period(raw)
    y, m = (y + 1, 1) if m == 12 else (y, m + 1)
    return f"{y:04d}-{m:02d}"


def previous_period(raw) -> str:
    y, m = parse_period(raw)
    y, m = (y - 1, 12) if m == 1 else (y, m - 1)
    return f"{y:04d}-{m:02d}"


def period_of(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"
