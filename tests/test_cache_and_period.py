from datetime import date

import pytest

from kg_api.common.cache import TTLCache
from kg_api.common.errors import ValidationError
from kg_api.common.period import (
    normalize_period, period_bounds, next_period, previous_period, period_of,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_cache_expires_and_invalidates():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    loads = []

    def loader():
        loads.append(1)
        return {"rate": len(loads)}

    assert cache.get_or_load("k", loader) == {"rate": 1}
    assert cache.get_or_load("k", loader) == {"rate": 1}

    clock.now += 10
    assert cache.get_or_load("k", loader) == {"rate": 2}

    cache.invalidate("k")
    assert cache.get("k") is None
    assert cache.get_or_load("k", loader) == {"rate": 3}

    cache.set("other", 1)
    cache.invalidate()
    assert len(cache) == 0


def test_zero_ttl_never_stores():
    cache = TTLCache(ttl_seconds=0)
    assert cache.get_or_load("k", lambda: 5) == 5
    assert len(cache) == 0


def test_period_helpers():
    assert normalize_period(" 2025-09 ") == "2025-09"
    assert period_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
    assert next_period("2025-12") == "2026-01"
    assert previous_period("2025-01") == "2024-12"
    assert period_of(date(2025, 9, 30)) == "2025-09"


@pytest.mark.parametrize("raw", [None, "", "2025-9", "2025-13", "2025-00", "09-2025", "2025/09"])
def test_bad_periods(raw):
    with pytest.raises(ValidationError):
        normalize_period(raw)
