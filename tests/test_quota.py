# -*- coding: utf-8 -*-
import sys
from pathlib import Path

# 添加项目根目录到路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lixie.quota import DEFAULT_MODELS, QuotaTracker


class Clock:
    """可手动拨动的 UTC 日期"""

    def __init__(self, day="2026-01-10"):
        self.day = day

    def __call__(self):
        return self.day


def two_models():
    return [
        {"name": "A", "daily_limit": 1, "priority": 1},
        {"name": "B", "daily_limit": 5, "priority": 2},
    ]


def test_claim_never_exceeds_limit():
    q = QuotaTracker([{"name": "m", "daily_limit": 3, "priority": 1}], today_fn=Clock())
    results = [q.claim("m") for _ in range(5)]
    assert results == [True, True, True, False, False]
    assert q.status()["m"]["used"] == 3
    assert q.has_quota("m") is False


def test_rollover_resets_every_model():
    clock = Clock("2026-01-10")
    q = QuotaTracker(two_models(), today_fn=clock)
    assert q.claim("A")
    for _ in range(5):
        assert q.claim("B")
    assert q.select_model() is None

    clock.day = "2026-01-11"
    st = q.status()
    assert st["A"]["used"] == 0
    assert st["B"]["used"] == 0
    assert q.select_model() == "A"


def test_select_lowest_priority_with_quota():
    q = QuotaTracker(two_models(), today_fn=Clock())
    assert q.select_model() == "A"
    assert q.claim("A")
    assert q.select_model() == "B"


def test_select_respects_exclude_and_priority_order():
    models = [
        {"name": "slow", "daily_limit": 10, "priority": 3},
        {"name": "fast", "daily_limit": 10, "priority": 1},
        {"name": "mid", "daily_limit": 10, "priority": 2},
    ]
    q = QuotaTracker(models, today_fn=Clock())
    assert q.models == ["fast", "mid", "slow"]
    assert q.select_model(exclude={"fast"}) == "mid"
    assert q.select_model(exclude={"fast", "mid", "slow"}) is None


def test_unknown_model_has_no_quota():
    q = QuotaTracker(two_models(), today_fn=Clock())
    assert q.has_quota("nope") is False
    assert q.claim("nope") is False


def test_status_and_summary():
    q = QuotaTracker(two_models(), today_fn=Clock())
    q.claim("B")
    q.claim("B")
    st = q.status()["B"]
    assert st == {"used": 2, "limit": 5, "remaining": 3, "percentage": 40.0}
    assert q.total_remaining() == 1 + 3
    text = q.summary(bar_len=10)
    assert "B: 2/5" in text
    assert "(3 remaining)" in text


def test_default_models():
    q = QuotaTracker(today_fn=Clock())
    assert q.models == [m["name"] for m in DEFAULT_MODELS]
    assert q.status()["mixtral-8x7b-32768"]["limit"] == 14400
