# -*- coding: utf-8 -*-
"""
lixie/quota.py
模型每日配额：
- 每个模型一个 ModelQuota（内存计数，进程重启即清零）
- 任何访问都会先检查 UTC 日期，跨天则 used 归零（惰性重置）
- select_model() 按 priority 从小到大挑第一个还有余量的模型
一次请求记一次额度，不管成功与否。
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from .models import ModelQuota
from .utils import utc_today


DEFAULT_MODELS = [
    {"name": "deepseek-r1-distill-llama-70b", "daily_limit": 1000, "priority": 1},
    {"name": "llama-3.3-70b-versatile", "daily_limit": 1000, "priority": 2},
    {"name": "mixtral-8x7b-32768", "daily_limit": 14400, "priority": 3},
]


class QuotaTracker:
    def __init__(self, models: Optional[List[dict]] = None,
                 today_fn: Callable[[], str] = utc_today):
        self._today = today_fn
        today = self._today()
        self._state: Dict[str, ModelQuota] = {}
        for m in models or DEFAULT_MODELS:
            name = str(m["name"])
            self._state[name] = ModelQuota(
                model=name,
                daily_limit=max(0, int(m.get("daily_limit", 0))),
                used=0,
                last_reset_date=today,
                priority=int(m.get("priority", 99)),
            )

    @property
    def models(self) -> List[str]:
        return [q.model for q in self._ordered()]

    def _ordered(self) -> List[ModelQuota]:
        return sorted(self._state.values(), key=lambda q: q.priority)

    def _get(self, model: str) -> Optional[ModelQuota]:
        quota = self._state.get(model)
        if quota is None:
            return None
        today = self._today()
        if quota.last_reset_date != today:
            print(f"[quota] 新的一天 {today}，重置 {model} 的额度")
            quota.used = 0
            quota.last_reset_date = today
        return quota

    def has_quota(self, model: str) -> bool:
        quota = self._get(model)
        return quota is not None and quota.used < quota.daily_limit

    def claim(self, model: str) -> bool:
        """检查并占用一次额度；已用完返回 False"""
        quota = self._get(model)
        if quota is None or quota.used >= quota.daily_limit:
            return False
        quota.used += 1
        return True

    def select_model(self, exclude: Iterable[str] = ()) -> Optional[str]:
        skip = set(exclude)
        for quota in self._ordered():
            if quota.model in skip:
                continue
            if self.has_quota(quota.model):
                return quota.model
        return None

    def status(self) -> Dict[str, dict]:
        out: Dict[str, dict] = {}
        for q in self._ordered():
            quota = self._get(q.model)
            remaining = max(0, quota.daily_limit - quota.used)
            pct = (quota.used / quota.daily_limit * 100) if quota.daily_limit else 100.0
            out[quota.model] = {
                "used": quota.used,
                "limit": quota.daily_limit,
                "remaining": remaining,
                "percentage": round(pct, 2),
            }
        return out

    def total_remaining(self) -> int:
        return sum(s["remaining"] for s in self.status().values())

    def summary(self, bar_len: int = 20) -> str:
        """日志用的文字条形图"""
        lines = []
        for model, s in self.status().items():
            filled = round(s["used"] / s["limit"] * bar_len) if s["limit"] else bar_len
            bar = "█" * filled + "░" * (bar_len - filled)
            lines.append(
                f"  {model}: {s['used']}/{s['limit']} [{bar}] {s['percentage']}% ({s['remaining']} remaining)"
            )
        return "\n".join(lines)
