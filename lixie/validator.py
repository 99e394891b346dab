# -*- coding: utf-8 -*-
"""
lixie/validator.py
入库前校验 LLM 返回的候选文章。按顺序检查：
  1. date   发布时间缺失/无法解析/早于下限
  2. url    非 http(s)、只有首页或只有 query 的“文章链接”、命中坏链接正则
  3. domain host 不在该地区白名单
  4. 图片   占位图直接置空（不拒绝整篇）
  5. fields title / source_url 为空
通过的文章补上 id 和 aggregated_at，其余字段原样返回。
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .models import REJECT_DATE, REJECT_DOMAIN, REJECT_FIELDS, REJECT_REASONS, REJECT_URL
from .sources import SourceRegistry
from .utils import parse_datetime, to_iso_utc, utc_now

DEFAULT_DATE_FLOOR = "2025-12-14"

DEFAULT_BAD_URL_PATTERNS = [
    r"example\.(com|org|net)",
    r"/(sample|placeholder|dummy|xxx+)(/|$|\.)",
    r"/article/?\?id=",
]

DEFAULT_PLACEHOLDER_IMAGE_PATTERNS = [
    "placeholder",
    "via.placeholder",
    "dummyimage",
    "placehold.it",
    "loremflickr",
    "unsplash.com/random",
    "picsum.photos",
]

IMAGE_FIELDS = ("image_url", "preview_image_url")


class ValidationStats:
    """一批候选的计数，打日志用"""

    def __init__(self):
        self.accepted = 0
        self.rejected: Dict[str, int] = {r: 0 for r in REJECT_REASONS}

    def add(self, reason: Optional[str]) -> None:
        if reason is None:
            self.accepted += 1
        else:
            self.rejected[reason] = self.rejected.get(reason, 0) + 1

    @property
    def total_rejected(self) -> int:
        return sum(self.rejected.values())

    def __str__(self) -> str:
        parts = " ".join(f"{k}={v}" for k, v in self.rejected.items() if v)
        return f"accepted={self.accepted} rejected={self.total_rejected}" + (f" ({parts})" if parts else "")


class Validator:
    def __init__(self, registry: SourceRegistry, cfg: Optional[dict] = None,
                 now_fn: Callable[[], datetime] = utc_now):
        cfg = cfg or {}
        self._registry = registry
        self._now = now_fn

        floor = parse_datetime(cfg.get("date_floor") or DEFAULT_DATE_FLOOR)
        if floor is None:
            raise ValueError(f"invalid date_floor: {cfg.get('date_floor')!r}")
        self._fixed_floor = floor
        self._max_age_days = int(cfg.get("max_age_days", 0) or 0)
        self.accept_undated = bool(cfg.get("accept_undated", False))

        self._bad_url_res = [
            re.compile(p, re.IGNORECASE)
            for p in (cfg.get("bad_url_patterns") or DEFAULT_BAD_URL_PATTERNS)
        ]
        self._placeholder_patterns = [
            str(p).lower()
            for p in (cfg.get("placeholder_image_patterns") or DEFAULT_PLACEHOLDER_IMAGE_PATTERNS)
        ]
        self._last_id = 0

    # ---------- 日期下限 ----------
    def floor(self) -> datetime:
        """固定下限与“最近 N 天”取较晚者"""
        if self._max_age_days > 0:
            rolling = self._now() - timedelta(days=self._max_age_days)
            return max(self._fixed_floor, rolling)
        return self._fixed_floor

    # ---------- 单项检查 ----------
    def _url_is_bad(self, url: str) -> bool:
        try:
            u = urlparse(url)
        except ValueError:
            return True
        if u.scheme not in ("http", "https") or not u.netloc:
            return True
        # 只有首页，或者 ?id=123 这种没有路径的“文章”基本是编出来的
        if u.path in ("", "/"):
            return True
        return any(r.search(url) for r in self._bad_url_res)

    def _domain_allowed(self, url: str, region: str) -> bool:
        try:
            host = (urlparse(url).hostname or "").lower()
        except ValueError:
            return False
        if not host:
            return False
        for d in self._registry.allowed_domains(region):
            if host == d or host.endswith("." + d):
                return True
        return False

    def is_placeholder_image(self, url: Optional[str]) -> bool:
        if not url:
            return False
        low = str(url).lower()
        if not low.startswith(("http://", "https://")):
            return True
        return any(p in low for p in self._placeholder_patterns)

    def _reject_reason(self, item: dict, region: str) -> Optional[str]:
        published = item.get("published_at")
        if published in (None, ""):
            if not self.accept_undated:
                return REJECT_DATE
        else:
            dt = parse_datetime(published)
            if dt is None or dt < self.floor():
                return REJECT_DATE

        url = str(item.get("source_url") or "").strip()
        if url:
            if self._url_is_bad(url):
                return REJECT_URL
            if not self._domain_allowed(url, region):
                return REJECT_DOMAIN

        if not str(item.get("title") or "").strip() or not url:
            return REJECT_FIELDS
        return None

    # ---------- 对外 ----------
    def next_id(self) -> int:
        # 毫秒时间戳，同一毫秒内递增，保证进程内唯一
        candidate = int(self._now().timestamp() * 1000)
        self._last_id = max(candidate, self._last_id + 1)
        return self._last_id

    def validate(self, candidate: dict, region: str) -> Tuple[Optional[dict], Optional[str]]:
        """
        返回 (article, None) 或 (None, reason)。
        reason 取值见 models.REJECT_REASONS。
        """
        if not isinstance(candidate, dict):
            return None, REJECT_FIELDS

        reason = self._reject_reason(candidate, region)
        if reason is not None:
            return None, reason

        article = dict(candidate)
        if article.get("published_at") in (None, ""):
            # accept_undated 模式：当作今天发布
            article["published_at"] = to_iso_utc(self._now())
        for key in IMAGE_FIELDS:
            if key in article and self.is_placeholder_image(article.get(key)):
                article[key] = None
        article["id"] = self.next_id()
        article["aggregated_at"] = to_iso_utc(self._now())
        return article, None

    def check_stored(self, row: dict, region: str) -> Optional[str]:
        """已入库的行再检查一遍，返回应删除的原因（清理用）"""
        return self._reject_reason(row, region)

    def filter_batch(self, candidates: List[dict], region: str) -> Tuple[List[dict], ValidationStats]:
        stats = ValidationStats()
        out: List[dict] = []
        for c in candidates:
            article, reason = self.validate(c, region)
            stats.add(reason)
            if article is not None:
                out.append(article)
        return out, stats
