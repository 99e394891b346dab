# -*- coding: utf-8 -*-
"""
lixie/probe.py
可选：入库前探测 source_url 是否真的能打开。
- 先 GET（跟随跳转），失败再 HEAD
- 403/429/503 视为“页面存在但被拦”，算可访问
- 只有明确的 404/410 才判为不可访问；网络异常一律放行（best-effort）
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import httpx

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

LENIENT_STATUSES = {403, 429, 503}
MISSING_STATUSES = {404, 410}


class UrlProbe:
    def __init__(self, cfg: Optional[dict] = None):
        cfg = cfg or {}
        self.enabled = bool(cfg.get("enabled", False))
        self._timeout_sec = float(cfg.get("timeout_sec", 15))
        self._client: Optional[httpx.AsyncClient] = None

    def _client_get(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout_sec,
                headers=BROWSER_HEADERS,
                follow_redirects=True,
            )
        return self._client

    async def status_of(self, url: str) -> Optional[int]:
        """返回最终状态码；GET 和 HEAD 都连不上则返回 None"""
        client = self._client_get()
        try:
            r = await client.get(url)
            return r.status_code
        except httpx.HTTPError as e:
            print(f"[probe] GET 失败 {url}: {e!r}，改用 HEAD")
        try:
            r = await client.head(url)
            return r.status_code
        except httpx.HTTPError as e:
            print(f"[probe] HEAD 也失败 {url}: {e!r}")
            return None

    async def is_missing(self, url: str) -> bool:
        """
        True 表示可以确定页面不存在（应拒绝）。
        未启用、网络异常、被拦截都返回 False。
        """
        if not self.enabled:
            return False
        status = await self.status_of(url)
        if status is None:
            return False
        if 200 <= status < 400 or status in LENIENT_STATUSES:
            return False
        if status in MISSING_STATUSES:
            print(f"[probe] 页面不存在 status={status}: {url}")
            return True
        print(f"[probe] 非预期状态 status={status}，放行: {url}")
        return False

    async def check_many(self, urls: Iterable[str]) -> Dict[str, Optional[int]]:
        """逐个探测（运维脚本用），返回 url -> status"""
        out: Dict[str, Optional[int]] = {}
        for u in urls:
            out[u] = await self.status_of(u)
        return out

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
