# -*- coding: utf-8 -*-
"""
lixie/llm.py
LLM 渠道适配器：Groq 的 OpenAI 兼容 chat/completions 接口。
只负责“发一次请求、拿回文本”；选模型、回退、重试都在 fetcher / scheduler 里做。
"""

from __future__ import annotations

import os
from typing import Optional

import httpx

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class LLMError(Exception):
    """网络错误、非 2xx 响应、响应结构不对"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class LLMRateLimited(LLMError):
    """429：本分钟请求数打满"""


def get_api_key(cfg: Optional[dict] = None) -> str:
    """配置里的 api_key 优先，其次环境变量 GROQ_API_KEY"""
    key = ((cfg or {}).get("api_key") or os.environ.get("GROQ_API_KEY", "") or "").strip()
    return key


class GroqClient:
    def __init__(self, api_key: str, cfg: Optional[dict] = None):
        cfg = cfg or {}
        self._api_key = api_key
        self._base_url = str(cfg.get("base_url") or GROQ_BASE_URL).rstrip("/")
        self._timeout_sec = float(cfg.get("timeout_sec", 60))
        self._temperature = float(cfg.get("temperature", 0.7))
        self._max_tokens = int(cfg.get("max_tokens", 4000))
        self._client: Optional[httpx.AsyncClient] = None

    def _client_get(self) -> httpx.AsyncClient:
        # 复用连接池；读超时放宽，LLM 生成 4k token 可能要几十秒
        if self._client is None:
            timeout = httpx.Timeout(connect=10.0, read=self._timeout_sec, write=10.0, pool=30.0)
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=timeout,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                    "User-Agent": "lixie-hub/1.0",
                },
                trust_env=True,
            )
        return self._client

    async def complete(self, model: str, system: str, prompt: str) -> str:
        """
        发一次 completion，返回 message.content 文本。
        任何失败都抛 LLMError（429 抛 LLMRateLimited）。
        """
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "response_format": {"type": "json_object"},
        }
        try:
            r = await self._client_get().post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"{model}: {e!r}") from e

        if r.status_code == 429:
            raise LLMRateLimited(f"{model}: rate limited", status=429)
        if r.status_code >= 400:
            raise LLMError(f"{model}: http {r.status_code}: {(r.text or '')[:300]}", status=r.status_code)

        try:
            data = r.json()
            return data["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise LLMError(f"{model}: unexpected response shape: {e!r}", status=r.status_code) from e

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
