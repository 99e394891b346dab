# -*- coding: utf-8 -*-
"""
lixie/fetcher.py
每次调度触发调用一次 LLM：
- prompt 里写明该地区的来源列表、发布时间下限、输出 JSON 结构
- 按配额选模型；主模型调用失败则换一个有余量的模型再试一次
- 解析 JSON：数组直接当文章列表；对象取 articles 字段
- JSON 坏掉不抛错，打印前 500 字符方便排查，返回 []
上游彻底失败（没有可用模型、回退也失败）抛 FetchError，由 scheduler 兜底。
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional

from .llm import LLMError
from .models import CATEGORIES
from .quota import QuotaTracker
from .sources import SourceRegistry
from .utils import normalize_link, truncate, utc_now
from .validator import Validator

LANGUAGE_NAMES = {"id": "Indonesian", "en": "English", "zh": "Chinese", "ja": "Japanese", "ko": "Korean"}

SYSTEM_PROMPT = """You are a professional news aggregator bot for LIXIE. Your job is to:
1. ONLY fetch news from the verified sources provided (do not use other sources)
2. ONLY fetch articles published on or after {floor}
3. Preserve the EXACT title from the source website (do not translate or modify titles)
4. Extract REAL image URLs directly from article pages (og:image, main or featured image)
5. Write clear, well-structured summaries in {language}
6. Map each article's category from the source website to the LIXIE category list
7. Return valid JSON only, with accurate data from actual articles"""

USER_PROMPT = """Fetch the latest trending and breaking news for the "{region}" region.

ONLY use these verified news sources:
{sources}

DATE REQUIREMENT:
- ONLY include articles published from {floor} to {today}
- Prioritize articles published today, then recent days

Return a JSON object with an "articles" array of 5-10 articles. Each article must have:
- title: EXACT title from the source website
- description: 1-2 sentence description in {language}
- summary: 3-5 paragraph summary in {language}
- source_url: EXACT URL of the original article page
- source_id: news source name (e.g. "{example_source}")
- category: one of {categories}
- image_url: real image URL from the article page
- preview_image_url: preview image URL from the article page
- published_at: ISO 8601 timestamp of the original publish time
- is_breaking: true if marked breaking/urgent
- is_trending: true if trending or highly shared
- hotness_score: number 0-100 based on engagement, recency and importance
- language: "{language_code}"
- views, shares, comments: estimated counts if available, otherwise 0

Do NOT use placeholder images or invented URLs. Output JSON only."""

INT_FIELDS = ("views", "shares", "comments")
BOOL_FIELDS = ("is_breaking", "is_trending")


class FetchError(Exception):
    """本次调用没拿到任何上游响应（无配额 / 主模型与回退模型都失败）"""


def _extract_json(text: str) -> Any:
    """模型偶尔会在 JSON 外面包一层文字或 ```，先直接解析，不行再取第一个 {...} / [...]"""
    text = (text or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\s*|\s*```$", "", text)
    try:
        return json.loads(text)
    except ValueError:
        pass
    m = re.search(r"(\{.*\}|\[.*\])", text, flags=re.S)
    if not m:
        raise ValueError("no JSON object found in model output")
    return json.loads(m.group(1))


def parse_articles(text: str) -> List[dict]:
    """原始文本 -> 候选文章 dict 列表；任何格式问题都返回 []"""
    if not text:
        return []
    try:
        parsed = _extract_json(text)
    except ValueError as e:
        print(f"[fetcher] 解析 LLM 响应失败: {e}")
        print(f"[fetcher] 响应内容: {truncate(text, 500)}")
        return []

    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        items = parsed.get("articles")
    else:
        items = None

    if not isinstance(items, list):
        return []
    return [it for it in items if isinstance(it, dict)]


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError, OverflowError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


class FetchClient:
    def __init__(self, llm, quota: QuotaTracker, registry: SourceRegistry, validator: Validator):
        self._llm = llm
        self._quota = quota
        self._registry = registry
        self._validator = validator

    # ---------- prompt ----------
    def build_prompt(self, region: str):
        """返回 (system, user) 两段 prompt"""
        sources = self._registry.sources(region)
        lines = "\n".join(
            f"- {s.name} ({s.url}) - Categories: {', '.join(s.categories)}" for s in sources
        )
        lang_code = self._registry.language_for(region)
        language = LANGUAGE_NAMES.get(lang_code, "English")
        floor = self._validator.floor().strftime("%B %d, %Y")
        today = utc_now().strftime("%B %d, %Y")

        system = SYSTEM_PROMPT.format(floor=floor, language=language)
        user = USER_PROMPT.format(
            region=region,
            sources=lines or "- (none)",
            floor=floor,
            today=today,
            language=language,
            language_code=lang_code,
            example_source=sources[0].name if sources else "Reuters",
            categories=", ".join(c for c in CATEGORIES if c != "general"),
        )
        return system, user

    # ---------- 清洗 ----------
    def coerce(self, item: dict, region: str) -> dict:
        """类型归一：计数非负整数、热度 0-100、布尔、分类映射、摘要空行整理"""
        out = dict(item)
        for k in INT_FIELDS:
            out[k] = _as_int(out.get(k), 0)
        out["hotness_score"] = min(100, _as_int(out.get("hotness_score"), 50))
        for k in BOOL_FIELDS:
            out[k] = _as_bool(out.get(k, False))
        out["category"] = self._registry.normalize_category(out.get("category"))
        lang = out.get("language")
        out["language"] = lang.strip() if isinstance(lang, str) and lang.strip() else self._registry.language_for(region)

        for k in ("title", "description", "source_id"):
            if isinstance(out.get(k), str):
                out[k] = out[k].strip()
        if isinstance(out.get("source_url"), str):
            out["source_url"] = normalize_link(out["source_url"].strip())

        summary = out.get("summary")
        if isinstance(summary, str) and summary.strip():
            out["summary"] = re.sub(r"\n\s*\n", "\n\n", summary).strip()
        else:
            out["summary"] = out.get("description") or ""
        return out

    # ---------- 主流程 ----------
    def _claim_model(self, exclude=()) -> Optional[str]:
        model = self._quota.select_model(exclude=exclude)
        while model is not None and not self._quota.claim(model):
            exclude = tuple(exclude) + (model,)
            model = self._quota.select_model(exclude=exclude)
        return model

    async def _complete_with_fallback(self, region: str) -> str:
        model = self._claim_model()
        if model is None:
            print("[fetcher] 所有模型额度已用完")
            print("[fetcher] 额度状态:\n" + self._quota.summary())
            raise FetchError("no model with remaining quota")

        system, user = self.build_prompt(region)
        print(f"[fetcher] {region} 使用模型 {model}")
        try:
            return await self._llm.complete(model, system, user)
        except LLMError as e:
            print(f"[fetcher] 模型 {model} 调用失败: {e}")
            fallback = self._claim_model(exclude=(model,))
            if fallback is None:
                raise FetchError(f"{model} failed and no fallback model available") from e

        print(f"[fetcher] {region} 回退到模型 {fallback}")
        try:
            return await self._llm.complete(fallback, system, user)
        except LLMError as e:
            raise FetchError(f"fallback model {fallback} also failed: {e}") from e

    async def fetch_candidates(self, region: str) -> List[dict]:
        text = await self._complete_with_fallback(region)
        items = parse_articles(text)
        print(f"[fetcher] {region} LLM 返回 {len(items)} 条候选")
        out: List[dict] = []
        for it in items:
            # 单条格式坏掉只丢这一条，不影响同批其他文章
            try:
                out.append(self.coerce(it, region))
            except Exception as e:
                print(f"[fetcher] {region} 跳过格式异常的候选 '{truncate(str(it.get('title')), 60)}': {e!r}")
        return out
