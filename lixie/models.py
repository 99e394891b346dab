# -*- coding: utf-8 -*-
"""
models.py
数据模型。注意 Article 的字段名必须与 storage.py 的建表 SQL 一致，
LLM 返回的候选文章以 dict 形式流转，入库后才对应 Article。
"""

from dataclasses import dataclass, field
from typing import List, Optional

# 规范分类（LLM 输出会被映射到这里；无法映射的归为 general）
CATEGORIES = (
    "technology", "politics", "economy", "business", "entertainment",
    "sports", "health", "science", "education", "environment",
    "travel", "food", "fashion", "automotive", "real-estate", "history",
    "general",
)

# 只用于读库过滤，不会写入 category 列
READ_FILTERS = ("all", "hot")

# 拒绝原因（清理统计按这几类计数）
REJECT_DATE = "date"
REJECT_URL = "url"
REJECT_DOMAIN = "domain"
REJECT_FIELDS = "fields"
REJECT_REASONS = (REJECT_DATE, REJECT_URL, REJECT_DOMAIN, REJECT_FIELDS)


@dataclass
class Article:
    # 主键ID（毫秒时间戳派生的整数）
    id: int

    # 标题保持与来源网站一致，不翻译
    title: str
    description: str
    summary: str

    # 原文链接与来源名
    source_url: str
    source_id: str

    category: str
    language: str

    # 发布时间 / 入库时间（ISO-8601 UTC 字符串）
    published_at: str
    aggregated_at: str

    content: Optional[str] = None
    image_url: Optional[str] = None
    preview_image_url: Optional[str] = None

    # 0-100
    hotness_score: int = 50
    is_breaking: bool = False
    is_trending: bool = False

    views: int = 0
    shares: int = 0
    comments: int = 0


@dataclass
class Source:
    name: str
    url: str
    # 来源网站自己的栏目名（母语分类），写进 prompt 供 LLM 映射
    categories: List[str] = field(default_factory=list)


@dataclass
class ModelQuota:
    model: str
    daily_limit: int
    used: int
    last_reset_date: str  # YYYY-MM-DD (UTC)
    priority: int         # 数字越小优先级越高


@dataclass
class RequestQueueEntry:
    region: str
    enqueued_at: int      # UTC毫秒
    retry_count: int = 0
