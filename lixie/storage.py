# -*- coding: utf-8 -*-
"""
lixie/storage.py
SQLite（aiosqlite）持久化，每个地区一张表（indonesia / china / japan / korea / international）：
- 初始化/建表
- 文章写入（按 source_url / title 去重）
- 按分类读取（all / hot / 具体分类）
- 清理：早于日期下限的、校验不通过的
- 按时间范围删除（all / today / week / month）
列与 lixie.models.Article 字段一致；表名只来自 SourceRegistry（已校验为简单标识符）。
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import aiosqlite

from .models import READ_FILTERS, REJECT_REASONS
from .sources import SourceRegistry
from .utils import parse_datetime, to_iso_utc, utc_now

ARTICLE_COLUMNS = (
    "id", "title", "description", "summary", "content",
    "image_url", "preview_image_url", "source_url", "source_id",
    "category", "language", "hotness_score", "is_breaking", "is_trending",
    "views", "shares", "comments", "published_at", "aggregated_at",
)

BOOL_COLUMNS = ("is_breaking", "is_trending")

DELETE_RANGES = ("all", "today", "week", "month")

FETCH_LIMIT = 200


# --------- 建表 SQL（严格对齐 Article 字段） ---------
SCHEMA_ARTICLES = """
CREATE TABLE IF NOT EXISTS {table} (
    id                INTEGER PRIMARY KEY,
    title             TEXT NOT NULL,
    description       TEXT,
    summary           TEXT,
    content           TEXT,
    image_url         TEXT,
    preview_image_url TEXT,
    source_url        TEXT NOT NULL,
    source_id         TEXT,
    category          TEXT NOT NULL DEFAULT 'general',
    language          TEXT,
    hotness_score     INTEGER DEFAULT 50,
    is_breaking       INTEGER DEFAULT 0,
    is_trending       INTEGER DEFAULT 0,
    views             INTEGER DEFAULT 0,
    shares            INTEGER DEFAULT 0,
    comments          INTEGER DEFAULT 0,
    published_at      TEXT NOT NULL,
    aggregated_at     TEXT NOT NULL
);
"""

SCHEMA_IDX = """
CREATE INDEX IF NOT EXISTS idx_{table}_category  ON {table}(category);
CREATE INDEX IF NOT EXISTS idx_{table}_published ON {table}(published_at DESC);
CREATE INDEX IF NOT EXISTS idx_{table}_hotness   ON {table}(hotness_score DESC);
CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_url   ON {table}(source_url);
CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_title ON {table}(title);
"""


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path], tables: Iterable[str]) -> aiosqlite.Connection:
    """初始化数据库并返回连接；每个地区表都会建好（已存在则跳过）"""
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(p))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    for table in tables:
        await db.execute(SCHEMA_ARTICLES.format(table=table))
        for stmt in SCHEMA_IDX.format(table=table).split(";"):
            s = stmt.strip()
            if s:
                await db.execute(s + ";")
    await db.commit()
    return db


def _row_to_dict(row: Any) -> Dict[str, Any]:
    d = {k: row[k] for k in row.keys()}
    for k in BOOL_COLUMNS:
        if k in d:
            d[k] = bool(d[k])
    return d


# --------- 写入（去重） ---------
async def insert_article(db: aiosqlite.Connection, table: str, article: Any) -> Optional[Dict[str, Any]]:
    """
    写入一篇文章。支持 dataclass 或 dict。
    同表已有相同 source_url 或 title 时不写，返回 None；成功返回写入的行。
    去重靠唯一索引 + INSERT OR IGNORE，并发写同一篇也只会落一行。
    """
    if hasattr(article, "__dict__"):
        data = article.__dict__.copy()
    elif isinstance(article, dict):
        data = article.copy()
    else:
        raise TypeError("insert_article: article must be Article-like or dict")

    title = str(data.get("title") or "").strip()
    source_url = str(data.get("source_url") or "").strip()
    if not title or not source_url:
        raise ValueError("insert_article: missing title or source_url")
    if data.get("id") in (None, ""):
        raise ValueError("insert_article: missing id")

    published = parse_datetime(data.get("published_at"))
    if published is None:
        raise ValueError(f"insert_article: bad published_at {data.get('published_at')!r}")
    aggregated = parse_datetime(data.get("aggregated_at")) or utc_now()

    row = {
        "id": int(data["id"]),
        "title": title,
        "description": data.get("description") or "",
        "summary": data.get("summary") or "",
        "content": data.get("content"),
        "image_url": data.get("image_url"),
        "preview_image_url": data.get("preview_image_url"),
        "source_url": source_url,
        "source_id": data.get("source_id") or "",
        "category": data.get("category") or "general",
        "language": data.get("language") or "",
        "hotness_score": int(data.get("hotness_score", 50) or 0),
        "is_breaking": int(bool(data.get("is_breaking"))),
        "is_trending": int(bool(data.get("is_trending"))),
        "views": int(data.get("views", 0) or 0),
        "shares": int(data.get("shares", 0) or 0),
        "comments": int(data.get("comments", 0) or 0),
        "published_at": to_iso_utc(published),
        "aggregated_at": to_iso_utc(aggregated),
    }
    cols = ", ".join(ARTICLE_COLUMNS)
    marks = ",".join("?" for _ in ARTICLE_COLUMNS)
    cur = await db.execute(
        f"INSERT OR IGNORE INTO {table}({cols}) VALUES({marks});",
        tuple(row[c] for c in ARTICLE_COLUMNS),
    )
    await db.commit()
    if not cur.rowcount:
        return None
    for k in BOOL_COLUMNS:
        row[k] = bool(row[k])
    return row


# --------- 查询 ---------
async def fetch_articles(
    db: aiosqlite.Connection,
    table: str,
    *,
    category: Optional[str] = None,
    floor: Optional[datetime] = None,
    limit: int = FETCH_LIMIT,
) -> List[Dict[str, Any]]:
    """
    category: None/'all' 全部；'hot' 只要 is_breaking；其他按分类精确匹配。
    按发布时间倒序，其次热度倒序。
    """
    where = []
    params: List[Any] = []
    if floor is not None:
        where.append("published_at >= ?")
        params.append(to_iso_utc(floor))
    if category == "hot":
        where.append("is_breaking = 1")
    elif category and category not in READ_FILTERS:
        where.append("category = ?")
        params.append(category)

    sql = f"SELECT * FROM {table}"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY published_at DESC, hotness_score DESC LIMIT ?;"
    params.append(int(limit))

    out: List[Dict[str, Any]] = []
    async with db.execute(sql, tuple(params)) as cur:
        async for row in cur:
            out.append(_row_to_dict(row))
    return out


async def count_articles(db: aiosqlite.Connection, table: str) -> int:
    async with db.execute(f"SELECT COUNT(*) FROM {table};") as cur:
        row = await cur.fetchone()
    return int(row[0]) if row else 0


# --------- 清理 ---------
async def delete_before(db: aiosqlite.Connection, table: str, floor: datetime) -> int:
    cur = await db.execute(f"DELETE FROM {table} WHERE published_at < ?;", (to_iso_utc(floor),))
    await db.commit()
    return cur.rowcount or 0


def range_start(range_name: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """today / week / month 的起点；all 返回 None（不限）"""
    if range_name not in DELETE_RANGES:
        raise ValueError(f"unknown range: {range_name!r}")
    now = now or utc_now()
    if range_name == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if range_name == "week":
        return now - timedelta(days=7)
    if range_name == "month":
        return now - timedelta(days=30)
    return None


async def delete_articles(db: aiosqlite.Connection, table: str, range_name: str = "all",
                          now: Optional[datetime] = None) -> int:
    start = range_start(range_name, now)
    if start is None:
        cur = await db.execute(f"DELETE FROM {table};")
    else:
        cur = await db.execute(f"DELETE FROM {table} WHERE published_at >= ?;", (to_iso_utc(start),))
    await db.commit()
    return cur.rowcount or 0


class ArticleStore:
    """
    调度器用的持久化适配器：地区 -> 表名由 SourceRegistry 决定。
    所有方法都不向外抛错：读失败返回 []/0，写失败返回 None，批量删除返回 {deleted, errors}。
    """

    def __init__(self, db: aiosqlite.Connection, registry: SourceRegistry, validator=None):
        self._db = db
        self._registry = registry
        self._validator = validator

    @classmethod
    async def open(cls, db_path: Union[str, Path], registry: SourceRegistry, validator=None) -> "ArticleStore":
        db = await init_db(db_path, registry.tables().values())
        print(f"[storage] 数据库已就绪: {db_path}")
        return cls(db, registry, validator)

    def _table(self, region: str) -> str:
        table = self._registry.table_for(region)
        if table is None:
            raise KeyError(f"unknown region: {region!r}")
        return table

    def _regions(self, region: str) -> List[str]:
        return self._registry.regions if region == "all" else [region]

    async def insert(self, region: str, article: Any) -> Optional[Dict[str, Any]]:
        title = article.get("title") if isinstance(article, dict) else getattr(article, "title", "")
        try:
            row = await insert_article(self._db, self._table(region), article)
        except Exception as e:
            print(f"[storage] 写入失败 {region} '{str(title)[:60]}': {e!r}")
            return None
        if row is None:
            print(f"[storage] 重复文章，跳过 {region}: {str(title)[:60]}")
        return row

    async def fetch(self, region: str, category: Optional[str] = None,
                    floor: Optional[datetime] = None, limit: int = FETCH_LIMIT) -> List[Dict[str, Any]]:
        if floor is None and self._validator is not None:
            floor = self._validator.floor()
        try:
            return await fetch_articles(self._db, self._table(region), category=category, floor=floor, limit=limit)
        except Exception as e:
            print(f"[storage] 读取失败 {region}/{category}: {e!r}")
            return []

    async def count(self, region: str = "all") -> int:
        total = 0
        for r in self._regions(region):
            try:
                total += await count_articles(self._db, self._table(r))
            except Exception as e:
                print(f"[storage] 计数失败 {r}: {e!r}")
        return total

    async def delete_older_than(self, floor: datetime) -> Dict[str, int]:
        deleted = errors = 0
        for r in self._registry.regions:
            try:
                n = await delete_before(self._db, self._table(r), floor)
                if n:
                    print(f"[storage] {r} 删除 {n} 条早于 {to_iso_utc(floor)} 的文章")
                deleted += n
            except Exception as e:
                print(f"[storage] 清理旧文章失败 {r}: {e!r}")
                errors += 1
        return {"deleted": deleted, "errors": errors}

    async def delete_invalid(self) -> Dict[str, Any]:
        """逐行复查（日期/链接/域名/字段），不合格的删掉；breakdown 按原因计数"""
        breakdown = {reason: 0 for reason in REJECT_REASONS}
        deleted = errors = 0
        if self._validator is None:
            print("[storage] 没有 validator，跳过无效文章清理")
            return {"deleted": 0, "errors": 0, "breakdown": breakdown}

        for r in self._registry.regions:
            table = self._table(r)
            try:
                bad_ids = []
                async with self._db.execute(f"SELECT * FROM {table};") as cur:
                    async for row in cur:
                        reason = self._validator.check_stored(_row_to_dict(row), r)
                        if reason is not None:
                            bad_ids.append(row["id"])
                            breakdown[reason] = breakdown.get(reason, 0) + 1
                for id_ in bad_ids:
                    await self._db.execute(f"DELETE FROM {table} WHERE id = ?;", (id_,))
                await self._db.commit()
                if bad_ids:
                    print(f"[storage] {r} 删除 {len(bad_ids)} 条无效文章")
                deleted += len(bad_ids)
            except Exception as e:
                print(f"[storage] 清理无效文章失败 {r}: {e!r}")
                errors += 1
        return {"deleted": deleted, "errors": errors, "breakdown": breakdown}

    async def delete_range(self, region: str, range_name: str = "all") -> Dict[str, int]:
        if range_name not in DELETE_RANGES:
            raise ValueError(f"unknown range: {range_name!r}")
        deleted = errors = 0
        for r in self._regions(region):
            try:
                deleted += await delete_articles(self._db, self._table(r), range_name)
            except Exception as e:
                print(f"[storage] 删除失败 {r}/{range_name}: {e!r}")
                errors += 1
        return {"deleted": deleted, "errors": errors}

    async def close(self):
        await self._db.close()
