# -*- coding: utf-8 -*-
"""
lixie/sources.py
地区 -> 来源 / 表名 / 白名单域名 的静态登记表。
数据来自 ops/sources.yml，运行期只读。
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .models import CATEGORIES, Source
from .utils import host_of

MAX_SOURCES_PER_REGION = 10

# 表名会直接拼进 SQL，只允许简单标识符
_TABLE_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_SOURCES_PATH = ROOT / "ops" / "sources.yml"


class SourceRegistry:
    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        self._regions: Dict[str, dict] = {}
        for region, conf in (data.get("regions") or {}).items():
            conf = conf or {}
            table = str(conf.get("table") or region).strip().lower()
            if not _TABLE_RE.match(table):
                raise ValueError(f"invalid table name for region {region!r}: {table!r}")

            sources = [
                Source(
                    name=str(s.get("name", "")).strip(),
                    url=str(s.get("url", "")).strip(),
                    categories=[str(c) for c in (s.get("categories") or [])],
                )
                for s in (conf.get("sources") or [])
                if s and s.get("name") and s.get("url")
            ]
            if len(sources) > MAX_SOURCES_PER_REGION:
                print(f"[sources] {region} 来源超过 {MAX_SOURCES_PER_REGION} 个，只保留前 {MAX_SOURCES_PER_REGION} 个")
                sources = sources[:MAX_SOURCES_PER_REGION]

            domains = {str(d).strip().lower() for d in (conf.get("allowed_domains") or []) if d}
            for s in sources:
                h = host_of(s.url)
                if h.startswith("www."):
                    h = h[4:]
                if h:
                    domains.add(h)

            self._regions[str(region)] = {
                "table": table,
                "language": str(conf.get("language") or "en"),
                "sources": sources,
                "domains": sorted(domains),
            }

        self._aliases = {
            str(k).strip().lower(): str(v).strip().lower()
            for k, v in (data.get("category_aliases") or {}).items()
        }

    @property
    def regions(self) -> List[str]:
        return list(self._regions)

    def sources(self, region: str) -> List[Source]:
        conf = self._regions.get(region)
        return list(conf["sources"]) if conf else []

    def table_for(self, region: str) -> Optional[str]:
        conf = self._regions.get(region)
        return conf["table"] if conf else None

    def tables(self) -> Dict[str, str]:
        return {r: conf["table"] for r, conf in self._regions.items()}

    def language_for(self, region: str) -> str:
        conf = self._regions.get(region)
        return conf["language"] if conf else "en"

    def allowed_domains(self, region: str) -> List[str]:
        conf = self._regions.get(region)
        return list(conf["domains"]) if conf else []

    def normalize_category(self, label: Optional[str]) -> str:
        """来源栏目名/LLM 输出 -> 规范分类；映射不了就是 general"""
        if label is None:
            label = ""
        key = (label if isinstance(label, str) else str(label)).strip().lower()
        if key in CATEGORIES:
            return key
        mapped = self._aliases.get(key)
        if mapped in CATEGORIES:
            return mapped
        # "detikInet (tech)" 这类：取括号里的提示再试一次
        m = re.search(r"\(([^)]+)\)", key)
        if m:
            return self.normalize_category(m.group(1))
        return "general"


def load_registry(path: Union[str, Path, None] = None) -> SourceRegistry:
    p = Path(path) if path else DEFAULT_SOURCES_PATH
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"[sources] 未找到 {p}，没有可用的地区")
        data = {}
    return SourceRegistry(data)
