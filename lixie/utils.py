# 工具模块：时间、URL 相关的通用辅助函数

import time
from datetime import date, datetime, timezone
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


def now_ms() -> int:
    """
    获取当前时间的UTC毫秒时间戳

    返回:
        当前时间的毫秒时间戳
    """
    return int(time.time() * 1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> str:
    """当前 UTC 日期，YYYY-MM-DD"""
    return utc_now().date().isoformat()


def parse_datetime(value: Union[str, int, float, datetime, date, None]) -> Optional[datetime]:
    """
    宽松解析发布时间，统一成带时区的 UTC datetime。

    支持:
        - ISO-8601 字符串（含 Z 结尾、只有日期）
        - 毫秒/秒时间戳
        - datetime / date
    解析失败返回 None。
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        # 大于 1e11 视为毫秒
        ts = value / 1000.0 if value > 1e11 else float(value)
        try:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    # 秒级精度，方便 SQLite 里按字符串比较
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def host_of(url: str) -> str:
    """小写 host，不含端口"""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def normalize_link(url: Optional[str]) -> Optional[str]:
    """
    规范化链接：去掉 utm_*、ref/ref_src 等统计参数，去掉 fragment。
    让“同文不同链”更容易被识别为同一条。
    """
    if not url:
        return url
    try:
        u = urlparse(url)
        qs = [
            (k, v)
            for (k, v) in parse_qsl(u.query, keep_blank_values=True)
            if not k.lower().startswith("utm_") and k.lower() not in {"ref", "ref_src"}
        ]
        return urlunparse((u.scheme, u.netloc, u.path, u.params, urlencode(qs, doseq=True), ""))
    except ValueError:
        return url


def truncate(s: Optional[str], limit: int = 500) -> str:
    if s is None:
        return ""
    return s if len(s) <= limit else s[:limit - 3] + "..."
