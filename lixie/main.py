# lixie/main.py
# 串起：sources -> quota -> llm -> fetcher -> validator -> storage -> scheduler
# 用法：
#   python -m lixie.main --run-seconds 600    # 跑 10 分钟（0 = 常驻）
#   python -m lixie.main --status             # 环境 / 配额 / 文章数
#   python -m lixie.main --cleanup            # 只做一次旧文章 + 无效文章清理

from __future__ import annotations
import asyncio
import os
from pathlib import Path
from typing import Optional

import yaml

from .fetcher import FetchClient
from .llm import GroqClient, get_api_key
from .probe import UrlProbe
from .quota import DEFAULT_MODELS, QuotaTracker
from .scheduler import DEFAULTS as SCHEDULER_DEFAULTS, Scheduler
from .sources import load_registry
from .storage import ArticleStore
from .validator import DEFAULT_DATE_FLOOR, Validator

ROOT = Path(__file__).resolve().parents[1]


DEFAULT_CFG = {
    "scheduler": dict(SCHEDULER_DEFAULTS),
    "llm": {
        "base_url": "https://api.groq.com/openai/v1",
        "timeout_sec": 60,
        "temperature": 0.7,
        "max_tokens": 4000,
        "models": [dict(m) for m in DEFAULT_MODELS],
    },
    "validation": {
        "date_floor": DEFAULT_DATE_FLOOR,
        "max_age_days": 0,
        "accept_undated": False,
    },
    "probe": {
        "enabled": False,
        "timeout_sec": 15,
    },
    "database": {
        "path": "lixie.db",
    },
}


def load_cfg(path: Optional[Path] = None) -> dict:
    """ops/config.yml 可选；不存在就用默认。每个 section 单独浅合并。"""
    cfg_path = path or ROOT / "ops" / "config.yml"
    out = {k: dict(v) for k, v in DEFAULT_CFG.items()}
    if not cfg_path.exists():
        return out
    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except Exception as e:
        print(f"[main] 读取 {cfg_path.name} 失败，使用默认。err={e}")
        return out
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = {**out[key], **value}
        else:
            out[key] = value
    return out


def database_path(cfg: dict) -> str:
    """DATABASE_URL 优先（支持 sqlite:/// 前缀），否则 database.path（相对路径基于项目根）"""
    url = os.environ.get("DATABASE_URL", "").strip()
    if url:
        for prefix in ("sqlite:///", "sqlite://"):
            if url.startswith(prefix):
                return url[len(prefix):]
        return url
    p = str((cfg.get("database") or {}).get("path") or "").strip()
    if not p:
        return ""
    return p if Path(p).is_absolute() else str(ROOT / p)


def check_env(cfg: dict) -> dict:
    has_api_key = bool(get_api_key(cfg.get("llm")))
    has_database = bool(database_path(cfg))
    missing = []
    if not has_api_key:
        missing.append("GROQ_API_KEY")
    if not has_database:
        missing.append("DATABASE_URL")
    if missing:
        message = "缺少配置: " + ", ".join(missing)
    else:
        message = "环境变量已配置"
    return {
        "has_api_key": has_api_key,
        "has_database": has_database,
        "all_configured": not missing,
        "message": message,
    }


async def check_status(cfg: dict, store: Optional[ArticleStore]) -> dict:
    out = check_env(cfg)
    count = await store.count("all") if store is not None else 0
    out["has_articles"] = count > 0
    out["article_count"] = count
    return out


class App:
    """持有所有组件，负责统一关闭"""

    def __init__(self, cfg: dict):
        self.cfg = cfg
        self.registry = load_registry()
        self.quota = QuotaTracker(cfg["llm"].get("models"))
        self.validator = Validator(self.registry, cfg.get("validation"))
        self.probe = UrlProbe(cfg.get("probe"))
        self.api_key = get_api_key(cfg.get("llm"))
        self.llm = GroqClient(self.api_key, cfg.get("llm"))
        self.fetcher = FetchClient(self.llm, self.quota, self.registry, self.validator)
        self.store: Optional[ArticleStore] = None
        self.scheduler: Optional[Scheduler] = None

    async def open(self) -> "App":
        db_path = database_path(self.cfg)
        if db_path:
            try:
                self.store = await ArticleStore.open(db_path, self.registry, self.validator)
            except Exception as e:
                print(f"[main] 打开数据库失败: {e!r}")
        self.scheduler = Scheduler(
            self.fetcher, self.validator, self.store, self.registry,
            self.cfg.get("scheduler"), api_key=self.api_key, probe=self.probe,
        )
        return self

    async def close(self):
        if self.scheduler is not None:
            self.scheduler.stop()
            await self.scheduler.join()
        await self.llm.close()
        await self.probe.close()
        if self.store is not None:
            await self.store.close()


async def print_status(cfg: dict):
    app = await App(cfg).open()
    try:
        st = await check_status(cfg, app.store)
        print(f"[status] {st['message']}")
        print(f"[status] api_key={st['has_api_key']} database={st['has_database']} "
              f"articles={st['article_count']}")
        if app.store is not None:
            for region in app.registry.regions:
                print(f"[status]   {region:<5} {app.registry.table_for(region):<14} {await app.store.count(region)}")
        print("[status] 模型额度（本进程）:\n" + app.quota.summary())
    finally:
        await app.close()


async def run_cleanup(cfg: dict):
    app = await App(cfg).open()
    try:
        if app.store is None:
            print("[cleanup] 数据库不可用")
            return
        old = await app.store.delete_older_than(app.validator.floor())
        bad = await app.store.delete_invalid()
        print(f"[cleanup] 旧文章 deleted={old['deleted']} errors={old['errors']}")
        print(f"[cleanup] 无效文章 deleted={bad['deleted']} errors={bad['errors']} breakdown={bad['breakdown']}")
    finally:
        await app.close()


async def main(run_seconds: int = 0):
    cfg = load_cfg()
    env = check_env(cfg)
    print(f"[main] {env['message']}")

    app = await App(cfg).open()
    try:
        ok = await app.scheduler.start()
        if not ok:
            print("[main] 调度器没有启动，退出")
            return

        print(f"[main] running for {run_seconds}s …" if run_seconds > 0 else "[main] running forever …")
        if run_seconds and run_seconds > 0:
            await asyncio.sleep(run_seconds)
        else:
            # 0 或负数 => 永久运行
            stop = asyncio.Event()
            await stop.wait()
    except asyncio.CancelledError:
        print("[main] cancelled")
        raise
    finally:
        if app.scheduler is not None:
            print(f"[main] status: {app.scheduler.get_status()}")
        await app.close()
        print("[main] finished")


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="LIXIE region-rotating news fetcher")
    parser.add_argument("--run-seconds", type=int, default=0)
    parser.add_argument("--status", action="store_true", help="打印环境 / 配额 / 文章数后退出")
    parser.add_argument("--cleanup", action="store_true", help="执行一次旧文章 + 无效文章清理后退出")
    args = parser.parse_args()

    if args.status:
        asyncio.run(print_status(load_cfg()))
    elif args.cleanup:
        asyncio.run(run_cleanup(load_cfg()))
    else:
        asyncio.run(main(run_seconds=args.run_seconds))
