# -*- coding: utf-8 -*-
"""
tests/test_main.py
配置合并 / 环境检查 / 组件装配
"""
import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lixie import main as lixie_main
from lixie.main import App, DEFAULT_CFG, check_env, check_status, database_path, load_cfg


def test_load_cfg_defaults_when_missing(tmp_path):
    cfg = load_cfg(tmp_path / "missing.yml")
    assert cfg["scheduler"]["requests_per_cycle"] == DEFAULT_CFG["scheduler"]["requests_per_cycle"]
    assert cfg["validation"]["date_floor"] == "2025-12-14"


def test_load_cfg_merges_sections(tmp_path):
    p = tmp_path / "config.yml"
    p.write_text("scheduler:\n  stagger_sec: 5\nprobe:\n  enabled: true\n", encoding="utf-8")
    cfg = load_cfg(p)
    assert cfg["scheduler"]["stagger_sec"] == 5
    assert cfg["scheduler"]["reserve_requests"] == 20
    assert cfg["probe"] == {"enabled": True, "timeout_sec": 15}
    # 默认值本身不被改动
    assert DEFAULT_CFG["probe"]["enabled"] is False


def test_shipped_config_parses():
    cfg = load_cfg()
    assert [m["name"] for m in cfg["llm"]["models"]][0] == "deepseek-r1-distill-llama-70b"


def test_database_path(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:////var/lib/lixie.db")
    assert database_path({}) == "/var/lib/lixie.db"
    monkeypatch.delenv("DATABASE_URL")
    assert database_path({"database": {"path": "/tmp/x.db"}}) == "/tmp/x.db"
    assert database_path({"database": {"path": "rel.db"}}).endswith("rel.db")
    assert database_path({"database": {"path": ""}}) == ""


def test_check_env(monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    st = check_env({"llm": {}, "database": {"path": ""}})
    assert st["has_api_key"] is False
    assert st["has_database"] is False
    assert st["all_configured"] is False
    assert "GROQ_API_KEY" in st["message"] and "DATABASE_URL" in st["message"]

    monkeypatch.setenv("GROQ_API_KEY", "gsk_abc")
    st = check_env({"llm": {}, "database": {"path": "x.db"}})
    assert st["all_configured"] is True


def test_app_without_api_key_does_not_start(monkeypatch, tmp_path):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.setenv("DATABASE_URL", str(tmp_path / "app.db"))
    cfg = load_cfg(tmp_path / "missing.yml")

    async def go():
        app = await App(cfg).open()
        try:
            started = await app.scheduler.start()
            status = await check_status(cfg, app.store)
            return started, app.scheduler.get_status(), status
        finally:
            await app.close()

    started, sched_status, status = asyncio.run(go())
    assert started is False
    assert sched_status["running"] is False
    assert status["has_articles"] is False
    assert status["article_count"] == 0
    assert (tmp_path / "app.db").exists()


def test_main_returns_when_scheduler_cannot_start(monkeypatch, tmp_path):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.setenv("DATABASE_URL", str(tmp_path / "main.db"))
    monkeypatch.setattr(lixie_main, "load_cfg", lambda: load_cfg(tmp_path / "missing.yml"))
    # run_seconds=0 本来会常驻；启动失败时应直接返回
    asyncio.run(lixie_main.main(run_seconds=0))
