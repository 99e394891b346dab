# -*- coding: utf-8 -*-
"""
运维脚本：逐个探测 ops/sources.yml 里各地区来源首页是否能打开。
Usage:
    python tests/check_sources.py            # 全部地区
    python tests/check_sources.py --region jp
"""
import sys, os, asyncio, argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lixie.probe import LENIENT_STATUSES, UrlProbe
from lixie.sources import load_registry


async def main(region: str = ""):
    registry = load_registry()
    regions = [region] if region else registry.regions
    probe = UrlProbe({"enabled": True, "timeout_sec": 10})
    results = []
    try:
        for r in regions:
            for s in registry.sources(r):
                status = await probe.status_of(s.url)
                results.append((r, s.name, s.url, status))
    finally:
        await probe.close()

    ok = [x for x in results if x[3] is not None and x[3] < 400]
    lenient = [x for x in results if x[3] in LENIENT_STATUSES]
    bad = [x for x in results if x not in ok and x not in lenient]
    print("\n=== OK ===")
    for r, n, u, s in ok: print(f"{r:5} {n:20} {s}")
    print("\n=== BLOCKED (算可访问) ===")
    for r, n, u, s in lenient: print(f"{r:5} {n:20} {s}  {u}")
    print("\n=== PROBLEM ===")
    for r, n, u, s in bad: print(f"{r:5} {n:20} {s if s is not None else 'ERR':>4}  {u}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Probe region source homepages.")
    parser.add_argument("--region", default="", help="只检查某个地区（id/cn/jp/kr/intl）")
    args = parser.parse_args()
    asyncio.run(main(args.region))
