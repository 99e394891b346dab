# -*- coding: utf-8 -*-
"""
lixie/scheduler.py
按地区轮转的抓取调度器（单事件循环，无锁）：

    start() -> 轮转: 选下一个地区 -> 计数清零 -> 错开 stagger_sec 排 N 次请求
                   -> 下一次轮转 rotation_interval_sec 后
                   -> 顺带跑一次队列 / 每 K 次轮转后台清理
    请求:   计数到顶 -> 用一个备用额度，没有就进队列
            否则 计数+1 -> fetcher -> validator -> (probe) -> store
    失败:   还能重试且有备用额度 -> retry_backoff_sec*(n+1) 后重试；否则进队列
    队列:   每 queue_drain_interval_sec 处理一批，最老的先出

所有定时器都是 loop.call_later 句柄，回调只负责 spawn 任务；stop() 全部取消。
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Set, Tuple

from .fetcher import FetchError
from .models import REJECT_URL, RequestQueueEntry
from .utils import now_ms

DEFAULTS = {
    "rotation_interval_sec": 300,      # 5 个地区 x 5 分钟 = 25 分钟一整轮
    "requests_per_cycle": 3,
    "stagger_sec": 60,
    "max_requests_per_region": 25,
    "reserve_requests": 20,
    "max_retries": 3,
    "retry_backoff_sec": 15,
    "queue_drain_interval_sec": 60,
    "queue_drain_batch": 5,
    "cleanup_every_rotations": 5,
}

RequestKey = Tuple[str, int]


class Scheduler:
    def __init__(self, fetcher, validator, store, registry, cfg: Optional[dict] = None,
                 *, api_key: str = "", probe=None):
        c = {**DEFAULTS, **(cfg or {})}
        self._fetcher = fetcher
        self._validator = validator
        self._store = store
        self._probe = probe
        self._api_key = api_key

        self.rotation_interval_sec = float(c["rotation_interval_sec"])
        self.requests_per_cycle = int(c["requests_per_cycle"])
        self.stagger_sec = float(c["stagger_sec"])
        self.max_requests_per_region = int(c["max_requests_per_region"])
        self.reserve_requests = int(c["reserve_requests"])
        self.max_retries = int(c["max_retries"])
        self.retry_backoff_sec = float(c["retry_backoff_sec"])
        self.queue_drain_interval_sec = float(c["queue_drain_interval_sec"])
        self.queue_drain_batch = int(c["queue_drain_batch"])
        self.cleanup_every_rotations = int(c["cleanup_every_rotations"])

        regions = c.get("regions") or registry.regions
        self._regions: List[str] = [r for r in regions if registry.table_for(r) is not None]

        # ---- 状态（只有调度器自己改） ----
        self._running = False
        self._starting = False
        self._counts: Dict[str, int] = {r: 0 for r in self._regions}
        self._reserve = self.reserve_requests
        self._queue: List[RequestQueueEntry] = []
        self._timers: Dict[RequestKey, asyncio.TimerHandle] = {}
        self._rotation_handle: Optional[asyncio.TimerHandle] = None
        self._drain_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._next_idx = 0
        self._rotations = 0
        self._seq = itertools.count()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ================= 控制 =================
    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> bool:
        if self._running or self._starting:
            print("[scheduler] 已在运行")
            return True
        if not self._api_key:
            print("[scheduler] 未配置 GROQ_API_KEY，调度器不启动")
            return False
        if self._store is None:
            print("[scheduler] 数据库不可用（DATABASE_URL / database.path），调度器不启动")
            return False
        if not self._regions:
            print("[scheduler] 没有可用地区（检查 ops/sources.yml），调度器不启动")
            return False

        # 启动时先清一次早于日期下限的旧文章；清理期间再调 start() 直接返回
        self._starting = True
        try:
            res = await self._store.delete_older_than(self._validator.floor())
            print(f"[scheduler] 启动清理: deleted={res.get('deleted', 0)} errors={res.get('errors', 0)}")
        except Exception as e:
            print(f"[scheduler] 启动清理失败: {e!r}")
        finally:
            self._starting = False

        self._loop = asyncio.get_running_loop()
        self._running = True
        print(f"[scheduler] started regions={self._regions} reserve={self._reserve}")
        self._rotate()
        self._schedule_drain()
        return True

    def stop(self) -> None:
        """取消所有定时器和在途请求；计数保留"""
        was_running = self._running
        self._running = False
        for h in self._timers.values():
            h.cancel()
        self._timers.clear()
        for h in (self._rotation_handle, self._drain_handle):
            if h is not None:
                h.cancel()
        self._rotation_handle = None
        self._drain_handle = None
        for t in list(self._tasks):
            t.cancel()
        if was_running:
            print("[scheduler] stopped")

    async def join(self) -> None:
        """等已取消/在途的任务真正结束（退出前调用）"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_status(self) -> Dict[str, Any]:
        pending = len(self._timers) + sum(
            1 for h in (self._rotation_handle, self._drain_handle) if h is not None
        )
        return {
            "running": self._running,
            "request_counts": dict(self._counts),
            "queue_length": len(self._queue),
            "available_reserve": self._reserve,
            "pending_timers": pending,
            "next_region": self._regions[self._next_idx] if self._regions else None,
        }

    # ================= 内部：任务 / 定时器 =================
    def _spawn(self, coro) -> asyncio.Task:
        t = asyncio.ensure_future(coro)
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)
        return t

    def _schedule_request(self, region: str, delay: float, retry_count: int = 0,
                          prepaid: bool = False, slot: Optional[int] = None) -> bool:
        """
        slot: 轮转里的第几个请求（0..requests_per_cycle-1）；同一地区同一 slot 还没触发时不会重复排。
        重试不传 slot，用 requests_per_cycle 之后的递增序号，永远不和轮转 slot 撞。
        prepaid=True 表示额度已经扣过（备用额度 / 队列派发），触发时不再检查计数。
        """
        if slot is None:
            slot = self.requests_per_cycle + next(self._seq)
        key = (region, slot)
        if key in self._timers:
            return False
        self._timers[key] = self._loop.call_later(
            max(0.0, delay), self._fire_request, key, retry_count, prepaid
        )
        return True

    def _fire_request(self, key: RequestKey, retry_count: int, prepaid: bool) -> None:
        self._timers.pop(key, None)
        if not self._running:
            return
        region = key[0]
        if not prepaid and not self._take_budget(region):
            self._enqueue(region, retry_count)
            print(f"[scheduler] {region} 本轮已到上限且没有备用额度，进入队列 (queue={len(self._queue)})")
            return
        self._spawn(self._run_request(region, retry_count))

    def _take_budget(self, region: str) -> bool:
        if self._counts.get(region, 0) < self.max_requests_per_region:
            self._counts[region] = self._counts.get(region, 0) + 1
            return True
        if self._reserve > 0:
            self._reserve -= 1
            print(f"[scheduler] {region} 使用备用额度，剩余 {self._reserve}")
            return True
        return False

    def _enqueue(self, region: str, retry_count: int) -> None:
        self._queue.append(RequestQueueEntry(region=region, enqueued_at=now_ms(), retry_count=retry_count))

    # ================= 轮转 =================
    def _rotate(self) -> None:
        self._rotation_handle = None
        if not self._running:
            return
        region = self._regions[self._next_idx]
        self._counts[region] = 0
        scheduled = sum(
            1 for i in range(self.requests_per_cycle)
            if self._schedule_request(region, i * self.stagger_sec, slot=i)
        )
        skipped = self.requests_per_cycle - scheduled
        print(f"[scheduler] 轮转 -> {region}，排了 {scheduled} 个请求 (间隔 {self.stagger_sec:g}s)"
              + (f"，{skipped} 个上一轮的还没触发" if skipped else ""))

        self._next_idx = (self._next_idx + 1) % len(self._regions)
        if self._next_idx == 0:
            self._reserve = self.reserve_requests
        self._rotations += 1

        self._rotation_handle = self._loop.call_later(self.rotation_interval_sec, self._rotate)
        self._drain_queue()
        if self.cleanup_every_rotations > 0 and self._rotations % self.cleanup_every_rotations == 0:
            self._spawn(self._cleanup())

    # ================= 队列 =================
    def _schedule_drain(self) -> None:
        if not self._running:
            return
        self._drain_handle = self._loop.call_later(self.queue_drain_interval_sec, self._drain_tick)

    def _drain_tick(self) -> None:
        self._drain_handle = None
        if not self._running:
            return
        self._drain_queue()
        self._schedule_drain()

    def _drain_queue(self) -> None:
        if not self._queue:
            return
        dispatched = dropped = 0
        keep: List[RequestQueueEntry] = []
        for entry in self._queue:
            if dispatched >= self.queue_drain_batch:
                keep.append(entry)
                continue
            if entry.retry_count >= self.max_retries:
                print(f"[scheduler] 丢弃 {entry.region} 的排队请求：已重试 {entry.retry_count} 次")
                dropped += 1
                continue
            if self._reserve > 0:
                self._reserve -= 1
            elif self._counts.get(entry.region, 0) < self.max_requests_per_region:
                self._counts[entry.region] = self._counts.get(entry.region, 0) + 1
            else:
                keep.append(entry)
                continue
            self._spawn(self._run_request(entry.region, entry.retry_count))
            dispatched += 1
        self._queue = keep
        if dispatched or dropped:
            print(f"[scheduler] 队列: 派发 {dispatched} 丢弃 {dropped} 剩余 {len(self._queue)}")

    # ================= 单次请求 =================
    def _on_failure(self, region: str, retry_count: int, err: Exception) -> None:
        if not self._running:
            return
        if retry_count < self.max_retries and self._reserve > 0:
            self._reserve -= 1
            delay = self.retry_backoff_sec * (retry_count + 1)
            print(f"[scheduler] {region} 失败，{delay:g}s 后重试 (第 {retry_count + 1} 次，备用剩余 {self._reserve}): {err}")
            self._schedule_request(region, delay, retry_count + 1, prepaid=True)
        else:
            self._enqueue(region, retry_count + 1)
            print(f"[scheduler] {region} 失败，进入队列 (retry={retry_count + 1}, queue={len(self._queue)}): {err}")

    async def _run_request(self, region: str, retry_count: int = 0) -> int:
        """返回本次入库条数"""
        try:
            candidates = await self._fetcher.fetch_candidates(region)
        except FetchError as e:
            self._on_failure(region, retry_count, e)
            return 0
        except Exception as e:
            print(f"[scheduler] {region} 抓取异常: {e!r}")
            self._on_failure(region, retry_count, e)
            return 0

        articles, stats = self._validator.filter_batch(candidates, region)

        # 同一批里 LLM 可能重复给同一篇
        seen: Set[str] = set()
        unique = []
        for a in articles:
            url = a.get("source_url")
            if url in seen:
                continue
            seen.add(url)
            unique.append(a)

        if self._probe is not None and self._probe.enabled:
            reachable = []
            for a in unique:
                if await self._probe.is_missing(a["source_url"]):
                    stats.accepted -= 1
                    stats.add(REJECT_URL)
                    continue
                reachable.append(a)
            unique = reachable

        saved = 0
        for a in unique:
            try:
                if await self._store.insert(region, a) is not None:
                    saved += 1
            except Exception as e:
                print(f"[scheduler] {region} 写入异常: {e!r}")
        print(f"[scheduler] {region} 候选 {len(candidates)} | {stats} | 入库 {saved}")
        return saved

    # ================= 清理 =================
    async def _cleanup(self) -> None:
        try:
            old = await self._store.delete_older_than(self._validator.floor())
            bad = await self._store.delete_invalid()
            print(
                f"[scheduler] 清理完成: 旧文章 {old.get('deleted', 0)} | 无效 {bad.get('deleted', 0)} "
                f"{bad.get('breakdown', {})} | errors={old.get('errors', 0) + bad.get('errors', 0)}"
            )
        except Exception as e:
            print(f"[scheduler] 清理失败: {e!r}")
