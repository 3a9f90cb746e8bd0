"""图遍历调度器 - 在固定大小的 worker 池上并行遍历依赖图

分析与安装两个阶段共用同一套遍历逻辑:

  - 前沿队列（frontier）按 key 去重: 已缓存 / 执行中 / 已完成 / 已排队的 key 不再入队
  - 控制线程从池中占用空闲 worker 并提交任务，执行中的任务数不超过池大小
  - 任务完成后只由控制线程合并结果、扩展前沿
  - 前沿与执行中集合同时为空时阶段结束

任务失败按 continue_on_error 策略处理: 为 True 时记录到 failures 并继续，
为 False 时停止派发、等待执行中的任务结束后抛出第一个错误。
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable

from sandpm.core.models import TaskFailure, WalkReport
from sandpm.core.workers import H, WorkerPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepResult:
    """单个任务的产出: 结果 key、结果值，以及需要继续遍历的子节点"""

    key: str
    value: Any
    edges: tuple[Any, ...] = ()


# 任务签名: (worker, 前沿条目) -> StepResult，返回 None 表示无产出
Task = Callable[[H, Any], "StepResult | None"]


def _default_key(item: Any) -> str:
    return item.key


class GraphWalker(Generic[H]):
    """有界并发的迭代式图遍历"""

    def __init__(
        self,
        pool: WorkerPool[H],
        task: Task,
        *,
        key: Callable[[Any], str] = _default_key,
        phase: str = "walk",
        cached_keys: Iterable[str] = (),
        continue_on_error: bool = True,
    ) -> None:
        self.pool = pool
        self.task = task
        self.key = key
        self.phase = phase
        self.cached_keys = frozenset(cached_keys)
        self.continue_on_error = continue_on_error

    def walk(self, seeds: Iterable[Any]) -> WalkReport:
        """从 seeds 出发遍历至前沿耗尽，返回本阶段汇总"""
        report = WalkReport(phase=self.phase)
        frontier: deque[Any] = deque()
        queued: set[str] = set()
        running: dict[Future, str] = {}
        first_error: BaseException | None = None
        limit = len(self.pool)

        def known(k: str) -> bool:
            return (
                k in self.cached_keys
                or k in queued
                or k in report.results
                or k in running.values()
            )

        def enqueue(items: Iterable[Any]) -> None:
            for item in items:
                k = self.key(item)
                if known(k):
                    report.skipped += 1
                    continue
                queued.add(k)
                frontier.append(item)

        enqueue(seeds)
        logger.info("[%s] 开始遍历: %d 个起始节点, %d 个 worker",
                    self.phase, len(frontier), limit)

        with ThreadPoolExecutor(max_workers=limit,
                                thread_name_prefix=f"sandpm-{self.phase}") as executor:
            while frontier or running:
                while frontier and len(running) < limit and first_error is None:
                    item = frontier.popleft()
                    k = self.key(item)
                    queued.discard(k)
                    if known(k):
                        report.skipped += 1
                        continue
                    handle = self.pool.claim()
                    running[executor.submit(self._run, handle, item)] = k
                    report.dispatched += 1
                    report.peak_in_flight = max(report.peak_in_flight, len(running))

                if first_error is not None and frontier:
                    logger.warning("[%s] 已停止派发, 丢弃 %d 个待处理节点",
                                   self.phase, len(frontier))
                    frontier.clear()
                    queued.clear()
                if not running:
                    continue

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    k = running.pop(future)
                    try:
                        step = future.result()
                    except Exception as e:
                        logger.error("[%s] 任务失败: %s: %s", self.phase, k, e,
                                     extra={"phase": self.phase, "package": k})
                        report.failures.append(TaskFailure(
                            key=k, phase=self.phase,
                            message=str(e), error_type=type(e).__name__,
                        ))
                        if not self.continue_on_error and first_error is None:
                            first_error = e
                        continue
                    if step is None:
                        continue
                    report.results[step.key] = step.value
                    if first_error is None:
                        enqueue(step.edges)

        logger.info(
            "[%s] 遍历结束: 完成 %d, 派发 %d, 跳过 %d, 失败 %d, 峰值并发 %d",
            self.phase, len(report.results), report.dispatched,
            report.skipped, len(report.failures), report.peak_in_flight,
        )
        if first_error is not None:
            raise first_error
        return report

    def _run(self, handle: H, item: Any) -> StepResult | None:
        try:
            return self.task(handle, item)
        finally:
            self.pool.release(handle)
