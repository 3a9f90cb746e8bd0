"""worker 句柄与 worker 池

每个阶段（分析 / 安装）创建自己的一组 worker:

  spawner.spawn(factory) -> handle -> handle.init() -> ... -> handle.stop()
  -> spawner.terminate(handle)

每个 handle 持有独立的 PackageManager（即独立的本轮去重集合），
相当于一个独立执行上下文。

空闲 worker 的获取由 WorkerPool 负责: 空闲队列的一次 get 就是一次原子占用，
busy 标记只由池写入，不存在"两次并发获取看到同一个空闲 worker"的竞争。
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Generic, Iterable, TypeVar

from sandpm.core.dep.fetcher import ArchiveFetcher
from sandpm.core.dep.manager import PackageManager
from sandpm.core.dep.resolver import VersionResolver
from sandpm.core.log_stream import LogStream
from sandpm.core.membership import NameClaims
from sandpm.core.models import (
    AnalysisResult,
    PackageRequest,
    RegistryOptions,
    ResolvedPackage,
)
from sandpm.core.protocols import Storage, WorkerHandle
from sandpm.utils.net import HttpGet

logger = logging.getLogger(__name__)

H = TypeVar("H", bound=WorkerHandle)


class _BaseWorker:
    """worker 公共部分: 生命周期 + 忙碌标记"""

    kind = "worker"

    def __init__(
        self,
        storage: Storage,
        *,
        options: RegistryOptions | None = None,
        transport: HttpGet | None = None,
        skip_packages: Iterable[str] = (),
        log_stream: LogStream | None = None,
        shared: NameClaims | None = None,
    ) -> None:
        self.storage = storage
        self.options = options or RegistryOptions()
        self._transport = transport
        self._skip_packages = tuple(skip_packages)
        self._log_stream = log_stream
        self._shared = shared
        self._busy = False
        self.manager: PackageManager | None = None

    def init(self) -> None:
        self.manager = PackageManager(
            self.storage,
            VersionResolver(self.options, transport=self._transport),
            ArchiveFetcher(transport=self._transport, timeout=self.options.timeout),
            skip_packages=self._skip_packages,
            log_stream=self._log_stream,
            shared=self._shared,
        )
        self._busy = False

    def get_busy(self) -> bool:
        return self._busy

    def set_busy(self, busy: bool) -> None:
        self._busy = busy

    def stop(self) -> None:
        self.manager = None
        logger.debug("%s 已停止", self.kind)

    def _require_manager(self) -> PackageManager:
        if self.manager is None:
            raise RuntimeError(f"{self.kind} 未初始化或已停止")
        return self.manager


class AnalyzeWorker(_BaseWorker):
    """分析阶段 worker（满足 Analyzer 协议）"""

    kind = "analyze-worker"

    def analyze(self, request: PackageRequest) -> AnalysisResult | None:
        return self._require_manager().analyze(request, self.options)


class InstallWorker(_BaseWorker):
    """安装阶段 worker（满足 Installer 协议）"""

    kind = "install-worker"

    def install(self, root_dir: str, package: ResolvedPackage) -> bool:
        return self._require_manager().install(
            root_dir, package.to_request(), self.options,
        )


class WorkerSpawner:
    """执行上下文的创建与回收

    当前实现在本进程内创建 handle；线程由调度器的线程池提供。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: list[WorkerHandle] = []

    def spawn(self, factory: Callable[[], H]) -> H:
        handle = factory()
        with self._lock:
            self._live.append(handle)
        return handle

    def terminate(self, handle: WorkerHandle) -> None:
        with self._lock:
            if handle in self._live:
                self._live.remove(handle)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)


class WorkerPool(Generic[H]):
    """固定大小的 worker 池，空闲 worker 的占用与归还都由池完成"""

    def __init__(self, handles: list[H], spawner: WorkerSpawner | None = None) -> None:
        if not handles:
            raise ValueError("worker 池至少需要一个 worker")
        self.handles = list(handles)
        self._spawner = spawner
        self._idle: queue.Queue[H] = queue.Queue()
        for handle in self.handles:
            self._idle.put(handle)

    @classmethod
    def spawn(
        cls, factory: Callable[[], H], size: int, spawner: WorkerSpawner | None = None,
    ) -> WorkerPool[H]:
        """创建并初始化 size 个 worker"""
        spawner = spawner or WorkerSpawner()
        handles: list[H] = []
        for _ in range(max(1, size)):
            handle = spawner.spawn(factory)
            handle.init()
            handles.append(handle)
        logger.info("已启动 %d 个 worker", len(handles))
        return cls(handles, spawner)

    def __len__(self) -> int:
        return len(self.handles)

    def claim(self, timeout: float | None = None) -> H:
        """占用一个空闲 worker（阻塞直到有空闲）"""
        handle = self._idle.get(timeout=timeout)
        handle.set_busy(True)
        return handle

    def release(self, handle: H) -> None:
        handle.set_busy(False)
        self._idle.put(handle)

    @property
    def idle_count(self) -> int:
        return self._idle.qsize()

    def shutdown(self) -> None:
        """停止并回收所有 worker"""
        for handle in self.handles:
            try:
                handle.stop()
            finally:
                if self._spawner is not None:
                    self._spawner.terminate(handle)
        logger.info("已停止 %d 个 worker", len(self.handles))

    def __enter__(self) -> WorkerPool[H]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown()
