"""安装服务: CLI 与宿主共享的安装编排

两阶段流水线:

  1. 分析: 读取 package.json 的 dependencies，作为起始节点遍历依赖图，
     与 .depCache 合并后持久化
  2. 安装: 已解析的包减去 .installCache，逐个下载写入 node_modules，
     已安装包名与旧缓存合并后持久化

安装阶段只在分析阶段的前沿与执行中集合都清空后开始。
每个阶段创建、使用并回收自己的一组 worker。

用法:
    svc = InstallService(MemoryStorage(), Config(root_dir="/app"))
    report = svc.install()
    report.summary()   # {"resolved": 12, "installed": 12, "failed": 0, ...}
"""

from __future__ import annotations

import functools
import json
import logging
import posixpath
import time

from sandpm.core.config import Config, get_config
from sandpm.core.dep.resolver import VersionResolver
from sandpm.core.exceptions import ManifestError, StorageError
from sandpm.core.log_stream import LogStream
from sandpm.core.membership import NameClaims
from sandpm.core.models import (
    InstallReport,
    PackageRequest,
    RegistryOptions,
    ResolvedPackage,
    WalkReport,
)
from sandpm.core.protocols import Analyzer, Installer, Storage
from sandpm.core.run_cache import RunCache
from sandpm.core.scheduler import GraphWalker, StepResult
from sandpm.core.workers import AnalyzeWorker, InstallWorker, WorkerPool, WorkerSpawner
from sandpm.utils.net import HttpGet

logger = logging.getLogger(__name__)

MANIFEST = "package.json"


def _analyze_step(worker: Analyzer, request: PackageRequest) -> StepResult | None:
    result = worker.analyze(request)
    if result is None:
        return None
    return StepResult(result.resolved.key, result.resolved, result.edges)


def _install_step(root_dir: str, worker: Installer, package: ResolvedPackage) -> StepResult | None:
    if not worker.install(root_dir, package):
        return None
    return StepResult(package.key, package.version)


class InstallService:
    """依赖安装编排服务"""

    def __init__(
        self,
        storage: Storage,
        config: Config | None = None,
        *,
        spawner: WorkerSpawner | None = None,
        log_stream: LogStream | None = None,
        transport: HttpGet | None = None,
    ) -> None:
        self.storage = storage
        self.config = config or get_config()
        self.spawner = spawner or WorkerSpawner()
        self.log_stream = log_stream or LogStream()
        self.transport = transport
        self.cache = RunCache(storage, self.config.root_dir)

    @property
    def options(self) -> RegistryOptions:
        return RegistryOptions(
            registry=self.config.registry, timeout=self.config.request_timeout,
        )

    # ---- 清单 ----

    def read_manifest(self) -> list[PackageRequest]:
        """读取 {root}/package.json 的 dependencies

        Raises:
            ManifestError: 清单不存在、不是合法 JSON 或 dependencies 格式错误
        """
        path = posixpath.join(self.config.root_dir or "/", MANIFEST)
        if not self.storage.exists(path):
            raise ManifestError(f"找不到 {MANIFEST}: {path}")
        try:
            data = json.loads(self.storage.read_file(path, "utf-8"))
        except (StorageError, ValueError) as e:
            raise ManifestError(f"{MANIFEST} 无法解析: {path}: {e}") from e
        if not isinstance(data, dict):
            raise ManifestError(f"{MANIFEST} 顶层必须是对象: {path}")
        deps = data.get("dependencies") or {}
        if not isinstance(deps, dict):
            raise ManifestError(f"{MANIFEST} 的 dependencies 必须是对象: {path}")
        return [PackageRequest(str(name), str(rng or "")) for name, rng in deps.items()]

    # ---- worker 池 ----

    def _worker_kwargs(self) -> dict:
        return {
            "options": self.options,
            "transport": self.transport,
            "skip_packages": self.config.skip_packages,
            "log_stream": self.log_stream,
        }

    def _analyze_pool(self) -> WorkerPool[AnalyzeWorker]:
        factory = functools.partial(AnalyzeWorker, self.storage, **self._worker_kwargs())
        return WorkerPool.spawn(factory, self.config.worker_count, self.spawner)

    def _install_pool(self, shared: NameClaims | None) -> WorkerPool[InstallWorker]:
        factory = functools.partial(
            InstallWorker, self.storage, shared=shared, **self._worker_kwargs(),
        )
        return WorkerPool.spawn(factory, self.config.worker_count, self.spawner)

    # ---- 阶段 ----

    def analyze(self) -> tuple[list[ResolvedPackage], WalkReport]:
        """分析阶段: 返回（合并缓存后的全部已解析包, 本次遍历汇总）"""
        seeds = self.read_manifest()
        cached = {p.name: p for p in self.cache.load_analysis()}
        self.log_stream.log(f"开始依赖分析: {len(seeds)} 个直接依赖, 缓存 {len(cached)} 个")

        with self._analyze_pool() as pool:
            walker = GraphWalker(
                pool, _analyze_step,
                phase="analyze",
                cached_keys=cached.keys(),
                continue_on_error=self.config.continue_on_error,
            )
            report = walker.walk(seeds)

        merged = dict(cached)
        merged.update(report.results)
        packages = list(merged.values())
        self.cache.save_analysis(packages)
        self.log_stream.log(f"依赖分析结束: 共 {len(packages)} 个包")
        return packages, report

    def install(self) -> InstallReport:
        """完整安装: 分析 + 安装，两阶段失败汇总在报告中"""
        start = time.monotonic()
        if self.config.clear_cache:
            self.clear_cache()

        packages, analysis = self.analyze()
        installed_before = self.cache.load_installed()
        pending = [p for p in packages if p.name not in installed_before]
        self.log_stream.log(
            f"开始安装: 待安装 {len(pending)} 个, 已安装缓存 {len(installed_before)} 个",
        )

        shared = None
        if self.config.use_shared_membership:
            shared = NameClaims(max(len(pending), 1))

        step = functools.partial(_install_step, self.config.root_dir)
        with self._install_pool(shared) as pool:
            walker = GraphWalker(
                pool, step,
                phase="install",
                cached_keys=installed_before,
                continue_on_error=self.config.continue_on_error,
            )
            report = walker.walk(pending)

        installed = list(report.results)
        self.cache.save_installed(installed_before | set(installed))

        result = InstallReport(
            packages=packages,
            installed=installed,
            failures=analysis.failures + report.failures,
            duration=time.monotonic() - start,
        )
        level = "info" if result.success else "warn"
        self.log_stream.log(
            f"安装结束: 新安装 {len(installed)} 个, 失败 {len(result.failures)} 个", level,
        )
        return result

    def resolve(self, name: str, version_range: str = "latest") -> ResolvedPackage:
        """单独解析一个包（不写缓存）"""
        resolver = VersionResolver(self.options, transport=self.transport)
        return resolver.resolve(name, version_range)

    def clear_cache(self) -> None:
        self.cache.clear()
        self.log_stream.log("缓存已清除")
