"""依赖包管理器

组合 VersionResolver 与 ArchiveFetcher，对外提供两个操作:

  - analyze:  解析版本 + 列出子依赖（供分析阶段扩展遍历前沿）
  - install:  解析 tarball 地址（未提供时）+ 下载解压 + 写入 node_modules

两者在一次运行内对同一包名幂等: 已分析 / 已安装 / 安装中的包直接跳过，
不触发任何网络或存储调用。

用法:
    pm = PackageManager(storage, log_stream=stream)
    result = pm.analyze(PackageRequest("react", "^18.2.0"))
    pm.install("/", result.resolved.to_request())
"""

from __future__ import annotations

import logging
import posixpath
import threading
from typing import Iterable

from sandpm.core.config import DEFAULT_SKIP_PACKAGES
from sandpm.core.dep.fetcher import ArchiveFetcher
from sandpm.core.dep.resolver import VersionResolver
from sandpm.core.exceptions import (
    AnalysisError,
    InstallError,
    SandpmError,
)
from sandpm.core.log_stream import LogStream
from sandpm.core.membership import NameClaims
from sandpm.core.models import (
    AnalysisResult,
    ArchiveEntry,
    PackageRequest,
    RegistryOptions,
)
from sandpm.core.protocols import Storage
from sandpm.core.storage import BINARY

logger = logging.getLogger(__name__)

NODE_MODULES = "node_modules"

# package.json 中空字符串版本范围的含义
ANY_RANGE = "*"


class PackageManager:
    """单个执行上下文内的包管理门面"""

    def __init__(
        self,
        storage: Storage,
        resolver: VersionResolver | None = None,
        fetcher: ArchiveFetcher | None = None,
        *,
        skip_packages: Iterable[str] = DEFAULT_SKIP_PACKAGES,
        log_stream: LogStream | None = None,
        shared: NameClaims | None = None,
    ) -> None:
        self.storage = storage
        self.resolver = resolver or VersionResolver()
        self.fetcher = fetcher or ArchiveFetcher()
        self.skip_packages = frozenset(skip_packages)
        self.log_stream = log_stream
        self.shared = shared

        self._lock = threading.Lock()
        self._analyzed: set[str] = set()
        self._installing: set[str] = set()
        self._installed: set[str] = set()

    def _emit(self, message: str, level: str = "info") -> None:
        if self.log_stream is not None:
            self.log_stream.log(message, level)

    # ------------------------------------------------------------------
    # 依赖分析
    # ------------------------------------------------------------------

    def analyze(
        self, request: PackageRequest, options: RegistryOptions | None = None,
    ) -> AnalysisResult | None:
        """解析单个依赖请求，本次运行已分析过的包名返回 None

        空版本范围按 "*" 处理（任意正式版本）。

        Raises:
            AnalysisError: 解析失败（原异常见 __cause__）
        """
        name = request.name
        wanted = request.version_range or ANY_RANGE
        with self._lock:
            if name in self._analyzed:
                return None
            self._analyzed.add(name)

        self._emit(f"开始分析: {name}@{wanted}")
        ok = False
        try:
            resolved = self.resolver.resolve(name, wanted, options)
            ok = True
        except SandpmError as e:
            self._emit(f"依赖分析失败: {name}@{wanted}, {e}", "error")
            logger.warning("依赖分析失败: %s@%s: %s", name, wanted, e,
                           extra={"phase": "analyze", "package": name})
            raise AnalysisError(f"依赖分析失败: {name}@{wanted}, {e}") from e
        finally:
            if not ok:
                with self._lock:
                    self._analyzed.discard(name)

        edges = tuple(PackageRequest(dep, rng) for dep, rng in resolved.dependencies)
        self._emit(f"分析结束: {resolved.spec} ({len(edges)} 个子依赖)")
        return AnalysisResult(resolved=resolved, edges=edges)

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def is_skipped(self, name: str) -> bool:
        return name in self.skip_packages

    def is_installed(self, name: str) -> bool:
        with self._lock:
            return name in self._installed

    def install(
        self,
        root_dir: str,
        request: PackageRequest,
        options: RegistryOptions | None = None,
    ) -> bool:
        """安装单个包，实际写入时返回 True，命中缓存/排除列表时返回 False

        Raises:
            InstallError: 解析、下载、解压或写入失败（原异常见 __cause__）
        """
        name = request.name
        version = request.version_range or ANY_RANGE
        key = f"{name}@{version}"

        with self._lock:
            hit = (
                name in self._installed
                or name in self._installing
                or self.is_skipped(name)
            )
            if not hit:
                self._installing.add(name)
        if hit or not self._claim_shared(name):
            if not hit:
                with self._lock:
                    self._installing.discard(name)
            self._emit(f"命中缓存 {key}")
            return False

        ok = False
        try:
            tarball = request.tarball_url
            if not tarball:
                tarball = self.resolver.resolve(name, version, options).tarball_url
            entries = self.fetcher.fetch_and_extract(tarball)
            written = self._write_entries(root_dir, name, entries)
            ok = True
        except SandpmError as e:
            self._emit(f"安装失败: {key}, 错误信息: {e}", "error")
            logger.warning("安装失败: %s: %s", key, e,
                           extra={"phase": "install", "package": name})
            raise InstallError(f"安装失败: {key}, {e}") from e
        finally:
            with self._lock:
                self._installing.discard(name)
                if ok:
                    self._installed.add(name)

        self._emit(f"安装完成 {key} ({written} 个文件)")
        logger.debug("安装完成 %s (%d 个文件)", key, written,
                     extra={"phase": "install", "package": name})
        return True

    def _claim_shared(self, name: str) -> bool:
        """在跨 worker 共享的包名占用表中占用包名"""
        if self.shared is None:
            return True
        return self.shared.claim(name)

    def _write_entries(self, root_dir: str, name: str, entries: list[ArchiveEntry]) -> int:
        base = posixpath.join(root_dir or "/", NODE_MODULES, name)
        self.storage.mkdir(base, recursive=True)
        written = 0
        for entry in entries:
            target = posixpath.join(base, entry.path)
            if entry.entry_type == "directory":
                self.storage.mkdir(target, recursive=True)
                continue
            if entry.entry_type != "file":
                logger.debug("跳过非普通文件条目: %s (%s)", target, entry.entry_type)
                continue
            self.storage.mkdir(posixpath.dirname(target), recursive=True)
            self.storage.write_file(
                target, entry.content, BINARY if entry.is_binary else "utf-8",
            )
            written += 1
        return written
