"""领域协议定义

集中定义存储、worker 能力等接口契约（Protocol），
上层依赖抽象而非具体实现；测试可直接传入满足协议的假对象。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from sandpm.core.models import AnalysisResult, PackageRequest, ResolvedPackage


# =========================================================================
# 存储协议
# =========================================================================

class Storage(Protocol):
    """以路径寻址的文件树

    路径一律为 POSIX 风格绝对路径（如 /node_modules/lodash/package.json）。
    encoding 为 "binary" 时读写 bytes，否则读写 str。
    """

    def exists(self, path: str) -> bool:
        ...

    def mkdir(self, path: str, recursive: bool = True) -> None:
        ...

    def write_file(
        self, path: str, content: str | bytes, encoding: str = "utf-8",
    ) -> None:
        ...

    def read_file(self, path: str, encoding: str = "utf-8") -> str | bytes:
        ...

    def delete_file(self, path: str) -> None:
        ...

    def list_dir(self, path: str) -> list[str]:
        ...


# =========================================================================
# worker 能力协议
# =========================================================================

class WorkerHandle(Protocol):
    """执行上下文句柄: 生命周期 + 忙碌标记

    忙碌标记只由持有句柄的 WorkerPool 写入。
    """

    def init(self) -> None:
        ...

    def get_busy(self) -> bool:
        ...

    def set_busy(self, busy: bool) -> None:
        ...

    def stop(self) -> None:
        ...


class Analyzer(WorkerHandle, Protocol):
    """分析阶段能力: 解析单个依赖请求"""

    def analyze(self, request: PackageRequest) -> AnalysisResult | None:
        ...


class Installer(WorkerHandle, Protocol):
    """安装阶段能力: 下载并写入单个已解析包"""

    def install(self, root_dir: str, package: ResolvedPackage) -> bool:
        ...
