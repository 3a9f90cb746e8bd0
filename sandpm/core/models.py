"""核心数据模型

依赖请求、解析结果、归档条目以及两阶段遍历的汇总报告集中定义，
避免 dep / scheduler / services 之间的循环导入。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sandpm.core.config import DEFAULT_REGISTRY


@dataclass(frozen=True)
class RegistryOptions:
    """registry 访问选项"""

    registry: str = DEFAULT_REGISTRY
    timeout: float = 30.0

    @property
    def base_url(self) -> str:
        return self.registry.rstrip("/")


@dataclass(frozen=True)
class PackageRequest:
    """未解析的依赖引用，version_range 可以是 "latest" """

    name: str
    version_range: str = "latest"
    tarball_url: str | None = None

    @property
    def key(self) -> str:
        return self.name


@dataclass(frozen=True)
class ResolvedPackage:
    """解析后的具体版本，每次运行中每个包名只产生一次"""

    name: str
    version: str
    tarball_url: str
    dependencies: tuple[tuple[str, str], ...] = ()

    @property
    def key(self) -> str:
        return self.name

    @property
    def spec(self) -> str:
        return f"{self.name}@{self.version}"

    def to_request(self) -> PackageRequest:
        """转为安装阶段的请求（tarball 已知，安装时无需再查询 registry）"""
        return PackageRequest(self.name, self.version, self.tarball_url or None)

    def to_cache_entry(self) -> list[str]:
        """.depCache 中的三元组 [name, version, tarball]"""
        return [self.name, self.version, self.tarball_url]

    @classmethod
    def from_cache_entry(cls, entry: list[Any]) -> ResolvedPackage:
        name, version, tarball = (list(entry) + ["", "", ""])[:3]
        return cls(name=str(name), version=str(version or "latest"),
                   tarball_url=str(tarball or ""))


@dataclass(frozen=True)
class AnalysisResult:
    """单个包的分析结果: 自身身份 + 子依赖（用于扩展遍历前沿）"""

    resolved: ResolvedPackage
    edges: tuple[PackageRequest, ...] = ()


@dataclass(frozen=True)
class ArchiveEntry:
    """tarball 中的单个条目（路径已去掉 package/ 根目录）"""

    path: str
    content: str | bytes
    is_binary: bool = False
    entry_type: str = "file"  # "file", "directory", "symlink", "link", "other"


@dataclass
class TaskFailure:
    """遍历中被丢弃的失败任务"""

    key: str
    phase: str
    message: str
    error_type: str = ""


@dataclass
class WalkReport:
    """单阶段图遍历汇总"""

    phase: str
    results: dict[str, Any] = field(default_factory=dict)
    failures: list[TaskFailure] = field(default_factory=list)
    dispatched: int = 0
    skipped: int = 0
    peak_in_flight: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class InstallReport:
    """一次完整 install（分析 + 安装）的汇总"""

    packages: list[ResolvedPackage] = field(default_factory=list)
    installed: list[str] = field(default_factory=list)
    failures: list[TaskFailure] = field(default_factory=list)
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failures

    def summary(self) -> dict[str, Any]:
        return {
            "resolved": len(self.packages),
            "installed": len(self.installed),
            "failed": len(self.failures),
            "duration": round(self.duration, 3),
        }
