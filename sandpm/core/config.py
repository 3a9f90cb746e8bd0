"""集中配置管理

registry 地址、并发度、项目根目录、存储后端等集中在 Config 中。
支持从 YAML 文件加载 + 编程式覆盖（CLI 选项）。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any

import yaml

from sandpm.core.exceptions import ConfigError
from sandpm.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "https://registry.npmjs.org"
DEFAULT_SKIP_PACKAGES = ["fsevents"]

# 宿主未报告 CPU 数时的并发度兜底
FALLBACK_MAX_WORKERS = 4


@dataclass
class Config:
    """sandpm 全局配置"""

    # registry
    registry: str = DEFAULT_REGISTRY
    request_timeout: float = 30.0

    # 项目与存储
    root_dir: str = "/"
    storage_backend: str = "local"   # "local" | "memory"
    storage_dir: str = "."

    # 调度
    max_workers: int = 0             # 0 表示使用宿主 CPU 数
    continue_on_error: bool = True
    use_shared_membership: bool = True

    # 安装
    skip_packages: list[str] = field(
        default_factory=lambda: list(DEFAULT_SKIP_PACKAGES),
    )
    clear_cache: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.storage_backend not in ("local", "memory"):
            raise ConfigError(f"未知存储后端: {self.storage_backend}")
        if self.max_workers < 0:
            raise ConfigError(f"max_workers 不能为负数: {self.max_workers}")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout 必须为正数: {self.request_timeout}")
        self.registry = self.registry.rstrip("/")

    @property
    def worker_count(self) -> int:
        """实际并发度: 配置值优先，否则取宿主 CPU 数"""
        if self.max_workers > 0:
            return self.max_workers
        return os.cpu_count() or FALLBACK_MAX_WORKERS

    @classmethod
    def from_file(cls, path: str = "sandpm.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置项类型错误: {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def override(self, **changes: Any) -> Config:
        """返回覆盖部分字段后的新配置（值为 None 的项忽略）"""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "sandpm.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
