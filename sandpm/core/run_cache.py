"""运行缓存 - 分析结果与已安装包名的持久化

两个 JSON 文件，位于项目根目录:
  - .depCache:      [[name, version, tarball], ...]，分析阶段结束后写入
  - .installCache:  [name, ...]，安装阶段结束后写入

下一次运行时，两份缓存中的 key 都不会再派发任务。
缓存文件损坏时记录警告并视为空缓存，不中断安装。
"""

from __future__ import annotations

import json
import logging
import posixpath
from typing import Any, Iterable

from sandpm.core.exceptions import StorageError
from sandpm.core.models import ResolvedPackage
from sandpm.core.protocols import Storage

logger = logging.getLogger(__name__)

DEP_CACHE = ".depCache"
INSTALL_CACHE = ".installCache"


class RunCache:
    """.depCache / .installCache 读写"""

    def __init__(self, storage: Storage, root_dir: str = "/") -> None:
        self.storage = storage
        self.root_dir = root_dir or "/"

    @property
    def analysis_path(self) -> str:
        return posixpath.join(self.root_dir, DEP_CACHE)

    @property
    def install_path(self) -> str:
        return posixpath.join(self.root_dir, INSTALL_CACHE)

    def _load(self, path: str) -> list[Any]:
        if not self.storage.exists(path):
            return []
        try:
            data = json.loads(self.storage.read_file(path, "utf-8"))
        except (StorageError, ValueError) as e:
            logger.warning("缓存文件无法解析，按空缓存处理: %s: %s", path, e)
            return []
        if not isinstance(data, list):
            logger.warning("缓存文件格式错误（应为数组），按空缓存处理: %s", path)
            return []
        return data

    def _save(self, path: str, data: list[Any]) -> None:
        self.storage.mkdir(self.root_dir, recursive=True)
        self.storage.write_file(path, json.dumps(data, ensure_ascii=False), "utf-8")

    def load_analysis(self) -> list[ResolvedPackage]:
        packages: list[ResolvedPackage] = []
        for entry in self._load(self.analysis_path):
            if isinstance(entry, list) and entry and entry[0]:
                packages.append(ResolvedPackage.from_cache_entry(entry))
            else:
                logger.debug("忽略无效缓存条目: %r", entry)
        return packages

    def save_analysis(self, packages: Iterable[ResolvedPackage]) -> None:
        entries = [p.to_cache_entry() for p in packages]
        self._save(self.analysis_path, entries)
        logger.info("分析缓存已写入: %s (%d 个包)", self.analysis_path, len(entries))

    def load_installed(self) -> set[str]:
        return {str(name) for name in self._load(self.install_path) if name}

    def save_installed(self, names: Iterable[str]) -> None:
        entries = sorted(set(names))
        self._save(self.install_path, entries)
        logger.info("安装缓存已写入: %s (%d 个包)", self.install_path, len(entries))

    def clear(self) -> None:
        """删除两份缓存文件（不存在时忽略）"""
        for path in (self.analysis_path, self.install_path):
            if self.storage.exists(path):
                self.storage.delete_file(path)
                logger.info("已删除缓存: %s", path)
