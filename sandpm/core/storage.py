"""存储层 - 以路径寻址的文件树

两种后端：
  - local:  映射到本地目录（CLI 默认），虚拟路径 /a/b 落到 base_dir/a/b
  - memory: 纯内存文件树，沙箱与测试使用，线程安全

所有后端对外只抛 StorageError，上层不感知 OSError 细节。
"""

from __future__ import annotations

import logging
import posixpath
import shutil
import threading
from pathlib import Path

from sandpm.core.exceptions import StorageError
from sandpm.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

BINARY = "binary"


def normalize(path: str) -> str:
    """规范化为以 / 开头的 POSIX 路径，.. 无法越过根目录"""
    return posixpath.normpath("/" + path.replace("\\", "/").lstrip("/"))


def _encode(content: str | bytes, encoding: str) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8" if encoding == BINARY else encoding)


def _decode(data: bytes, encoding: str) -> str | bytes:
    if encoding == BINARY:
        return data
    return data.decode(encoding)


class LocalStorage:
    """本地文件系统存储"""

    def __init__(self, base_dir: str = ".") -> None:
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, path: str) -> Path:
        rel = normalize(path).lstrip("/")
        return self.base_dir / rel if rel else self.base_dir

    def exists(self, path: str) -> bool:
        return self._path(path).exists()

    def mkdir(self, path: str, recursive: bool = True) -> None:
        target = self._path(path)
        try:
            target.mkdir(parents=recursive, exist_ok=True)
        except OSError as e:
            raise StorageError(f"创建目录失败: {path}: {e}") from e

    def write_file(
        self, path: str, content: str | bytes, encoding: str = "utf-8",
    ) -> None:
        target = self._path(path)
        if not target.parent.is_dir():
            raise StorageError(f"父目录不存在: {posixpath.dirname(normalize(path))}")
        try:
            atomic_write(target, _encode(content, encoding))
        except OSError as e:
            raise StorageError(f"写入文件失败: {path}: {e}") from e

    def read_file(self, path: str, encoding: str = "utf-8") -> str | bytes:
        try:
            return _decode(self._path(path).read_bytes(), encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"读取文件失败: {path}: {e}") from e

    def delete_file(self, path: str) -> None:
        target = self._path(path)
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
        except OSError as e:
            raise StorageError(f"删除失败: {path}: {e}") from e

    def list_dir(self, path: str) -> list[str]:
        target = self._path(path)
        if not target.is_dir():
            raise StorageError(f"目录不存在: {path}")
        return sorted(p.name for p in target.iterdir())


class MemoryStorage:
    """内存文件树

    目录集合 + 文件字典，写文件要求父目录已存在（与真实文件系统一致）。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dirs: set[str] = {"/"}
        self._files: dict[str, bytes] = {}

    def exists(self, path: str) -> bool:
        p = normalize(path)
        with self._lock:
            return p in self._dirs or p in self._files

    def mkdir(self, path: str, recursive: bool = True) -> None:
        p = normalize(path)
        with self._lock:
            if p in self._files:
                raise StorageError(f"路径已存在且为文件: {p}")
            parent = posixpath.dirname(p)
            if not recursive and parent not in self._dirs:
                raise StorageError(f"父目录不存在: {parent}")
            missing: list[str] = []
            while p not in self._dirs:
                if p in self._files:
                    raise StorageError(f"路径已存在且为文件: {p}")
                missing.append(p)
                p = posixpath.dirname(p)
            self._dirs.update(missing)

    def write_file(
        self, path: str, content: str | bytes, encoding: str = "utf-8",
    ) -> None:
        p = normalize(path)
        data = _encode(content, encoding)
        with self._lock:
            if posixpath.dirname(p) not in self._dirs:
                raise StorageError(f"父目录不存在: {posixpath.dirname(p)}")
            if p in self._dirs:
                raise StorageError(f"路径已存在且为目录: {p}")
            self._files[p] = data

    def read_file(self, path: str, encoding: str = "utf-8") -> str | bytes:
        p = normalize(path)
        with self._lock:
            data = self._files.get(p)
        if data is None:
            raise StorageError(f"文件不存在: {p}")
        try:
            return _decode(data, encoding)
        except UnicodeDecodeError as e:
            raise StorageError(f"读取文件失败: {p}: {e}") from e

    def delete_file(self, path: str) -> None:
        p = normalize(path)
        with self._lock:
            if p in self._files:
                del self._files[p]
                return
            if p not in self._dirs or p == "/":
                raise StorageError(f"无法删除: {p}")
            prefix = p + "/"
            self._dirs = {d for d in self._dirs if d != p and not d.startswith(prefix)}
            self._files = {
                f: v for f, v in self._files.items() if not f.startswith(prefix)
            }

    def list_dir(self, path: str) -> list[str]:
        p = normalize(path)
        prefix = p.rstrip("/") + "/"
        with self._lock:
            if p not in self._dirs:
                raise StorageError(f"目录不存在: {p}")
            children = {
                entry[len(prefix):].split("/", 1)[0]
                for entry in (*self._dirs, *self._files)
                if entry.startswith(prefix) and entry != prefix
            }
        return sorted(children)


def create_storage(backend: str = "local", base_dir: str = ".") -> LocalStorage | MemoryStorage:
    """根据配置创建存储后端"""
    if backend == "memory":
        logger.info("使用内存存储")
        return MemoryStorage()
    logger.info("使用本地存储: %s", base_dir)
    return LocalStorage(base_dir)
