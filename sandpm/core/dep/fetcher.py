"""tarball 下载与解压

职责:
- 下载 tarball 完整内容（仅 http/https）
- gunzip + tar 解析，按顺序逐个条目完整读出
- 去掉约定的单层根目录（通常为 package/）
- 图片等二进制文件保留原始字节，其余按 UTF-8 解码
"""

from __future__ import annotations

import gzip
import io
import logging
import posixpath
import tarfile
import zlib

from sandpm.core.exceptions import ExtractError, FetchError
from sandpm.core.models import ArchiveEntry
from sandpm.utils.net import HttpGet, http_get, validate_url_scheme

logger = logging.getLogger(__name__)

BINARY_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".svg", ".ico",
)


def entry_type(member: tarfile.TarInfo) -> str:
    if member.isfile():
        return "file"
    if member.isdir():
        return "directory"
    if member.issym():
        return "symlink"
    if member.islnk():
        return "link"
    return "other"


def is_binary(kind: str, path: str) -> bool:
    """普通文件且扩展名为已知图片/二进制类型"""
    return kind == "file" and path.lower().endswith(BINARY_EXTENSIONS)


def strip_root(name: str) -> str | None:
    """去掉第一层目录，仅剩根目录本身时返回 None"""
    if name.startswith("./"):
        name = name[2:]
    parts = name.split("/", 1)
    if len(parts) < 2 or not parts[1].strip("/"):
        return None
    rel = posixpath.normpath(parts[1])
    if rel == ".":
        return None
    if rel.startswith("../") or rel == ".." or posixpath.isabs(rel):
        raise ExtractError(f"条目路径越界: {name}")
    return rel


class ArchiveFetcher:
    """下载并解压 .tgz"""

    def __init__(self, transport: HttpGet | None = None, timeout: float = 60.0) -> None:
        self._transport = transport or http_get
        self.timeout = timeout

    def fetch_and_extract(self, url: str) -> list[ArchiveEntry]:
        """下载并解压，返回按归档顺序排列的条目

        Raises:
            FetchError: 网络错误或非 2xx 状态
            ExtractError: gzip / tar 流损坏
        """
        data = self.download(url)
        entries = self.extract(data)
        logger.debug("解压完成: %s (%d 个条目)", url, len(entries))
        return entries

    def download(self, url: str) -> bytes:
        validate_url_scheme(url, context="tarball")
        try:
            return self._transport(url, self.timeout)
        except OSError as e:
            raise FetchError(f"无法下载 tarball: {url}: {e}") from e

    @staticmethod
    def extract(data: bytes) -> list[ArchiveEntry]:
        try:
            raw = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise ExtractError(f"gzip 解压失败: {e}") from e

        entries: list[ArchiveEntry] = []
        try:
            with tarfile.open(fileobj=io.BytesIO(raw), mode="r:") as tar:
                for member in tar:
                    entry = _read_entry(tar, member)
                    if entry is not None:
                        entries.append(entry)
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ExtractError(f"tar 解析失败: {e}") from e
        return entries


def _read_entry(tar: tarfile.TarFile, member: tarfile.TarInfo) -> ArchiveEntry | None:
    rel = strip_root(member.name)
    if rel is None:
        return None
    kind = entry_type(member)
    if kind != "file":
        return ArchiveEntry(path=rel, content=b"", is_binary=False, entry_type=kind)

    stream = tar.extractfile(member)
    payload = stream.read() if stream is not None else b""
    if is_binary(kind, rel):
        return ArchiveEntry(path=rel, content=payload, is_binary=True, entry_type=kind)
    return ArchiveEntry(
        path=rel,
        content=payload.decode("utf-8", errors="replace"),
        is_binary=False,
        entry_type=kind,
    )
