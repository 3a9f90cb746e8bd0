"""registry 版本解析器

职责:
- 查询 registry 元数据（完整文档 / 单版本文档）
- 在全部已发布版本中选出满足范围的最高版本
- "latest" 直接走单版本接口，无需拉取完整版本列表

一个 VersionResolver 实例即一次解析会话的上下文: 完整文档缓存只属于该实例，
不在模块级共享。
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any
from urllib.parse import quote

from sandpm.core.dep.semver_range import max_satisfying
from sandpm.core.exceptions import RegistryUnavailable, UnsatisfiableRange
from sandpm.core.models import RegistryOptions, ResolvedPackage
from sandpm.utils.net import HttpGet, http_get

logger = logging.getLogger(__name__)

LATEST = "latest"


def package_url(base_url: str, name: str, version: str | None = None) -> str:
    """拼接 registry 地址，scoped 包名中的 / 会被编码"""
    url = f"{base_url.rstrip('/')}/{quote(name, safe='@')}"
    if version:
        url += f"/{quote(version, safe='')}"
    return url


class VersionResolver:
    """把 name + 版本范围解析为唯一的具体版本"""

    def __init__(
        self,
        options: RegistryOptions | None = None,
        transport: HttpGet | None = None,
    ) -> None:
        self.options = options or RegistryOptions()
        self._transport = transport or http_get
        self._lock = threading.Lock()
        self._documents: dict[str, dict[str, Any]] = {}

    def resolve(
        self,
        name: str,
        version_range: str = LATEST,
        options: RegistryOptions | None = None,
    ) -> ResolvedPackage:
        """解析版本范围为 ResolvedPackage

        Raises:
            RegistryUnavailable: registry 请求失败或元数据不完整
            UnsatisfiableRange: 没有满足范围的已发布版本
        """
        opts = options or self.options
        wanted = (version_range or "").strip() or "*"

        if wanted == LATEST:
            doc = self._get_json(package_url(opts.base_url, name, LATEST), opts)
            return self._build(name, doc)

        document = self.document(name, opts)
        versions = document.get("versions") or {}
        if not isinstance(versions, dict):
            raise RegistryUnavailable(f"{name} 的 versions 字段格式错误")
        try:
            picked = max_satisfying(versions.keys(), wanted)
        except ValueError as e:
            raise UnsatisfiableRange(f"{name}: 无法解析版本范围 \"{wanted}\": {e}") from e
        if picked is None:
            raise UnsatisfiableRange(f"{name}: 未找到符合版本范围 \"{wanted}\" 的版本")

        logger.debug("解析 %s@%s -> %s", name, wanted, picked)
        return self._build(name, versions[picked], picked)

    def document(self, name: str, options: RegistryOptions | None = None) -> dict[str, Any]:
        """获取包的完整元数据文档（同一实例内缓存）"""
        opts = options or self.options
        url = package_url(opts.base_url, name)
        with self._lock:
            cached = self._documents.get(url)
        if cached is not None:
            return cached
        doc = self._get_json(url, opts)
        with self._lock:
            self._documents[url] = doc
        return doc

    def _get_json(self, url: str, opts: RegistryOptions) -> dict[str, Any]:
        try:
            body = self._transport(url, opts.timeout)
        except OSError as e:
            raise RegistryUnavailable(f"无法获取包信息: {url}: {e}") from e
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise RegistryUnavailable(f"元数据不是合法 JSON: {url}") from e
        if not isinstance(data, dict):
            raise RegistryUnavailable(f"元数据格式错误: {url}")
        return data

    @staticmethod
    def _build(name: str, manifest: dict[str, Any], version: str | None = None) -> ResolvedPackage:
        version = manifest.get("version") or version
        tarball = (manifest.get("dist") or {}).get("tarball")
        if not version or not tarball:
            raise RegistryUnavailable(f"{name} 的元数据缺少 version 或 dist.tarball")
        deps = manifest.get("dependencies") or {}
        return ResolvedPackage(
            name=name,
            version=str(version),
            tarball_url=str(tarball),
            dependencies=tuple((str(k), str(v)) for k, v in deps.items()),
        )
