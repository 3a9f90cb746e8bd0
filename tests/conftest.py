"""共享测试夹具: 假 registry 传输 + 内存 tarball 构造"""

from __future__ import annotations

import gzip
import io
import json
import tarfile
import threading
from typing import Callable
from urllib.parse import unquote

import pytest
import semver

from sandpm.utils.net import HttpStatusError

REGISTRY = "https://registry.test"

TarballFactory = Callable[..., bytes]


def build_tarball(files: dict[str, str | bytes], dirs: tuple[str, ...] = (),
                  symlinks: dict[str, str] | None = None) -> bytes:
    """按给定顺序构造 .tgz，files 的 key 为归档内完整路径（含 package/ 前缀）"""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for d in dirs:
            info = tarfile.TarInfo(d)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for path, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(path)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
        for path, target in (symlinks or {}).items():
            info = tarfile.TarInfo(path)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    return gzip.compress(buf.getvalue())


class FakeRegistry:
    """可调用的假传输: (url, timeout) -> bytes

    提供完整文档 {base}/{name}、单版本文档 {base}/{name}/{version|latest}
    以及 publish 时生成的 tarball；记录全部请求。
    """

    def __init__(self, base: str = REGISTRY) -> None:
        self.base = base
        self.packages: dict[str, dict[str, dict]] = {}
        self.tarballs: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.broken: set[str] = set()
        self._lock = threading.Lock()

    def publish(
        self,
        name: str,
        version: str,
        dependencies: dict[str, str] | None = None,
        files: dict[str, str | bytes] | None = None,
    ) -> str:
        basename = name.rsplit("/", 1)[-1]
        tarball = f"{self.base}/{name}/-/{basename}-{version}.tgz"
        self.packages.setdefault(name, {})[version] = {
            "name": name,
            "version": version,
            "dependencies": dict(dependencies or {}),
            "dist": {"tarball": tarball},
        }
        files = files or {
            "package.json": json.dumps({"name": name, "version": version}),
            "index.js": f"module.exports = {json.dumps(name)};\n",
        }
        self.tarballs[tarball] = build_tarball({f"package/{k}": v for k, v in files.items()})
        return tarball

    def __call__(self, url: str, timeout: float) -> bytes:
        with self._lock:
            self.calls.append(url)
        if url in self.tarballs:
            if url in self.broken:
                raise HttpStatusError(url, 500, "Internal Server Error")
            return self.tarballs[url]
        if not url.startswith(self.base + "/"):
            raise HttpStatusError(url, 404, "Not Found")

        parts = url[len(self.base) + 1:].split("/")
        name = unquote(parts[0])
        versions = self.packages.get(name)
        if versions is None or name in self.broken:
            raise HttpStatusError(url, 404, "Not Found")
        if len(parts) == 1:
            latest = max(versions, key=semver.Version.parse)
            doc = {"name": name, "dist-tags": {"latest": latest}, "versions": versions}
        elif parts[1] == "latest":
            doc = versions[max(versions, key=semver.Version.parse)]
        elif parts[1] in versions:
            doc = versions[parts[1]]
        else:
            raise HttpStatusError(url, 404, "Not Found")
        return json.dumps(doc).encode("utf-8")

    def count(self, predicate: Callable[[str], bool]) -> int:
        with self._lock:
            return sum(1 for url in self.calls if predicate(url))

    @property
    def tarball_calls(self) -> int:
        return self.count(lambda url: url.endswith(".tgz"))


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def make_tarball() -> TarballFactory:
    return build_tarball
