"""PackageManager 测试 - 分析去重 + 安装幂等"""

from __future__ import annotations

import pytest

from sandpm.core.dep.fetcher import ArchiveFetcher
from sandpm.core.dep.manager import PackageManager
from sandpm.core.dep.resolver import VersionResolver
from sandpm.core.exceptions import AnalysisError, InstallError, UnsatisfiableRange
from sandpm.core.log_stream import LogItem, LogStream
from sandpm.core.membership import NameClaims
from sandpm.core.models import PackageRequest, RegistryOptions
from sandpm.core.storage import MemoryStorage

from conftest import REGISTRY, FakeRegistry

PNG = b"\x89PNG\r\n\x1a\nbinary"


def _manager(registry: FakeRegistry, storage: MemoryStorage, **kwargs) -> PackageManager:
    return PackageManager(
        storage,
        VersionResolver(RegistryOptions(registry=REGISTRY), transport=registry),
        ArchiveFetcher(transport=registry),
        **kwargs,
    )


class _Exploding:
    """resolve 时抛出指定异常的解析器替身"""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def resolve(self, *args, **kwargs):
        raise self.error


class _FlakyStorage(MemoryStorage):
    """第一次写文件时抛出 ValueError"""

    def __init__(self) -> None:
        super().__init__()
        self.failed = False

    def write_file(self, path: str, content: str | bytes, encoding: str = "utf-8") -> None:
        if not self.failed:
            self.failed = True
            raise ValueError("disk hiccup")
        super().write_file(path, content, encoding)


class TestAnalyze:
    def test_returns_identity_and_edges(self, registry: FakeRegistry) -> None:
        registry.publish("a", "1.0.0")
        registry.publish("a", "1.2.0", {"b": "^2.0.0", "c": "~1.0.0"})
        pm = _manager(registry, MemoryStorage())

        result = pm.analyze(PackageRequest("a", "^1.0.0"))
        assert result is not None
        assert result.resolved.spec == "a@1.2.0"
        assert result.edges == (PackageRequest("b", "^2.0.0"), PackageRequest("c", "~1.0.0"))

    def test_second_analyze_returns_none(self, registry: FakeRegistry) -> None:
        registry.publish("a", "1.0.0")
        pm = _manager(registry, MemoryStorage())
        assert pm.analyze(PackageRequest("a", "^1.0.0")) is not None
        calls = len(registry.calls)
        assert pm.analyze(PackageRequest("a", "^1.0.0")) is None
        assert len(registry.calls) == calls

    def test_failure_wrapped_and_unmarked(self, registry: FakeRegistry) -> None:
        registry.publish("a", "1.0.0")
        pm = _manager(registry, MemoryStorage())
        with pytest.raises(AnalysisError, match="a@\\^9") as exc_info:
            pm.analyze(PackageRequest("a", "^9.0.0"))
        assert isinstance(exc_info.value.__cause__, UnsatisfiableRange)

        # 失败后可重试
        registry.publish("a", "9.0.0")
        pm.resolver = VersionResolver(RegistryOptions(registry=REGISTRY), transport=registry)
        assert pm.analyze(PackageRequest("a", "^9.0.0")) is not None

    def test_empty_range_means_any_release(self, registry: FakeRegistry) -> None:
        """空版本范围等价于 "*": 取最高正式版本，不请求 latest"""
        registry.publish("a", "1.0.0")
        registry.publish("a", "2.0.0-rc.1")
        pm = _manager(registry, MemoryStorage())

        result = pm.analyze(PackageRequest("a", ""))
        assert result is not None
        assert result.resolved.version == "1.0.0"
        assert f"{REGISTRY}/a/latest" not in registry.calls

    def test_unexpected_error_unmarked(self, registry: FakeRegistry) -> None:
        registry.publish("a", "1.0.0")
        pm = _manager(registry, MemoryStorage())
        real = pm.resolver
        pm.resolver = _Exploding(ValueError("bad document"))
        with pytest.raises(ValueError):
            pm.analyze(PackageRequest("a", "^1.0.0"))

        pm.resolver = real
        assert pm.analyze(PackageRequest("a", "^1.0.0")) is not None


class TestInstall:
    def test_writes_files_under_node_modules(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0", files={
            "package.json": '{"name": "a"}',
            "lib/index.js": "exports.a = 1;\n",
            "img/logo.png": PNG,
        })
        storage = MemoryStorage()
        pm = _manager(registry, storage)

        assert pm.install("/app", PackageRequest("a", "1.0.0", tarball)) is True
        assert storage.read_file("/app/node_modules/a/lib/index.js") == "exports.a = 1;\n"
        assert storage.read_file("/app/node_modules/a/img/logo.png", "binary") == PNG
        assert pm.is_installed("a")

    def test_known_tarball_skips_registry(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0")
        pm = _manager(registry, MemoryStorage())
        pm.install("/", PackageRequest("a", "1.0.0", tarball))
        assert registry.calls == [tarball]

    def test_missing_tarball_resolved(self, registry: FakeRegistry) -> None:
        registry.publish("a", "1.0.0")
        storage = MemoryStorage()
        pm = _manager(registry, storage)
        assert pm.install("/", PackageRequest("a", "latest")) is True
        assert storage.exists("/node_modules/a/package.json")
        assert f"{REGISTRY}/a/latest" in registry.calls

    def test_already_installed_no_io(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0")
        storage = MemoryStorage()
        pm = _manager(registry, storage)
        pm.install("/", PackageRequest("a", "1.0.0", tarball))
        calls = len(registry.calls)

        assert pm.install("/", PackageRequest("a", "1.0.0", tarball)) is False
        assert len(registry.calls) == calls

    def test_skip_list(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("fsevents", "2.3.3")
        storage = MemoryStorage()
        pm = _manager(registry, storage)
        assert pm.install("/", PackageRequest("fsevents", "2.3.3", tarball)) is False
        assert registry.calls == []
        assert not storage.exists("/node_modules/fsevents")

    def test_shared_membership_claimed_elsewhere(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0")
        shared = NameClaims(4)
        shared.claim("a")
        pm = _manager(registry, MemoryStorage(), shared=shared)
        assert pm.install("/", PackageRequest("a", "1.0.0", tarball)) is False
        assert registry.calls == []

    def test_two_managers_share_membership(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0")
        shared = NameClaims(4)
        storage = MemoryStorage()
        first = _manager(registry, storage, shared=shared)
        second = _manager(registry, storage, shared=shared)
        assert first.install("/", PackageRequest("a", "1.0.0", tarball)) is True
        assert second.install("/", PackageRequest("a", "1.0.0", tarball)) is False
        assert registry.tarball_calls == 1

    def test_failure_wrapped_and_unmarked(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0")
        registry.broken.add(tarball)
        pm = _manager(registry, MemoryStorage())

        with pytest.raises(InstallError, match="a@1.0.0"):
            pm.install("/", PackageRequest("a", "1.0.0", tarball))
        assert not pm.is_installed("a")

        registry.broken.clear()
        assert pm.install("/", PackageRequest("a", "1.0.0", tarball)) is True

    def test_progress_logged(self, registry: FakeRegistry) -> None:
        tarball = registry.publish("a", "1.0.0")
        stream = LogStream()
        items: list[LogItem] = []
        stream.subscribe(items.append)
        pm = _manager(registry, MemoryStorage(), log_stream=stream)

        pm.install("/", PackageRequest("a", "1.0.0", tarball))
        pm.install("/", PackageRequest("a", "1.0.0", tarball))
        messages = [i.message for i in items]
        assert any(m.startswith("安装完成 a@1.0.0") for m in messages)
        assert "命中缓存 a@1.0.0" in messages

    def test_equal_hash_names_both_installed(self, registry: FakeRegistry) -> None:
        """共享占用表按精确包名去重，哈希相同的两个包都会安装"""
        first_tarball = registry.publish("aan", "1.0.0")
        second_tarball = registry.publish("ac0", "1.0.0")
        shared = NameClaims(4)
        storage = MemoryStorage()
        first = _manager(registry, storage, shared=shared)
        second = _manager(registry, storage, shared=shared)

        assert first.install("/", PackageRequest("aan", "1.0.0", first_tarball)) is True
        assert second.install("/", PackageRequest("ac0", "1.0.0", second_tarball)) is True
        assert storage.exists("/node_modules/aan/index.js")
        assert storage.exists("/node_modules/ac0/index.js")
        assert registry.tarball_calls == 2

    def test_empty_range_installs_highest_release(self, registry: FakeRegistry) -> None:
        registry.publish("a", "1.0.0")
        registry.publish("a", "2.0.0-rc.1")
        storage = MemoryStorage()
        pm = _manager(registry, storage)

        assert pm.install("/", PackageRequest("a", "")) is True
        assert f"{REGISTRY}/a/-/a-1.0.0.tgz" in registry.calls
        assert f"{REGISTRY}/a/latest" not in registry.calls

    def test_unexpected_error_unmarked(self, registry: FakeRegistry) -> None:
        """非 SandpmError 异常同样释放安装中标记，之后可重试"""
        tarball = registry.publish("a", "1.0.0")
        storage = _FlakyStorage()
        pm = _manager(registry, storage)

        with pytest.raises(ValueError, match="disk hiccup"):
            pm.install("/", PackageRequest("a", "1.0.0", tarball))
        assert not pm.is_installed("a")

        assert pm.install("/", PackageRequest("a", "1.0.0", tarball)) is True
        assert storage.exists("/node_modules/a/index.js")

    def test_failure_logged_with_package_field(
        self, registry: FakeRegistry, caplog: pytest.LogCaptureFixture,
    ) -> None:
        tarball = registry.publish("a", "1.0.0")
        registry.broken.add(tarball)
        pm = _manager(registry, MemoryStorage())

        with caplog.at_level("WARNING", logger="sandpm.core.dep.manager"):
            with pytest.raises(InstallError):
                pm.install("/", PackageRequest("a", "1.0.0", tarball))
        (record,) = [r for r in caplog.records if r.name == "sandpm.core.dep.manager"]
        assert record.phase == "install"
        assert record.package == "a"
