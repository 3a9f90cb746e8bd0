"""registry 版本解析测试"""

from __future__ import annotations

import pytest

from sandpm.core.dep.resolver import VersionResolver, package_url
from sandpm.core.exceptions import RegistryUnavailable, UnsatisfiableRange
from sandpm.core.models import RegistryOptions

from conftest import REGISTRY, FakeRegistry


@pytest.fixture()
def resolver(registry: FakeRegistry) -> VersionResolver:
    return VersionResolver(RegistryOptions(registry=REGISTRY), transport=registry)


class TestPackageUrl:
    def test_plain(self) -> None:
        assert package_url("https://r.test/", "lodash") == "https://r.test/lodash"

    def test_scoped_name_encoded(self) -> None:
        assert package_url("https://r.test", "@babel/core") == "https://r.test/@babel%2Fcore"

    def test_with_version(self) -> None:
        assert package_url("https://r.test", "react", "latest") == "https://r.test/react/latest"


class TestResolve:
    def test_highest_satisfying(self, registry: FakeRegistry, resolver: VersionResolver) -> None:
        for v in ("4.16.0", "4.17.20", "4.17.21"):
            registry.publish("lodash", v)
        pkg = resolver.resolve("lodash", "^4.17.0")
        assert pkg.version == "4.17.21"
        assert pkg.tarball_url.endswith("lodash-4.17.21.tgz")

    def test_latest_uses_single_version_endpoint(
        self, registry: FakeRegistry, resolver: VersionResolver,
    ) -> None:
        registry.publish("react", "17.0.2")
        registry.publish("react", "18.2.0", {"loose-envify": "^1.1.0"})
        pkg = resolver.resolve("react", "latest")
        assert pkg.version == "18.2.0"
        assert pkg.dependencies == (("loose-envify", "^1.1.0"),)
        assert registry.calls == [f"{REGISTRY}/react/latest"]

    def test_empty_range_means_any(self, registry: FakeRegistry, resolver: VersionResolver) -> None:
        registry.publish("a", "1.0.0")
        registry.publish("a", "2.0.0")
        assert resolver.resolve("a", "").version == "2.0.0"

    def test_document_memoized_per_instance(
        self, registry: FakeRegistry, resolver: VersionResolver,
    ) -> None:
        registry.publish("a", "1.0.0")
        registry.publish("a", "1.1.0")
        resolver.resolve("a", "^1.0.0")
        resolver.resolve("a", "~1.0.0")
        assert registry.calls.count(f"{REGISTRY}/a") == 1

        VersionResolver(RegistryOptions(registry=REGISTRY), transport=registry).resolve("a", "*")
        assert registry.calls.count(f"{REGISTRY}/a") == 2

    def test_scoped_package(self, registry: FakeRegistry, resolver: VersionResolver) -> None:
        registry.publish("@types/node", "20.1.0")
        assert resolver.resolve("@types/node", "^20.0.0").version == "20.1.0"

    def test_no_match_raises(self, registry: FakeRegistry, resolver: VersionResolver) -> None:
        registry.publish("a", "1.0.0")
        with pytest.raises(UnsatisfiableRange, match="未找到符合版本范围"):
            resolver.resolve("a", "^2.0.0")

    def test_unparsable_range_raises(self, registry: FakeRegistry, resolver: VersionResolver) -> None:
        registry.publish("a", "1.0.0")
        with pytest.raises(UnsatisfiableRange, match="无法解析版本范围"):
            resolver.resolve("a", "github:user/repo")

    def test_unknown_package(self, resolver: VersionResolver) -> None:
        with pytest.raises(RegistryUnavailable) as exc_info:
            resolver.resolve("missing", "^1.0.0")
        assert "404" in str(exc_info.value)

    def test_malformed_json(self) -> None:
        resolver = VersionResolver(transport=lambda url, timeout: b"<html>")
        with pytest.raises(RegistryUnavailable, match="JSON"):
            resolver.resolve("a", "latest")

    def test_missing_tarball(self) -> None:
        resolver = VersionResolver(transport=lambda url, timeout: b'{"version": "1.0.0"}')
        with pytest.raises(RegistryUnavailable, match="dist.tarball"):
            resolver.resolve("a", "latest")
