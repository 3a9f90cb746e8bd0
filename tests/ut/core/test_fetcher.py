"""tarball 下载与解压测试"""

from __future__ import annotations

import gzip

import pytest

from sandpm.core.dep.fetcher import ArchiveFetcher, is_binary, strip_root
from sandpm.core.exceptions import ExtractError, FetchError, ValidationError
from sandpm.utils.net import HttpStatusError

PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\xff\xfe"


class TestStripRoot:
    @pytest.mark.parametrize(("name", "expected"), [
        ("package/a.txt", "a.txt"),
        ("package/lib/index.js", "lib/index.js"),
        ("./package/a.txt", "a.txt"),
        ("node-v1/a.txt", "a.txt"),
        ("package/", None),
        ("package", None),
    ])
    def test_strip(self, name: str, expected: str | None) -> None:
        assert strip_root(name) == expected

    def test_escape_rejected(self) -> None:
        with pytest.raises(ExtractError, match="越界"):
            strip_root("package/../../etc/passwd")


class TestIsBinary:
    @pytest.mark.parametrize(("path", "expected"), [
        ("img/x.png", True),
        ("LOGO.SVG", True),
        ("icon.ico", True),
        ("index.js", False),
        ("README.md", False),
    ])
    def test_extension(self, path: str, expected: bool) -> None:
        assert is_binary("file", path) is expected

    def test_directory_never_binary(self) -> None:
        assert is_binary("directory", "assets.png") is False


class TestExtract:
    def test_text_and_binary(self, make_tarball) -> None:
        data = make_tarball({"package/a.txt": "hello\n", "package/img/x.png": PNG})
        entries = ArchiveFetcher.extract(data)

        assert [e.path for e in entries] == ["a.txt", "img/x.png"]
        text, image = entries
        assert text.content == "hello\n" and text.is_binary is False
        assert image.content == PNG and image.is_binary is True

    def test_archive_order_preserved(self, make_tarball) -> None:
        data = make_tarball({"package/z.js": "z", "package/a.js": "a", "package/m.js": "m"})
        assert [e.path for e in ArchiveFetcher.extract(data)] == ["z.js", "a.js", "m.js"]

    def test_directories_and_symlinks(self, make_tarball) -> None:
        data = make_tarball(
            {"package/lib/a.js": "a"},
            dirs=("package/", "package/lib/"),
            symlinks={"package/link.js": "lib/a.js"},
        )
        entries = {e.path: e for e in ArchiveFetcher.extract(data)}
        assert entries["lib"].entry_type == "directory"
        assert entries["lib/a.js"].entry_type == "file"
        assert entries["link.js"].entry_type == "symlink"
        assert entries["link.js"].content == b""

    def test_invalid_utf8_replaced(self, make_tarball) -> None:
        data = make_tarball({"package/bad.txt": b"ok\xff"})
        (entry,) = ArchiveFetcher.extract(data)
        assert entry.content == "ok\ufffd"

    def test_not_gzip(self) -> None:
        with pytest.raises(ExtractError, match="gzip"):
            ArchiveFetcher.extract(b"plain bytes")

    def test_truncated_tar(self, make_tarball) -> None:
        raw = gzip.decompress(make_tarball({"package/a.txt": "x" * 2000}))
        with pytest.raises(ExtractError):
            ArchiveFetcher.extract(gzip.compress(raw[:700]))


class TestFetchAndExtract:
    def test_download_via_transport(self, make_tarball) -> None:
        payload = make_tarball({"package/index.js": "module.exports = 1;\n"})
        seen: list[tuple[str, float]] = []

        def transport(url: str, timeout: float) -> bytes:
            seen.append((url, timeout))
            return payload

        fetcher = ArchiveFetcher(transport=transport, timeout=5.0)
        entries = fetcher.fetch_and_extract("https://r.test/a/-/a-1.0.0.tgz")
        assert [e.path for e in entries] == ["index.js"]
        assert seen == [("https://r.test/a/-/a-1.0.0.tgz", 5.0)]

    def test_http_error_becomes_fetch_error(self) -> None:
        def transport(url: str, timeout: float) -> bytes:
            raise HttpStatusError(url, 503, "Service Unavailable")

        with pytest.raises(FetchError, match="503"):
            ArchiveFetcher(transport=transport).fetch_and_extract("https://r.test/a.tgz")

    def test_file_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ArchiveFetcher(transport=lambda u, t: b"").download("file:///etc/passwd")
