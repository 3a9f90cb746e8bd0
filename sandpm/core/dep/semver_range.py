"""npm 风格版本范围

在 semver.Version 的优先级之上实现 npm 的范围语法:

  - ``*`` / ``x`` / 空串           任意正式版本
  - ``1`` / ``1.2`` / ``1.2.x``    部分版本，按缺省位展开
  - ``^1.2.3``                     锁定最左侧非零位
  - ``~1.2.3`` / ``~>1.2.3``       允许补丁级（只给主版本时允许次版本级）变化
  - ``1.2.3 - 2.3``                闭区间（上界为部分版本时按缺省位展开）
  - ``>=1.0.0 <2.0.0``             空格分隔的比较符取交集
  - ``a || b``                     并集

预发布版本只在同一 [major, minor, patch] 的比较符显式带预发布标记时才匹配。

用法:
    rng = VersionRange.parse("^4.17.0")
    rng.satisfies("4.17.21")                         # True
    max_satisfying(["4.16.0", "4.17.21"], "^4.17.0")  # "4.17.21"
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Callable, Iterable

import semver

_PARTIAL_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*|[xX*])"
    r"(?:\.(?P<minor>0|[1-9]\d*|[xX*]))?"
    r"(?:\.(?P<patch>0|[1-9]\d*|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
_OPERATOR_RE = re.compile(r"^(?P<op>\^|~>?|>=|<=|>|<|=)?(?P<rest>.*)$")
_HYPHEN_RE = re.compile(r"^\s*(?P<low>\S+)\s+-\s+(?P<high>\S+)\s*$")
_OP_SPACE_RE = re.compile(r"(>=|<=|>|<|=|\^|~>?)\s+")

_OPS: dict[str, Callable[[semver.Version, semver.Version], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
}

_ANY = ("", "*", "x", "X")


@dataclass(frozen=True)
class Comparator:
    op: str
    version: semver.Version

    def test(self, version: semver.Version) -> bool:
        return _OPS[self.op](version, self.version)

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


# 没有任何版本小于 0.0.0-0，用于表达 "空集"
_NOTHING = Comparator("<", semver.Version(0, 0, 0, prerelease="0"))


def parse_version(text: str) -> semver.Version | None:
    """解析完整版本号，允许前导 v / =，非法时返回 None"""
    cleaned = text.strip().lstrip("=v").strip()
    try:
        return semver.Version.parse(cleaned)
    except (ValueError, TypeError):
        return None


def _bound(major: int, minor: int = 0, patch: int = 0, pre: str | None = None) -> semver.Version:
    return semver.Version(major, minor, patch, prerelease=pre)


def _upper(major: int, minor: int = 0, patch: int = 0) -> semver.Version:
    """不含预发布的排他上界，如 <2.0.0-0"""
    return semver.Version(major, minor, patch, prerelease="0")


def _parse_partial(text: str) -> tuple[int | None, int | None, int | None, str | None]:
    m = _PARTIAL_RE.match(text)
    if not m:
        raise ValueError(f"非法版本: {text!r}")

    def num(group: str) -> int | None:
        value = m.group(group)
        if value is None or value in ("x", "X", "*"):
            return None
        return int(value)

    major, minor, patch = num("major"), num("minor"), num("patch")
    # 1.x.3 这类写法中 x 之后的位无意义
    if major is None:
        minor = patch = None
    elif minor is None:
        patch = None
    pre = m.group("pre") if patch is not None else None
    return major, minor, patch, pre


def _expand_caret(major: int | None, minor: int | None, patch: int | None,
                  pre: str | None) -> list[Comparator]:
    if major is None:
        return []
    if minor is None:
        return [Comparator(">=", _bound(major)), Comparator("<", _upper(major + 1))]
    if patch is None:
        if major > 0:
            return [Comparator(">=", _bound(major, minor)), Comparator("<", _upper(major + 1))]
        return [Comparator(">=", _bound(0, minor)), Comparator("<", _upper(0, minor + 1))]
    low = Comparator(">=", _bound(major, minor, patch, pre))
    if major > 0:
        return [low, Comparator("<", _upper(major + 1))]
    if minor > 0:
        return [low, Comparator("<", _upper(0, minor + 1))]
    return [low, Comparator("<", _upper(0, 0, patch + 1))]


def _expand_tilde(major: int | None, minor: int | None, patch: int | None,
                  pre: str | None) -> list[Comparator]:
    if major is None:
        return []
    if minor is None:
        return [Comparator(">=", _bound(major)), Comparator("<", _upper(major + 1))]
    low = Comparator(">=", _bound(major, minor, patch or 0, pre))
    return [low, Comparator("<", _upper(major, minor + 1))]


def _expand_primitive(op: str, major: int | None, minor: int | None,
                      patch: int | None, pre: str | None) -> list[Comparator]:
    if op in ("", "="):
        if major is None:
            return []
        if minor is None:
            return [Comparator(">=", _bound(major)), Comparator("<", _upper(major + 1))]
        if patch is None:
            return [Comparator(">=", _bound(major, minor)),
                    Comparator("<", _upper(major, minor + 1))]
        return [Comparator("=", _bound(major, minor, patch, pre))]

    if major is None:
        # >* 与 <* 不匹配任何版本，>=* 与 <=* 匹配任意版本
        return [_NOTHING] if op in (">", "<") else []

    if op == ">":
        if minor is None:
            return [Comparator(">=", _bound(major + 1))]
        if patch is None:
            return [Comparator(">=", _bound(major, minor + 1))]
        return [Comparator(">", _bound(major, minor, patch, pre))]
    if op == ">=":
        return [Comparator(">=", _bound(major, minor or 0, patch or 0, pre))]
    if op == "<":
        return [Comparator("<", _bound(major, minor or 0, patch or 0, pre)
                           if patch is not None else _upper(major, minor or 0))]
    # "<="
    if minor is None:
        return [Comparator("<", _upper(major + 1))]
    if patch is None:
        return [Comparator("<", _upper(major, minor + 1))]
    return [Comparator("<=", _bound(major, minor, patch, pre))]


def _parse_comparator(token: str) -> list[Comparator]:
    m = _OPERATOR_RE.match(token)
    assert m is not None  # 正则总能匹配
    op, rest = m.group("op") or "", m.group("rest").strip()
    if rest in _ANY:
        return [_NOTHING] if op in (">", "<") else []
    major, minor, patch, pre = _parse_partial(rest)
    if op == "^":
        return _expand_caret(major, minor, patch, pre)
    if op in ("~", "~>"):
        return _expand_tilde(major, minor, patch, pre)
    return _expand_primitive(op, major, minor, patch, pre)


def _parse_hyphen(low: str, high: str) -> list[Comparator]:
    comparators: list[Comparator] = []
    lmaj, lmin, lpat, lpre = _parse_partial(low)
    if lmaj is not None:
        comparators.append(Comparator(">=", _bound(lmaj, lmin or 0, lpat or 0, lpre)))
    hmaj, hmin, hpat, hpre = _parse_partial(high)
    if hmaj is not None:
        if hmin is None:
            comparators.append(Comparator("<", _upper(hmaj + 1)))
        elif hpat is None:
            comparators.append(Comparator("<", _upper(hmaj, hmin + 1)))
        else:
            comparators.append(Comparator("<=", _bound(hmaj, hmin, hpat, hpre)))
    return comparators


def _parse_set(text: str) -> tuple[Comparator, ...]:
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        return tuple(_parse_hyphen(hyphen.group("low"), hyphen.group("high")))
    normalized = _OP_SPACE_RE.sub(r"\1", text.strip())
    comparators: list[Comparator] = []
    for token in normalized.split():
        comparators.extend(_parse_comparator(token))
    return tuple(comparators)


def _allows_prerelease(comparators: tuple[Comparator, ...], version: semver.Version) -> bool:
    base = (version.major, version.minor, version.patch)
    for c in comparators:
        if c is _NOTHING:
            continue
        if c.version.prerelease and (c.version.major, c.version.minor, c.version.patch) == base:
            return True
    return False


@dataclass(frozen=True)
class VersionRange:
    """已解析的版本范围: 比较符集合的并集"""

    raw: str
    sets: tuple[tuple[Comparator, ...], ...]

    @classmethod
    def parse(cls, text: str) -> VersionRange:
        """解析范围字符串

        Raises:
            ValueError: 范围语法非法
        """
        raw = (text or "").strip()
        sets = tuple(_parse_set(part) for part in raw.split("||"))
        return cls(raw=raw, sets=sets)

    def test(self, version: semver.Version) -> bool:
        for comparators in self.sets:
            if not all(c.test(version) for c in comparators):
                continue
            if version.prerelease and not _allows_prerelease(comparators, version):
                continue
            return True
        return False

    def satisfies(self, version: str) -> bool:
        parsed = parse_version(version)
        return parsed is not None and self.test(parsed)

    def __str__(self) -> str:
        return " || ".join(
            " ".join(str(c) for c in comparators) or "*"
            for comparators in self.sets
        )


def satisfies(version: str, range_text: str) -> bool:
    """版本是否满足范围；范围非法时抛 ValueError"""
    return VersionRange.parse(range_text).satisfies(version)


def max_satisfying(versions: Iterable[str], range_text: str) -> str | None:
    """返回满足范围的最高版本（原始字符串），无匹配返回 None

    非法的已发布版本号会被忽略。
    """
    rng = VersionRange.parse(range_text)
    best: tuple[semver.Version, str] | None = None
    for text in versions:
        parsed = parse_version(text)
        if parsed is None or not rng.test(parsed):
            continue
        if best is None or parsed > best[0]:
            best = (parsed, text)
    return best[1] if best else None
