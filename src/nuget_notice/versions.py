from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering

from packaging.version import InvalidVersion, Version

_VERSION_RE = re.compile(
    r"""
    ^\s*
    (?P<release>\d+(?:\.\d+){0,3})
    (?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    \s*$
    """,
    re.VERBOSE,
)


def _prerelease_key(labels: tuple[str, ...]) -> tuple:
    """
    生成预发布标签的排序键（SemVer 2：数字标签按数值比较且排在字母标签之前）。
    """
    if not labels:
        return (1,)
    parts = []
    for label in labels:
        if label.isdigit():
            parts.append((0, int(label), ""))
        else:
            parts.append((1, 0, label.lower()))
    return (0, tuple(parts))


@total_ordering
@dataclass(frozen=True, eq=False)
class NuGetVersion:
    """
    NuGet 包版本（最多 4 段数字 + 可选预发布标签，构建元数据不参与比较）。
    """

    release: Version
    prerelease: tuple[str, ...] = ()
    original: str = field(default="", compare=False)

    def _key(self) -> tuple:
        return (self.release, _prerelease_key(self.prerelease))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: NuGetVersion) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def normalized(self) -> str:
        """
        返回规范化版本字符串（至少 3 段，第 4 段为 0 时省略）。
        """
        nums = list(self.release.release) + [0] * (3 - len(self.release.release))
        if len(nums) > 3 and nums[3] == 0:
            nums = nums[:3]
        text = ".".join(str(n) for n in nums)
        if self.prerelease:
            text = f"{text}-{'.'.join(self.prerelease)}"
        return text

    def __str__(self) -> str:
        return self.normalized()


def parse_version(raw: str | None) -> NuGetVersion | None:
    """
    解析精确版本字符串；范围、浮动版本或非法字符串返回 None。
    """
    if not raw:
        return None
    m = _VERSION_RE.match(raw)
    if m is None:
        return None
    try:
        release = Version(m.group("release"))
    except InvalidVersion:
        return None
    pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
    return NuGetVersion(release=release, prerelease=pre, original=raw.strip())


@dataclass(frozen=True, slots=True)
class VersionRange:
    """
    NuGet 版本范围（区间表示法）。
    """

    min_version: NuGetVersion | None
    min_inclusive: bool
    max_version: NuGetVersion | None
    max_inclusive: bool

    @property
    def exact(self) -> NuGetVersion | None:
        """
        若范围只包含一个版本（如 [1.0]），返回该版本。
        """
        if (
            self.min_version is not None
            and self.min_version == self.max_version
            and self.min_inclusive
            and self.max_inclusive
        ):
            return self.min_version
        return None

    def __contains__(self, version: NuGetVersion) -> bool:
        if self.min_version is not None:
            if version < self.min_version or (version == self.min_version and not self.min_inclusive):
                return False
        if self.max_version is not None:
            if version > self.max_version or (version == self.max_version and not self.max_inclusive):
                return False
        return True


def parse_version_range(raw: str | None) -> VersionRange | None:
    """
    解析 NuGet 版本范围：`1.0`、`[1.0]`、`[1.0,2.0)`、`(,1.0]`、`[1.0,)`。
    """
    if not raw or not raw.strip():
        return None
    text = raw.strip()

    if text[0] not in "[(":
        v = parse_version(text)
        if v is None:
            return None
        return VersionRange(min_version=v, min_inclusive=True, max_version=None, max_inclusive=False)

    if len(text) < 3 or text[-1] not in "])":
        return None
    min_inclusive = text[0] == "["
    max_inclusive = text[-1] == "]"
    body = text[1:-1]

    if "," not in body:
        v = parse_version(body)
        if v is None or not (min_inclusive and max_inclusive):
            return None
        return VersionRange(min_version=v, min_inclusive=True, max_version=v, max_inclusive=True)

    low_raw, _, high_raw = body.partition(",")
    if "," in high_raw:
        return None
    low = parse_version(low_raw) if low_raw.strip() else None
    high = parse_version(high_raw) if high_raw.strip() else None
    if low_raw.strip() and low is None:
        return None
    if high_raw.strip() and high is None:
        return None
    if low is None and high is None:
        return None
    return VersionRange(min_version=low, min_inclusive=min_inclusive, max_version=high, max_inclusive=max_inclusive)
