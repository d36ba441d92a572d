from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Iterable, TypeVar

from packaging.version import InvalidVersion, Version

NETCOREAPP = ".NETCoreApp"
NETSTANDARD = ".NETStandard"
NETFRAMEWORK = ".NETFramework"
ANY = "Any"
UNSUPPORTED = "Unsupported"

_EMPTY = Version("0")

_SHORT_RE = re.compile(
    r"^(?P<moniker>netcoreapp|netstandard|net)(?P<version>[0-9][0-9.]*)?(?:-(?P<platform>[a-z]+)(?P<pversion>[0-9][0-9.]*)?)?$"
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TargetFramework:
    """
    目标框架（如 net6.0-windows7.0），由框架族、版本与可选平台组成。
    """

    family: str
    version: Version = _EMPTY
    platform: str = ""
    platform_version: Version = _EMPTY

    @property
    def is_any(self) -> bool:
        return self.family == ANY

    def short_name(self) -> str:
        """
        返回短文件夹名（与项目文件中的 TargetFramework 写法一致）。
        """
        if self.family == ANY:
            return "any"
        if self.family == UNSUPPORTED:
            return "unsupported"
        if self.family == NETFRAMEWORK:
            base = "net" + "".join(str(p) for p in self.version.release)
        elif self.family == NETSTANDARD:
            base = f"netstandard{_dotted(self.version)}"
        elif self.version >= Version("5"):
            base = f"net{_dotted(self.version)}"
        else:
            base = f"netcoreapp{_dotted(self.version)}"
        if self.platform:
            pv = _dotted(self.platform_version) if self.platform_version != _EMPTY else ""
            base = f"{base}-{self.platform}{pv}"
        return base

    def __str__(self) -> str:
        return self.short_name()


ANY_FRAMEWORK = TargetFramework(family=ANY)


def _dotted(version: Version) -> str:
    """
    将版本格式化为至少两段的点分形式（2 -> 2.0）。
    """
    parts = list(version.release) + [0] * (2 - len(version.release))
    return ".".join(str(p) for p in parts)


def _parse_number(raw: str | None) -> Version:
    if not raw:
        return _EMPTY
    try:
        return Version(raw)
    except InvalidVersion:
        return _EMPTY


def parse_framework(raw: str | None) -> TargetFramework:
    """
    解析目标框架短名称；空串或 any 视为“任意框架”，无法识别的名称标记为 Unsupported。
    """
    text = (raw or "").strip().lower()
    if not text or text == "any":
        return ANY_FRAMEWORK

    m = _SHORT_RE.match(text)
    if m is None:
        return TargetFramework(family=UNSUPPORTED)

    moniker = m.group("moniker")
    number = m.group("version") or ""
    platform = m.group("platform") or ""
    platform_version = _parse_number(m.group("pversion"))

    if moniker == "netstandard":
        return TargetFramework(NETSTANDARD, _parse_number(number), platform, platform_version)
    if moniker == "netcoreapp":
        return TargetFramework(NETCOREAPP, _parse_number(number), platform, platform_version)

    # net45 / net472 are digit-per-part; net5.0+ are dotted
    if "." not in number and number:
        if number.startswith(("5", "6", "7", "8", "9")) and len(number) == 1:
            return TargetFramework(NETCOREAPP, Version(number), platform, platform_version)
        return TargetFramework(NETFRAMEWORK, Version(".".join(number)), platform, platform_version)
    version = _parse_number(number)
    if version >= Version("5"):
        return TargetFramework(NETCOREAPP, version, platform, platform_version)
    return TargetFramework(NETFRAMEWORK, version, platform, platform_version)


def without_platform_version(framework: TargetFramework) -> TargetFramework:
    """
    去掉平台版本（net6.0-windows7.0 -> net6.0-windows）。
    """
    return replace(framework, platform_version=_EMPTY)


def _max_netstandard(consumer: TargetFramework) -> Version | None:
    """
    返回某框架可以引用的最高 netstandard 版本。
    """
    if consumer.family == NETCOREAPP:
        if consumer.version >= Version("3.0"):
            return Version("2.1")
        if consumer.version >= Version("2.0"):
            return Version("2.0")
        return Version("1.6")
    if consumer.family == NETFRAMEWORK:
        if consumer.version >= Version("4.6.1"):
            return Version("2.0")
        if consumer.version >= Version("4.6"):
            return Version("1.3")
        if consumer.version >= Version("4.5.2"):
            return Version("1.2")
        if consumer.version >= Version("4.5"):
            return Version("1.1")
        return None
    if consumer.family == NETSTANDARD:
        return consumer.version
    return None


def is_compatible(consumer: TargetFramework, candidate: TargetFramework) -> bool:
    """
    判断 consumer 框架的项目能否使用 candidate 框架的资产。
    """
    if candidate.is_any or consumer.is_any:
        return True
    if UNSUPPORTED in (consumer.family, candidate.family):
        return False

    if candidate.platform:
        if candidate.platform != consumer.platform:
            return False
        if candidate.platform_version > consumer.platform_version:
            return False

    if candidate.family == consumer.family:
        return candidate.version <= consumer.version

    if candidate.family == NETSTANDARD:
        limit = _max_netstandard(consumer)
        return limit is not None and candidate.version <= limit

    return False


def _score(consumer: TargetFramework, candidate: TargetFramework) -> tuple:
    """
    计算候选框架与 consumer 的接近程度（越大越接近）。
    """
    if candidate.is_any:
        family_rank = 0
    elif candidate.family == consumer.family:
        family_rank = 2
    else:
        family_rank = 1
    exact = candidate == consumer
    platform_rank = 1 if candidate.platform else 0
    return (exact, family_rank, candidate.version, platform_rank, candidate.platform_version)


def _nearest(
    items: Iterable[T],
    consumer: TargetFramework,
    key: Callable[[T], TargetFramework],
) -> T | None:
    best: T | None = None
    best_score: tuple | None = None
    for item in items:
        candidate = key(item)
        if not is_compatible(consumer, candidate):
            continue
        score = _score(consumer, candidate)
        if best_score is None or score > best_score:
            best = item
            best_score = score
    return best


def get_nearest(
    items: Iterable[T],
    consumer: TargetFramework,
    key: Callable[[T], TargetFramework],
) -> T | None:
    """
    在 items 中选出与 consumer 最接近的兼容框架项；若没有，去掉平台版本后再匹配一次。
    """
    items = list(items)
    found = _nearest(items, consumer, key)
    if found is not None:
        return found
    # also match "net6.0-windows7.0" against "net6.0-windows"
    return _nearest(
        items,
        without_platform_version(consumer),
        lambda item: without_platform_version(key(item)),
    )
