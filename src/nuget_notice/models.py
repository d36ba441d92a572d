from __future__ import annotations

from dataclasses import dataclass

from nuget_notice.frameworks import TargetFramework
from nuget_notice.names import normalize_package_id
from nuget_notice.versions import NuGetVersion, VersionRange


@dataclass(frozen=True, slots=True)
class ComponentIdentity:
    """
    解析后的组件标识（包 id + 具体版本）。
    """

    id: str
    version: NuGetVersion

    @property
    def key(self) -> str:
        return normalize_package_id(self.id)

    def __str__(self) -> str:
        return f"{self.id}.{self.version}"


@dataclass(frozen=True, slots=True)
class ComponentRequirement:
    """
    项目中声明的一条包引用（版本可能是精确版本、范围或浮动版本）。
    """

    id: str
    version: str
    private_assets: str | None = None
    exclude_assets: str | None = None

    @property
    def is_private(self) -> bool:
        return self.private_assets is not None

    @property
    def excludes_runtime(self) -> bool:
        return "runtime" in (self.exclude_assets or "").lower()


@dataclass(frozen=True, slots=True)
class PackageDependency:
    """
    nuspec 中声明的一条依赖。
    """

    id: str
    version_range: VersionRange | None
    raw_range: str | None = None


@dataclass(frozen=True, slots=True)
class DependencyGroup:
    """
    针对某个目标框架的一组依赖（targetFramework 为空时适用于所有框架）。
    """

    target_framework: TargetFramework
    packages: tuple[PackageDependency, ...]
