from __future__ import annotations

from nuget_notice.archive import ComponentArchive
from nuget_notice.frameworks import TargetFramework, get_nearest
from nuget_notice.models import DependencyGroup, PackageDependency
from nuget_notice.names import normalize_package_id

# pseudo references that never end up as physical files in the output
PSEUDO_PACKAGES = frozenset({"netstandard.library"})


def should_expand(archive: ComponentArchive, *, recursive: bool) -> bool:
    """
    判断是否需要继续扫描该包自己的依赖（没有项目地址的包被当作透明包装）。
    """
    if normalize_package_id(archive.nuspec.id) in PSEUDO_PACKAGES:
        return False
    if recursive:
        return True
    return not archive.project_url


def dependencies_for(archive: ComponentArchive, consumer: TargetFramework) -> list[PackageDependency]:
    """
    按消费方的目标框架选出最接近的依赖组；没有任何组匹配时取所有组的并集（按 id 去重）。
    """
    groups: tuple[DependencyGroup, ...] = archive.nuspec.dependency_groups
    if not groups:
        return []

    best = get_nearest(groups, consumer, key=lambda g: g.target_framework)
    if best is not None:
        return list(best.packages)

    seen: set[str] = set()
    merged: list[PackageDependency] = []
    for group in groups:
        for dep in group.packages:
            key = normalize_package_id(dep.id)
            if key in seen:
                continue
            seen.add(key)
            merged.append(dep)
    return merged
