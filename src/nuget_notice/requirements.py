from __future__ import annotations

from dataclasses import replace

from nuget_notice.errors import ResolutionError
from nuget_notice.models import ComponentIdentity, ComponentRequirement, PackageDependency
from nuget_notice.output import Output
from nuget_notice.project import FrameworkView, parse_bool
from nuget_notice.versions import NuGetVersion, parse_version


def _locked_version(view: FrameworkView, package_id: str) -> NuGetVersion:
    """
    从视图的还原锁文件中读取唯一匹配的已固定版本。
    """
    try:
        matches = view.restore_lock.find(package_id)
    except (OSError, ValueError) as exc:
        raise ResolutionError(package_id) from exc
    if len(matches) != 1:
        raise ResolutionError(package_id)
    return matches[0].version


def resolve_identity(view: FrameworkView, package_id: str, declared_version: str | None = None) -> ComponentIdentity:
    """
    将 (包 id, 声明的版本) 解析为具体标识。

    声明的版本是精确版本时直接使用；否则（范围、浮动版本、集中版本管理等）
    回退到还原步骤已经固定的版本。
    """
    version = parse_version(declared_version)
    if version is None:
        version = _locked_version(view, package_id)
    return ComponentIdentity(id=package_id, version=version)


def resolve_dependency(view: FrameworkView, dependency: PackageDependency) -> ComponentIdentity:
    """
    解析 nuspec 依赖的具体版本：精确范围 [x] 直接使用；否则优先取消费方还原锁中的版本，
    再退回到范围下限。
    """
    rng = dependency.version_range
    if rng is not None and rng.exact is not None:
        return ComponentIdentity(id=dependency.id, version=rng.exact)
    try:
        return resolve_identity(view, dependency.id)
    except ResolutionError:
        if rng is not None and rng.min_version is not None:
            return ComponentIdentity(id=dependency.id, version=rng.min_version)
        raise


def _central_versions(view: FrameworkView) -> dict[str, str]:
    """
    集中版本管理（Directory.Packages.props）中的 PackageVersion 映射，键为小写包 id。
    """
    versions: dict[str, str] = {}
    for item in view.project.get_items("PackageVersion"):
        version = item.get_metadata("Version")
        if version:
            versions[item.include.lower()] = version
    return versions


def enumerate_requirements(view: FrameworkView, *, output: Output | None = None) -> list[ComponentRequirement]:
    """
    列出视图中会被打包进产物的包引用（跳过 PrivateAssets 与排除 runtime 的引用）。
    """
    central = parse_bool(view.project.get_property("ManagePackageVersionsCentrally")) is True
    central_versions = _central_versions(view) if central else {}

    requirements: list[ComponentRequirement] = []
    for item in view.project.get_items("PackageReference"):
        requirement = ComponentRequirement(
            id=item.include,
            version="",
            private_assets=item.get_metadata("PrivateAssets"),
            exclude_assets=item.get_metadata("ExcludeAssets"),
        )
        if requirement.is_private or requirement.excludes_runtime:
            continue

        if central:
            version = item.get_metadata("VersionOverride") or central_versions.get(item.include.lower())
        else:
            version = item.get_metadata("Version")
        if not version:
            if output is not None:
                output.line(f"  - No version for {item.include} in {view.project.path}, skipped")
            continue

        requirements.append(replace(requirement, version=version))
    return requirements


def requirement_identities(view: FrameworkView, *, output: Output | None = None) -> list[ComponentIdentity]:
    """
    将视图中的所有直接包引用解析为具体标识（解析失败直接抛出 ResolutionError）。
    """
    return [resolve_identity(view, r.id, r.version) for r in enumerate_requirements(view, output=output)]
