from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from xml.etree import ElementTree as ET

from nuget_notice.conditions import ConditionError, evaluate_condition
from nuget_notice.frameworks import ANY_FRAMEWORK, TargetFramework, parse_framework
from nuget_notice.lockfile import RestoreLock, load_restore_lock
from nuget_notice.names import normalize_project_path

_PROPERTY_RE = re.compile(r"\$\(([A-Za-z_][A-Za-z0-9_.-]*)\)")
_FUNCTION_RE = re.compile(r"\$\(\[[^\]]*\][^)]*\)")

IS_DEPLOYMENT_TARGET = "IsDeploymentTarget"

_IMPLICIT_PROPS = ("Directory.Build.props", "Directory.Packages.props")
_IMPLICIT_TARGETS = ("Directory.Build.targets",)


class _CaseInsensitiveDict(dict):
    """
    MSBuild 属性名与元数据名大小写不敏感。
    """

    def __setitem__(self, key: str, value: str) -> None:
        super().__setitem__(key.lower(), value)

    def __getitem__(self, key: str) -> str:
        return super().__getitem__(key.lower())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(key.lower())

    def get(self, key: str, default=None):
        return super().get(key.lower(), default)


@dataclass
class ProjectItem:
    """
    求值后的项目条目（如 PackageReference、ProjectReference）。
    """

    item_type: str
    include: str
    metadata: dict[str, str] = field(default_factory=_CaseInsensitiveDict)

    def get_metadata(self, name: str) -> str | None:
        """
        读取元数据；不存在时返回 None。
        """
        return self.metadata.get(name)


@dataclass
class EvaluatedProject:
    """
    在一组全局属性下求值得到的项目：属性表 + 条目列表。
    """

    path: str
    properties: dict[str, str]
    items: list[ProjectItem]
    global_properties: dict[str, str] = field(default_factory=dict)

    def get_property(self, name: str) -> str | None:
        return self.properties.get(name)

    def get_items(self, item_type: str) -> list[ProjectItem]:
        lowered = item_type.lower()
        return [item for item in self.items if item.item_type.lower() == lowered]

    @property
    def directory(self) -> str:
        return os.path.dirname(self.path)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_upwards(start: str, file_name: str) -> str | None:
    """
    从 start 目录向上查找第一个名为 file_name 的文件。
    """
    current = Path(start).resolve()
    for directory in (current, *current.parents):
        candidate = directory / file_name
        if candidate.is_file():
            return str(candidate)
    return None


class ProjectEvaluator:
    """
    SDK 风格项目文件的轻量静态求值器（MSBuild 的一个子集）。

    支持：PropertyGroup/ItemGroup 与 Condition、$(Property) 展开、显式 <Import>、
    隐式导入 Directory.Build.props / Directory.Packages.props / Directory.Build.targets、
    条目的 Include/Update/Remove 以及属性或子元素形式的元数据。
    属性函数 $([...]) 与目标（Target）不求值。

    每个 (项目路径, 全局属性) 组合只求值一次。
    """

    def __init__(self, *, warn=None) -> None:
        self._cache: dict[tuple[str, tuple[tuple[str, str], ...]], EvaluatedProject] = {}
        self._warn = warn

    def load(self, path: str | os.PathLike[str], global_properties: dict[str, str] | None = None) -> EvaluatedProject:
        """
        加载并求值项目文件（结果按路径与全局属性缓存）。
        """
        full_path = os.path.abspath(os.fspath(path))
        globals_ = dict(global_properties or {})
        key = (normalize_project_path(full_path), tuple(sorted((k.lower(), v) for k, v in globals_.items())))
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        project = self._evaluate(full_path, globals_)
        self._cache[key] = project
        return project

    def _evaluate(self, full_path: str, global_properties: dict[str, str]) -> EvaluatedProject:
        directory = os.path.dirname(full_path)
        props = _CaseInsensitiveDict()
        props["MSBuildProjectFullPath"] = full_path
        props["MSBuildProjectDirectory"] = directory
        props["MSBuildProjectFile"] = os.path.basename(full_path)
        props["MSBuildProjectName"] = os.path.splitext(os.path.basename(full_path))[0]
        props["MSBuildProjectExtension"] = os.path.splitext(full_path)[1]
        for k, v in global_properties.items():
            props[k] = v
        readonly = {k.lower() for k in global_properties}

        elements: list[tuple[ET.Element, str]] = []
        for name in _IMPLICIT_PROPS:
            found = _find_upwards(directory, name)
            if found and normalize_project_path(found) != normalize_project_path(full_path):
                self._collect(found, elements, props, set())
        self._collect(full_path, elements, props, set())
        for name in _IMPLICIT_TARGETS:
            found = _find_upwards(directory, name)
            if found:
                self._collect(found, elements, props, set())

        # pass 1: properties
        for elem, file_dir in elements:
            if _local(elem.tag) != "PropertyGroup":
                continue
            if not self._condition(elem.get("Condition"), props, file_dir):
                continue
            for prop in elem:
                if not isinstance(prop.tag, str):
                    continue
                name = _local(prop.tag)
                if name.lower() in readonly:
                    continue
                if not self._condition(prop.get("Condition"), props, file_dir):
                    continue
                props[name] = self._expand(prop.text or "", props).strip()

        if "BaseIntermediateOutputPath" not in props:
            props["BaseIntermediateOutputPath"] = "obj" + os.sep
        if "ProjectAssetsFile" not in props:
            base = props["BaseIntermediateOutputPath"].replace("\\", os.sep)
            props["ProjectAssetsFile"] = os.path.join(directory, base, "project.assets.json")

        # pass 2: items
        items: list[ProjectItem] = []
        for elem, file_dir in elements:
            if _local(elem.tag) != "ItemGroup":
                continue
            if not self._condition(elem.get("Condition"), props, file_dir):
                continue
            for node in elem:
                if isinstance(node.tag, str) and self._condition(node.get("Condition"), props, file_dir):
                    self._apply_item(node, items, props)

        return EvaluatedProject(path=full_path, properties=props, items=items, global_properties=global_properties)

    def _collect(
        self,
        path: str,
        elements: list[tuple[ET.Element, str]],
        props: dict[str, str],
        seen: set[str],
    ) -> None:
        """
        读取文件并把顶层 PropertyGroup/ItemGroup 按出现顺序追加到 elements（递归展开 <Import>）。
        """
        key = normalize_project_path(path)
        if key in seen:
            return
        seen.add(key)
        root = ET.parse(path).getroot()
        file_dir = os.path.dirname(path)
        for elem in root:
            if not isinstance(elem.tag, str):
                continue
            name = _local(elem.tag)
            if name in {"PropertyGroup", "ItemGroup"}:
                elements.append((elem, file_dir))
            elif name == "Import":
                self._import(elem, elements, props, seen, file_dir)
            elif name == "ImportGroup" and self._condition(elem.get("Condition"), props, file_dir):
                for child in elem:
                    if isinstance(child.tag, str) and _local(child.tag) == "Import":
                        self._import(child, elements, props, seen, file_dir)

    def _import(
        self,
        elem: ET.Element,
        elements: list[tuple[ET.Element, str]],
        props: dict[str, str],
        seen: set[str],
        file_dir: str,
    ) -> None:
        # only properties known before the import can be expanded; SDK imports are skipped
        target = self._expand(elem.get("Project") or "", props).strip()
        if not target or elem.get("Sdk") is not None:
            return
        if not self._condition(elem.get("Condition"), props, file_dir):
            return
        target_path = os.path.normpath(os.path.join(file_dir, target.replace("\\", os.sep)))
        if os.path.isfile(target_path):
            self._collect(target_path, elements, props, seen)

    def _apply_item(self, node: ET.Element, items: list[ProjectItem], props: dict[str, str]) -> None:
        item_type = _local(node.tag)
        metadata = _CaseInsensitiveDict()
        for attr, value in node.attrib.items():
            if attr not in {"Include", "Update", "Remove", "Condition", "Exclude"}:
                metadata[attr] = self._expand(value, props)
        for child in node:
            if isinstance(child.tag, str):
                metadata[_local(child.tag)] = self._expand(child.text or "", props).strip()

        def names(attr: str) -> list[str]:
            raw = self._expand(node.get(attr) or "", props)
            return [part.strip() for part in raw.split(";") if part.strip()]

        if node.get("Remove") is not None:
            removed = {n.lower() for n in names("Remove")}
            items[:] = [
                i for i in items if not (i.item_type == item_type and i.include.lower() in removed)
            ]
            return

        if node.get("Update") is not None:
            updated = {n.lower() for n in names("Update")}
            for item in items:
                if item.item_type == item_type and item.include.lower() in updated:
                    for k, v in metadata.items():
                        item.metadata[k] = v
            return

        for include in names("Include"):
            item_metadata = _CaseInsensitiveDict()
            for k, v in metadata.items():
                item_metadata[k] = v
            items.append(ProjectItem(item_type=item_type, include=include, metadata=item_metadata))

    def _expand(self, text: str, props: dict[str, str]) -> str:
        text = _FUNCTION_RE.sub("", text)
        return _PROPERTY_RE.sub(lambda m: props.get(m.group(1), "") or "", text)

    def _condition(self, condition: str | None, props: dict[str, str], base_dir: str) -> bool:
        try:
            return evaluate_condition(condition, lambda t: self._expand(t, props), base_dir=base_dir)
        except ConditionError as exc:
            if self._warn is not None:
                self._warn(f"Condition {condition!r} not understood, treated as false: {exc}")
            return False


def parse_bool(value: str | None) -> bool | None:
    """
    按 .NET bool.TryParse 的规则解析布尔值（大小写不敏感，允许首尾空白）；无法解析返回 None。
    """
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def target_frameworks_of(project: EvaluatedProject) -> list[str]:
    """
    读取 TargetFrameworks（优先）或 TargetFramework，返回去重后的原始框架名列表。
    """
    raw = project.get_property("TargetFrameworks") or project.get_property("TargetFramework") or ""
    seen: set[str] = set()
    result: list[str] = []
    for part in raw.split(";"):
        name = part.strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            result.append(name)
    return result


class FrameworkView:
    """
    在某个目标框架下求值的项目视图；还原锁文件首次访问时加载并缓存。
    """

    def __init__(self, project: EvaluatedProject, target_framework: TargetFramework) -> None:
        self.project = project
        self.target_framework = target_framework
        self._restore_lock: RestoreLock | None = None

    @property
    def restore_lock(self) -> RestoreLock:
        if self._restore_lock is None:
            self._restore_lock = load_restore_lock(self.project.get_property("ProjectAssetsFile") or "")
        return self._restore_lock


class BuildUnit:
    """
    解决方案中的一个项目（以规范化的绝对路径为标识）。
    """

    def __init__(
        self,
        path: str,
        relative_path: str,
        project: EvaluatedProject,
        evaluator: ProjectEvaluator,
    ) -> None:
        self.key = normalize_project_path(path)
        self.path = os.path.abspath(path)
        self.relative_path = relative_path
        self.project = project
        self.target_framework_names = target_frameworks_of(project)
        self._evaluator = evaluator
        self._views: dict[str, FrameworkView] = {}

    @property
    def target_frameworks(self) -> list[TargetFramework]:
        return [parse_framework(n) for n in self.target_framework_names] or [ANY_FRAMEWORK]

    def get_property(self, name: str) -> str | None:
        return self.project.get_property(name)

    @property
    def is_deployment_target(self) -> bool:
        return parse_bool(self.get_property(IS_DEPLOYMENT_TARGET)) is True

    def reference_paths(self) -> list[str]:
        """
        返回 ProjectReference 指向的项目绝对路径（相对于本项目目录解析）。
        """
        base = os.path.dirname(self.path)
        return [
            os.path.normpath(os.path.join(base, item.include.replace("\\", os.sep)))
            for item in self.project.get_items("ProjectReference")
        ]

    def framework_views(self) -> list[FrameworkView]:
        """
        每个目标框架一个视图；多目标项目按框架重新求值（带 TargetFramework 全局属性）。
        """
        names = self.target_framework_names
        if len(names) <= 1:
            framework = parse_framework(names[0]) if names else ANY_FRAMEWORK
            view = self._views.get("")
            if view is None:
                view = self._views[""] = FrameworkView(self.project, framework)
            return [view]

        views: list[FrameworkView] = []
        for name in names:
            view = self._views.get(name.lower())
            if view is None:
                globals_ = dict(self.project.global_properties)
                globals_["TargetFramework"] = name
                evaluated = self._evaluator.load(self.path, globals_)
                view = self._views[name.lower()] = FrameworkView(evaluated, parse_framework(name))
            views.append(view)
        return views
