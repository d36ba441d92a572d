from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path
from xml.etree import ElementTree as ET

from nuget_notice.frameworks import ANY_FRAMEWORK, parse_framework
from nuget_notice.models import ComponentIdentity, DependencyGroup, PackageDependency
from nuget_notice.versions import parse_version, parse_version_range


@dataclass(frozen=True, slots=True)
class LicenseElement:
    """
    nuspec 的 <license> 元素：type 为 expression 或 file。
    """

    type: str
    value: str


@dataclass(frozen=True, slots=True)
class Nuspec:
    """
    从 .nuspec 中抽取的元数据。
    """

    id: str
    version: str
    title: str | None
    project_url: str | None
    license_url: str | None
    license: LicenseElement | None
    dependency_groups: tuple[DependencyGroup, ...]


def _local(tag: str) -> str:
    """
    去掉 XML 命名空间前缀（nuspec 存在多个版本的 schema 命名空间）。
    """
    return tag.rsplit("}", 1)[-1]


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    for c in elem:
        if _local(c.tag) == name:
            return c
    return None


def _text(elem: ET.Element, name: str) -> str | None:
    c = _child(elem, name)
    if c is None or c.text is None:
        return None
    value = c.text.strip()
    return value or None


def _parse_dependency(elem: ET.Element) -> PackageDependency | None:
    dep_id = (elem.get("id") or "").strip()
    if not dep_id:
        return None
    raw = elem.get("version")
    return PackageDependency(id=dep_id, version_range=parse_version_range(raw), raw_range=raw)


def _parse_dependency_groups(metadata: ET.Element) -> tuple[DependencyGroup, ...]:
    """
    解析 <dependencies>：既支持 <group targetFramework=...>，也支持旧式扁平列表。
    """
    deps = _child(metadata, "dependencies")
    if deps is None:
        return ()

    groups: list[DependencyGroup] = []
    flat: list[PackageDependency] = []
    for node in deps:
        name = _local(node.tag)
        if name == "group":
            packages = tuple(
                d for d in (_parse_dependency(c) for c in node if _local(c.tag) == "dependency") if d is not None
            )
            groups.append(
                DependencyGroup(target_framework=parse_framework(node.get("targetFramework")), packages=packages)
            )
        elif name == "dependency":
            d = _parse_dependency(node)
            if d is not None:
                flat.append(d)

    if flat:
        groups.append(DependencyGroup(target_framework=ANY_FRAMEWORK, packages=tuple(flat)))
    return tuple(groups)


def parse_nuspec(content: bytes) -> Nuspec:
    """
    解析 nuspec XML 内容。
    """
    root = ET.fromstring(content)
    metadata = _child(root, "metadata")
    if metadata is None:
        raise ValueError("nuspec has no <metadata> element")

    package_id = _text(metadata, "id")
    version = _text(metadata, "version")
    if not package_id or not version:
        raise ValueError("nuspec is missing <id> or <version>")

    license_elem = _child(metadata, "license")
    license_value: LicenseElement | None = None
    if license_elem is not None and (license_elem.text or "").strip():
        license_value = LicenseElement(
            type=(license_elem.get("type") or "expression").strip().lower(),
            value=license_elem.text.strip(),
        )

    return Nuspec(
        id=package_id,
        version=version,
        title=_text(metadata, "title"),
        project_url=_text(metadata, "projectUrl"),
        license_url=_text(metadata, "licenseUrl"),
        license=license_value,
        dependency_groups=_parse_dependency_groups(metadata),
    )


class ComponentArchive:
    """
    已获取的 .nupkg 归档；nuspec 元数据在首次访问时解析。
    """

    def __init__(self, content: bytes, *, source: str | None = None, path: Path | None = None) -> None:
        self._zip = zipfile.ZipFile(io.BytesIO(content))
        self._nuspec: Nuspec | None = None
        self.source = source
        self.path = path

    @classmethod
    def from_path(cls, path: Path, *, source: str | None = None) -> ComponentArchive:
        """
        从本地 .nupkg 文件创建归档。
        """
        return cls(path.read_bytes(), source=source, path=path)

    @property
    def nuspec(self) -> Nuspec:
        if self._nuspec is None:
            name = next(
                (n for n in self._zip.namelist() if "/" not in n and n.lower().endswith(".nuspec")),
                None,
            )
            if name is None:
                raise ValueError("package contains no .nuspec file")
            self._nuspec = parse_nuspec(self._zip.read(name))
        return self._nuspec

    @property
    def identity(self) -> ComponentIdentity:
        spec = self.nuspec
        version = parse_version(spec.version)
        if version is None:
            raise ValueError(f"invalid package version {spec.version!r} in {spec.id}")
        return ComponentIdentity(id=spec.id, version=version)

    @property
    def project_url(self) -> str | None:
        return self.nuspec.project_url

    def file_entries(self) -> list[str]:
        """
        列出归档中的文件条目。
        """
        return self._zip.namelist()

    def read_entry(self, name: str) -> bytes:
        """
        读取归档中的文件条目（路径分隔符与大小写按 NuGet 习惯宽松匹配）。
        """
        wanted = name.replace("\\", "/").lstrip("/")
        entries = self._zip.namelist()
        if wanted in entries:
            return self._zip.read(wanted)
        for entry in entries:
            if entry.lower() == wanted.lower():
                return self._zip.read(entry)
        raise KeyError(f"entry {name!r} not found in package")
