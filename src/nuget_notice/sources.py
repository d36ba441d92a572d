from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from xml.etree import ElementTree as ET

from nuget_notice.archive import ComponentArchive
from nuget_notice.models import ComponentIdentity

NUGET_ORG_V3 = "https://api.nuget.org/v3/index.json"

_CONFIG_NAMES = ("nuget.config", "NuGet.config", "NuGet.Config")


@dataclass(frozen=True, slots=True)
class PackageSource:
    """
    一个包源（远程 feed 或本地目录）。
    """

    name: str
    url: str

    @property
    def is_local(self) -> bool:
        return "://" not in self.url or self.url.lower().startswith("file://")

    @property
    def local_path(self) -> Path:
        url = self.url
        if url.lower().startswith("file://"):
            url = url[len("file://"):]
        return Path(url)


@dataclass(frozen=True, slots=True)
class SourceSettings:
    """
    从 NuGet.Config 链中发现的包源与全局包目录。
    """

    sources: tuple[PackageSource, ...]
    global_packages_folder: Path
    config_files: tuple[str, ...] = ()


def user_config_path() -> Path:
    """
    返回用户级 NuGet.Config 路径。
    """
    if os.name == "nt":
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / "NuGet" / "NuGet.Config"
    return Path.home() / ".nuget" / "NuGet" / "NuGet.Config"


def _configs_from(directory: Path) -> list[Path]:
    """
    从 directory 向上收集 NuGet.Config（近的在前），最后追加用户级配置。
    """
    found: list[Path] = []
    current = directory.resolve()
    for d in (current, *current.parents):
        for name in _CONFIG_NAMES:
            candidate = d / name
            if candidate.is_file():
                found.append(candidate)
                break
    user = user_config_path()
    if user.is_file() and all(user.resolve() != f.resolve() for f in found):
        found.append(user)
    return found


def _section(root: ET.Element, name: str) -> ET.Element | None:
    for child in root:
        if isinstance(child.tag, str) and child.tag == name:
            return child
    return None


def discover_source_settings(directory: str | os.PathLike[str]) -> SourceSettings:
    """
    按 NuGet 的规则合并配置：从最远（用户级）到最近依次应用，<clear/> 清空之前的包源，
    同名 key 原位覆盖；globalPackagesFolder 以最近的配置为准，NUGET_PACKAGES 环境变量优先。
    """
    configs = _configs_from(Path(directory))

    sources: dict[str, PackageSource] = {}
    disabled: set[str] = set()
    packages_folder: Path | None = None
    saw_sources_section = False

    for path in reversed(configs):
        root = ET.parse(path).getroot()
        base = path.parent

        section = _section(root, "packageSources")
        if section is not None:
            saw_sources_section = True
            for node in section:
                if not isinstance(node.tag, str):
                    continue
                if node.tag == "clear":
                    sources.clear()
                elif node.tag == "add" and node.get("key") and node.get("value"):
                    value = node.get("value") or ""
                    if "://" not in value and not os.path.isabs(value):
                        value = str((base / value).resolve())
                    sources[node.get("key") or ""] = PackageSource(name=node.get("key") or "", url=value)
                elif node.tag == "remove" and node.get("key"):
                    sources.pop(node.get("key") or "", None)

        section = _section(root, "disabledPackageSources")
        if section is not None:
            for node in section:
                if isinstance(node.tag, str) and node.tag == "add" and (node.get("value") or "").lower() == "true":
                    disabled.add(node.get("key") or "")

        section = _section(root, "config")
        if section is not None:
            for node in section:
                if isinstance(node.tag, str) and node.tag == "add" and node.get("key") == "globalPackagesFolder":
                    value = node.get("value") or ""
                    if value:
                        packages_folder = Path(value) if os.path.isabs(value) else (base / value).resolve()

    if not saw_sources_section:
        sources["nuget.org"] = PackageSource(name="nuget.org", url=NUGET_ORG_V3)

    if os.environ.get("NUGET_PACKAGES") or packages_folder is None:
        packages_folder = default_packages_folder()

    enabled = tuple(s for key, s in sources.items() if key not in disabled)
    return SourceSettings(
        sources=enabled,
        global_packages_folder=packages_folder,
        config_files=tuple(str(p) for p in configs),
    )


class PackagesFolder:
    """
    以包标识为键的本地内容缓存（与 NuGet 全局包目录布局一致）：
    {root}/{id}/{version}/{id}.{version}.nupkg，id 与版本均为小写。
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, identity: ComponentIdentity) -> Path:
        package_id = identity.id.lower()
        version = identity.version.normalized().lower()
        return self.root / package_id / version / f"{package_id}.{version}.nupkg"

    def get(self, identity: ComponentIdentity) -> ComponentArchive | None:
        """
        查找本地缓存中的归档；不存在时返回 None。
        """
        path = self.path_for(identity)
        if not path.is_file():
            return None
        return ComponentArchive.from_path(path, source=str(self.root))

    def store(self, identity: ComponentIdentity, content: bytes) -> Path:
        """
        写入归档（先写临时文件再原子替换）。
        """
        path = self.path_for(identity)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + f".{os.getpid()}.tmp")
        tmp.write_bytes(content)
        os.replace(tmp, path)
        return path


def default_packages_folder() -> Path:
    """
    不读取任何 NuGet.Config 时的全局包目录。
    """
    env_folder = os.environ.get("NUGET_PACKAGES")
    if env_folder:
        return Path(env_folder)
    if sys.platform == "win32":
        return Path(os.environ.get("USERPROFILE") or Path.home()) / ".nuget" / "packages"
    return Path.home() / ".nuget" / "packages"
