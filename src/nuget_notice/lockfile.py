from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from nuget_notice.versions import NuGetVersion, parse_version


@dataclass(frozen=True, slots=True)
class LockLibrary:
    """
    还原锁文件（project.assets.json）中的一条库记录。
    """

    name: str
    version: NuGetVersion
    type: str


@dataclass(frozen=True, slots=True)
class RestoreLock:
    """
    还原步骤生成的锁文件：每个包被固定到一个具体版本。
    """

    path: str
    libraries: tuple[LockLibrary, ...]

    def find(self, name: str) -> list[LockLibrary]:
        """
        按包名查找库记录（名称精确匹配，只返回 package 类型）。
        """
        return [lib for lib in self.libraries if lib.name == name and lib.type == "package"]


def parse_restore_lock(data: dict[str, Any], *, path: str = "") -> RestoreLock:
    """
    从 project.assets.json 的 JSON 数据中抽取 libraries 段。
    """
    libraries: list[LockLibrary] = []
    raw = data.get("libraries")
    if isinstance(raw, dict):
        for key, info in raw.items():
            name, _, version_raw = str(key).partition("/")
            version = parse_version(version_raw)
            if not name or version is None:
                continue
            lib_type = str(info.get("type") or "package") if isinstance(info, dict) else "package"
            libraries.append(LockLibrary(name=name, version=version, type=lib_type))
    return RestoreLock(path=path, libraries=tuple(libraries))


def load_restore_lock(path: str | Path) -> RestoreLock:
    """
    读取并解析还原锁文件；文件不存在时抛出 FileNotFoundError。
    """
    p = Path(path)
    data = json.loads(p.read_text(encoding="utf-8-sig"))
    if not isinstance(data, dict):
        data = {}
    return parse_restore_lock(data, path=str(p))
