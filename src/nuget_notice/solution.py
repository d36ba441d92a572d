from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from xml.etree import ElementTree as ET

SOLUTION_FOLDER_TYPE = "{2150E333-8FDC-42A3-9474-1A3956D46DE8}"

_PROJECT_RE = re.compile(
    r'^Project\("(?P<type>\{[^}]+\})"\)\s*=\s*"(?P<name>[^"]*)"\s*,\s*"(?P<path>[^"]*)"\s*,\s*"(?P<guid>[^"]*)"',
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class SolutionProject:
    """
    解决方案文件中列出的一个项目。
    """

    name: str
    relative_path: str
    absolute_path: str


def _parse_sln(path: Path) -> list[SolutionProject]:
    """
    解析经典 .sln 文本格式（跳过解决方案文件夹）。
    """
    projects: list[SolutionProject] = []
    base = path.parent
    for line in path.read_text(encoding="utf-8-sig", errors="replace").splitlines():
        m = _PROJECT_RE.match(line.strip())
        if m is None:
            continue
        if m.group("type").upper() == SOLUTION_FOLDER_TYPE:
            continue
        relative = m.group("path")
        absolute = os.path.normpath(os.path.join(base, relative.replace("\\", os.sep)))
        projects.append(SolutionProject(name=m.group("name"), relative_path=relative, absolute_path=absolute))
    return projects


def _parse_slnx(path: Path) -> list[SolutionProject]:
    """
    解析 XML 格式的 .slnx（所有层级的 <Project Path=...>）。
    """
    projects: list[SolutionProject] = []
    base = path.parent
    root = ET.parse(path).getroot()
    for elem in root.iter():
        if not isinstance(elem.tag, str) or elem.tag.rsplit("}", 1)[-1] != "Project":
            continue
        relative = elem.get("Path")
        if not relative:
            continue
        absolute = os.path.normpath(os.path.join(base, relative.replace("\\", os.sep)))
        name = os.path.splitext(os.path.basename(relative.replace("\\", "/")))[0]
        projects.append(SolutionProject(name=name, relative_path=relative, absolute_path=absolute))
    return projects


def parse_solution(path: str | os.PathLike[str]) -> list[SolutionProject]:
    """
    读取解决方案文件并按声明顺序返回项目列表。
    """
    p = Path(path)
    if p.suffix.lower() == ".slnx":
        return _parse_slnx(p)
    return _parse_sln(p)
