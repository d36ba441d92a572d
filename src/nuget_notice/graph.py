from __future__ import annotations

import os
from xml.etree import ElementTree as ET

from nuget_notice.errors import GraphEmptyError
from nuget_notice.names import normalize_project_path
from nuget_notice.output import Output
from nuget_notice.project import BuildUnit, ProjectEvaluator
from nuget_notice.solution import parse_solution


class ProjectGraph:
    """
    已加载项目的图：节点按规范化绝对路径索引，引用边用路径键表示（允许多对多与环）。
    """

    def __init__(self, units: list[BuildUnit]) -> None:
        self.units: dict[str, BuildUnit] = {}
        for unit in units:
            self.units.setdefault(unit.key, unit)

    def find(self, path: str) -> BuildUnit | None:
        """
        按路径查找已加载的项目；不在图中的返回 None。
        """
        return self.units.get(normalize_project_path(path))

    def references(self, unit: BuildUnit) -> list[BuildUnit]:
        """
        返回 unit 引用的、且在图内的项目（图外引用被丢弃）。
        """
        found: list[BuildUnit] = []
        for path in unit.reference_paths():
            ref = self.find(path)
            if ref is not None:
                found.append(ref)
        return found

    def roots(self) -> list[BuildUnit]:
        return [unit for unit in self.units.values() if unit.is_deployment_target]


def load_graph(solution_path: str | os.PathLike[str], *, evaluator: ProjectEvaluator, output: Output) -> ProjectGraph:
    """
    加载解决方案中的全部项目；单个项目加载失败只给出警告并跳过。
    """
    units: list[BuildUnit] = []
    for entry in parse_solution(solution_path):
        output.line(f"Load: {entry.relative_path}")
        try:
            project = evaluator.load(entry.absolute_path)
        except (OSError, ValueError, ET.ParseError) as exc:
            output.warning(f"Loading failed: {exc}")
            continue
        units.append(BuildUnit(entry.absolute_path, entry.relative_path, project, evaluator))
    return ProjectGraph(units)


def walk(graph: ProjectGraph, *, output: Output | None = None) -> list[BuildUnit]:
    """
    从所有部署根出发深度优先遍历引用边，返回去重后的在范围内项目（按首次访问顺序）。
    """
    included: dict[str, BuildUnit] = {}

    def visit(unit: BuildUnit, level: int) -> None:
        if unit.key in included:
            return
        included[unit.key] = unit
        if level > 0 and output is not None:
            output.line(f"{'  ' * level}- {unit.relative_path}")
        for ref in graph.references(unit):
            visit(ref, level + 1)

    for root in graph.roots():
        if root.key in included:
            continue
        if output is not None:
            output.line(f"Include: {root.relative_path}")
        visit(root, 0)

    if not included:
        raise GraphEmptyError()
    return list(included.values())
