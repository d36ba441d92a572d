from __future__ import annotations

import io
from pathlib import Path

import pytest
from rich.console import Console

from nuget_notice.errors import GraphEmptyError
from nuget_notice.graph import load_graph, walk
from nuget_notice.output import Output
from nuget_notice.project import ProjectEvaluator
from nuget_notice.solution import parse_solution

CSPROJ_GUID = "{9A19103F-16F7-4668-BE54-9A1E7A4F7556}"
FOLDER_GUID = "{2150E333-8FDC-42A3-9474-1A3956D46DE8}"


def _output() -> tuple[Output, io.StringIO]:
    buf = io.StringIO()
    return Output(Console(file=buf, width=200, color_system=None)), buf


def _project(path: Path, *, deploy: str | None = None, refs: list[str] = ()) -> None:
    """
    写一个最小 SDK 项目（可选部署标记与项目引用）。
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    props = f"<IsDeploymentTarget>{deploy}</IsDeploymentTarget>" if deploy is not None else ""
    items = "".join(f'<ProjectReference Include="{r}" />' for r in refs)
    path.write_text(
        f'<Project Sdk="Microsoft.NET.Sdk"><PropertyGroup><TargetFramework>net8.0</TargetFramework>{props}'
        f"</PropertyGroup><ItemGroup>{items}</ItemGroup></Project>",
        encoding="utf-8",
    )


def _sln(path: Path, projects: list[tuple[str, str]]) -> Path:
    lines = ["Microsoft Visual Studio Solution File, Format Version 12.00"]
    lines.append(f'Project("{FOLDER_GUID}") = "Solution Items", "Solution Items", "{{00000000-0000-0000-0000-000000000000}}"')
    lines.append("EndProject")
    for name, rel in projects:
        lines.append(f'Project("{CSPROJ_GUID}") = "{name}", "{rel}", "{{11111111-1111-1111-1111-111111111111}}"')
        lines.append("EndProject")
    path.write_text("\r\n".join(lines) + "\r\n", encoding="utf-8-sig")
    return path


def test_parse_sln_skips_solution_folders(tmp_path: Path) -> None:
    """
    .sln 中的解决方案文件夹不是项目；项目路径按解决方案目录解析。
    """
    sln = _sln(tmp_path / "All.sln", [("App", "src\\App\\App.csproj"), ("Lib", "src\\Lib\\Lib.csproj")])
    projects = parse_solution(sln)
    assert [p.name for p in projects] == ["App", "Lib"]
    assert projects[0].relative_path == "src\\App\\App.csproj"
    assert Path(projects[0].absolute_path) == tmp_path / "src" / "App" / "App.csproj"


def test_parse_slnx(tmp_path: Path) -> None:
    """
    .slnx 中任意层级的 <Project Path=...> 都被列出。
    """
    slnx = tmp_path / "All.slnx"
    slnx.write_text(
        '<Solution><Folder Name="/src/"><Project Path="src/App/App.csproj" /></Folder>'
        '<Project Path="tests/T/T.csproj" /></Solution>',
        encoding="utf-8",
    )
    projects = parse_solution(slnx)
    assert [p.name for p in projects] == ["App", "T"]


def _layout(tmp_path: Path) -> Path:
    """
    App(root) -> Core -> Util -> Core（环）；Tool(root) -> Util；Other 不在范围内；
    App 还引用了一个不在解决方案里的项目。
    """
    _project(tmp_path / "App" / "App.csproj", deploy="true", refs=["..\\Core\\Core.csproj", "..\\Ext\\Ext.csproj"])
    _project(tmp_path / "Core" / "Core.csproj", refs=["..\\Util\\Util.csproj"])
    _project(tmp_path / "Util" / "Util.csproj", refs=["..\\Core\\Core.csproj"])
    _project(tmp_path / "Tool" / "Tool.csproj", deploy=" True ", refs=["..\\Util\\Util.csproj"])
    _project(tmp_path / "Other" / "Other.csproj", deploy="yes")
    _project(tmp_path / "Ext" / "Ext.csproj", deploy="true")
    return _sln(
        tmp_path / "All.sln",
        [
            ("App", "App\\App.csproj"),
            ("Core", "Core\\Core.csproj"),
            ("Util", "Util\\Util.csproj"),
            ("Tool", "Tool\\Tool.csproj"),
            ("Other", "Other\\Other.csproj"),
        ],
    )


def test_walk_dedups_terminates_cycles_and_drops_outside_refs(tmp_path: Path) -> None:
    """
    从部署根深度优先遍历：每个项目只出现一次，环能终止，图外引用被静默丢弃。
    """
    sln = _layout(tmp_path)
    output, buf = _output()
    graph = load_graph(sln, evaluator=ProjectEvaluator(), output=output)
    units = walk(graph, output=output)

    assert [u.relative_path for u in units] == ["App\\App.csproj", "Core\\Core.csproj", "Util\\Util.csproj", "Tool\\Tool.csproj"]
    text = buf.getvalue()
    assert "Include: App\\App.csproj" in text
    assert "  - Core\\Core.csproj" in text
    assert "    - Util\\Util.csproj" in text
    assert "Include: Tool\\Tool.csproj" in text
    assert "Other" not in text.split("Include:", 1)[1]


def test_walk_without_roots_raises(tmp_path: Path) -> None:
    """
    没有任何部署根时抛出 GraphEmptyError。
    """
    _project(tmp_path / "Lib" / "Lib.csproj", deploy="false")
    sln = _sln(tmp_path / "All.sln", [("Lib", "Lib\\Lib.csproj")])
    output, _ = _output()
    graph = load_graph(sln, evaluator=ProjectEvaluator(), output=output)
    with pytest.raises(GraphEmptyError, match="No projects to include"):
        walk(graph)


def test_load_graph_skips_broken_projects_with_warning(tmp_path: Path) -> None:
    """
    无法加载的项目给出警告并跳过。
    """
    _project(tmp_path / "App" / "App.csproj", deploy="true")
    (tmp_path / "Broken").mkdir()
    (tmp_path / "Broken" / "Broken.csproj").write_text("<Project>", encoding="utf-8")
    sln = _sln(
        tmp_path / "All.sln",
        [("App", "App\\App.csproj"), ("Broken", "Broken\\Broken.csproj"), ("Gone", "Gone\\Gone.csproj")],
    )
    output, buf = _output()
    graph = load_graph(sln, evaluator=ProjectEvaluator(), output=output)
    assert len(graph.units) == 1
    assert buf.getvalue().count("Warning:") == 2
    assert [u.relative_path for u in walk(graph)] == ["App\\App.csproj"]
