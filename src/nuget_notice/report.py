from __future__ import annotations

from dataclasses import dataclass

HEADER = "This product bundles the following components under the described licenses:"
DELIMITER = "-" * 80
NEWLINE = "\r\n"


@dataclass(frozen=True, slots=True)
class ReportEntry:
    """
    报告中的一个组件块。
    """

    id: str
    title: str
    version: str
    project_url: str
    license_lines: tuple[str, ...]


def render_entry(entry: ReportEntry) -> list[str]:
    """
    渲染单个组件块（分隔线、标题、Id/Version/Project、许可证、空行）。
    """
    return [
        DELIMITER,
        "",
        entry.title or entry.id,
        "",
        f"Id:      {entry.id}",
        f"Version: {entry.version}",
        f"Project: {entry.project_url}",
        *entry.license_lines,
        "",
    ]


def render_report(entries: list[ReportEntry]) -> str:
    """
    按包 id（序数比较、区分大小写）排序后拼接完整报告正文，行尾为 CRLF。
    """
    lines = [HEADER, ""]
    for entry in sorted(entries, key=lambda e: e.id):
        lines.extend(render_entry(entry))
    return NEWLINE.join(lines) + NEWLINE
