from __future__ import annotations

from typing import TextIO

from rich.console import Console
from rich.markup import escape


class Output:
    """
    控制台诊断输出（写到 stderr，报告正文由调用方写入文件）。
    """

    def __init__(self, console: Console | None = None, *, file: TextIO | None = None) -> None:
        if console is None:
            console = Console(file=file, stderr=file is None, highlight=False, soft_wrap=True)
        self.console = console

    def line(self, text: str = "") -> None:
        """
        输出一行普通诊断信息。
        """
        self.console.print(escape(text), highlight=False)

    def warning(self, text: str) -> None:
        """
        输出警告（黄色 Warning: 前缀）。
        """
        self.console.print(f"[yellow]Warning:[/yellow] {escape(text)}", highlight=False)

    def error(self, text: str) -> None:
        """
        输出错误（红色 Error: 前缀）。
        """
        self.console.print(f"[red]Error:[/red] {escape(text)}", highlight=False)
