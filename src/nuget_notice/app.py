from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Callable

import httpx
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from nuget_notice.cache import LicenseTextCache, default_cache_path
from nuget_notice.config import AppConfig
from nuget_notice.errors import NoticeError
from nuget_notice.graph import load_graph, walk
from nuget_notice.index_client import IndexSettings, PackageIndex, create_async_client
from nuget_notice.licenses import CachedTextFetcher, LicenseClassifier
from nuget_notice.models import ComponentIdentity
from nuget_notice.output import Output
from nuget_notice.project import FrameworkView, ProjectEvaluator
from nuget_notice.report import ReportEntry, render_report
from nuget_notice.requirements import requirement_identities
from nuget_notice.resolver import PackageLoader
from nuget_notice.sources import PackageSource, PackagesFolder, discover_source_settings

DEFAULT_OUTPUT_NAME = "Notice.txt"


def resolve_output_path(solution_path: Path, output: str | None) -> Path:
    """
    输出路径不含目录时，放到解决方案所在目录。
    """
    name = output or DEFAULT_OUTPUT_NAME
    if not os.path.dirname(name):
        return solution_path.resolve().parent / name
    return Path(name)


def _index_settings(solution_path: Path, config: AppConfig) -> tuple[IndexSettings, PackagesFolder]:
    """
    合并 NuGet.Config 发现的包源与运行配置中的显式包源。
    """
    discovered = discover_source_settings(solution_path.resolve().parent)
    if config.sources:
        sources = tuple(PackageSource(name=url, url=url) for url in config.sources)
    else:
        sources = discovered.sources
    folder = Path(config.packages_folder) if config.packages_folder else discovered.global_packages_folder
    settings = IndexSettings(
        sources=sources,
        timeout_s=config.timeout_s,
        retries=config.retries,
        offline=config.offline,
        auth=config.auth,
    )
    return settings, PackagesFolder(folder)


def _validate_patterns(patterns: tuple[str, ...]) -> None:
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise NoticeError(f"Invalid exclude pattern {pattern!r}: {exc}") from exc


def collect_work(units, *, output: Output) -> list[tuple[FrameworkView, ComponentIdentity]]:
    """
    列出所有在范围内项目、所有目标框架下的直接包引用（版本解析失败直接抛出）。
    """
    work: list[tuple[FrameworkView, ComponentIdentity]] = []
    for unit in units:
        for view in unit.framework_views():
            for identity in requirement_identities(view, output=output):
                work.append((view, identity))
    return work


async def build_notice(
    solution_path: Path,
    *,
    config: AppConfig,
    output: Output | None = None,
    client: httpx.AsyncClient | None = None,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> str:
    """
    生成完整的许可证声明文本：加载项目图 -> 遍历部署根 -> 加载包 -> 分类许可证 -> 组装报告。
    """
    output = output or Output()
    _validate_patterns(config.exclude)

    output.line(f"Solution: '{solution_path}'")
    output.line()
    graph = load_graph(solution_path, evaluator=ProjectEvaluator(warn=output.warning), output=output)
    output.line()

    units = walk(graph, output=output)
    output.line()

    work = collect_work(units, output=output)
    settings, packages_folder = _index_settings(solution_path, config)

    owns_client = client is None and not config.offline
    if owns_client:
        client = create_async_client(settings)

    license_cache: LicenseTextCache | None = None
    if config.use_license_cache and not config.offline:
        license_cache = LicenseTextCache(default_cache_path())

    try:
        index = PackageIndex(settings, client=client, packages_folder=packages_folder, output=output)
        loader = PackageLoader(index, recursive=config.recursive, output=output)
        await loader.load_all(
            work,
            max_concurrency=config.max_concurrency,
            on_fetch_start=on_fetch_start,
            on_fetch_complete=on_fetch_complete,
        )
        output.line()

        classifier = LicenseClassifier(
            CachedTextFetcher(index.download_text, cache=license_cache, ttl_s=config.license_cache_ttl_s),
            exclude=config.exclude,
            always_report=config.always_report,
            output=output,
        )
        entries: list[ReportEntry] = []
        for archive in loader.resolved.archives():
            entry = await classifier.classify(archive)
            if entry is not None:
                entries.append(entry)
        return render_report(entries)
    finally:
        if license_cache is not None:
            license_cache.close()
        if owns_client and client is not None:
            await client.aclose()


def run_build(solution_path: Path, *, output_path: str | None, config: AppConfig, output: Output | None = None) -> int:
    """
    同步入口：生成并写入声明文件（内部使用 asyncio）。任何致命错误都不写文件并返回 1。
    """
    output = output or Output()
    console: Console = output.console
    state = {"progress": None, "task_id": None}

    def on_start(total: int) -> None:
        if total > 0:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                "({task.completed}/{task.total})",
                console=console,
                transient=True,
            )
            progress.start()
            task_id = progress.add_task("Loading packages...", total=total)
            state["progress"] = progress
            state["task_id"] = task_id

    def on_complete() -> None:
        progress = state["progress"]
        task_id = state["task_id"]
        if progress and task_id is not None:
            progress.advance(task_id)

    target = resolve_output_path(solution_path, output_path)
    try:
        content = asyncio.run(
            build_notice(
                solution_path,
                config=config,
                output=output,
                on_fetch_start=on_start,
                on_fetch_complete=on_complete,
            )
        )
    except NoticeError as exc:
        output.error(f"Execution failed: {exc}")
        return 1
    finally:
        if state["progress"]:
            state["progress"].stop()

    output.line(f"Create: '{target}'")
    target.write_text(content, encoding="utf-8", newline="")
    return 0
