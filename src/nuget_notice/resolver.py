from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

from nuget_notice.archive import ComponentArchive
from nuget_notice.errors import ResolutionError, UnresolvedComponentError
from nuget_notice.expander import dependencies_for, should_expand
from nuget_notice.index_client import PackageIndex
from nuget_notice.models import ComponentIdentity
from nuget_notice.names import normalize_package_id
from nuget_notice.output import Output
from nuget_notice.project import FrameworkView
from nuget_notice.requirements import resolve_dependency
from nuget_notice.versions import NuGetVersion


@dataclass(frozen=True, slots=True)
class ResolveStats:
    """
    包加载统计信息。
    """

    total: int
    loaded: int
    dropped: int


class ResolvedComponentSet:
    """
    已解析组件集合：包 id（大小写不敏感）-> 当前保留的归档，始终保留见过的最高版本。

    offer() 中的“读取-比较-写入”之间没有 await，在事件循环线程上是原子的。
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[NuGetVersion, ComponentArchive]] = {}

    def version_of(self, package_id: str) -> NuGetVersion | None:
        entry = self._entries.get(normalize_package_id(package_id))
        return entry[0] if entry else None

    def is_satisfied(self, identity: ComponentIdentity) -> bool:
        """
        是否已经解析过同名且版本不低于 identity 的组件（是则无需再获取）。
        """
        current = self.version_of(identity.id)
        return current is not None and current >= identity.version

    def offer(self, identity: ComponentIdentity, archive: ComponentArchive) -> bool:
        """
        版本更高时写入并返回 True；版本相同或更低时不做任何事并返回 False。
        """
        key = identity.key
        current = self._entries.get(key)
        if current is not None and current[0] >= identity.version:
            return False
        self._entries[key] = (identity.version, archive)
        return True

    def archives(self) -> list[ComponentArchive]:
        return [archive for _, archive in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, package_id: object) -> bool:
        return isinstance(package_id, str) and normalize_package_id(package_id) in self._entries


class PackageLoader:
    """
    获取组件并按需递归展开依赖。

    同一分支内的递归是顺序的（深度优先）；同一标识的并发请求共享一个任务
    （获取 + 写入集合 + 展开依赖），等待者在整个分支完成后才继续。
    """

    def __init__(
        self,
        index: PackageIndex,
        *,
        recursive: bool = False,
        output: Output | None = None,
    ) -> None:
        self.index = index
        self.recursive = recursive
        self.output = output or Output()
        self.resolved = ResolvedComponentSet()
        self.dropped = 0
        self._tasks: dict[tuple[str, NuGetVersion], asyncio.Future[None]] = {}

    async def load(self, view: FrameworkView, identity: ComponentIdentity) -> None:
        """
        加载一个组件；已有同名且不低版本时直接返回。
        """
        if self.resolved.is_satisfied(identity):
            return
        key = (identity.key, identity.version)
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_once(view, identity))
            self._tasks[key] = task
        await asyncio.shield(task)

    async def _load_once(self, view: FrameworkView, identity: ComponentIdentity) -> None:
        self.output.line(f"Load: {identity}")
        archive = await self.index.fetch(identity)

        if not self.resolved.offer(identity, archive):
            return
        if not should_expand(archive, recursive=self.recursive):
            return
        if not self.recursive:
            self.output.line(f"  - No project url found in {identity}, scanning dependencies")

        for dependency in dependencies_for(archive, view.target_framework):
            try:
                dep_identity = resolve_dependency(view, dependency)
                await self.load(view, dep_identity)
            except (ResolutionError, UnresolvedComponentError) as exc:
                self.dropped += 1
                self.output.line(f"  - Dependency {dependency.id} of {identity} skipped: {exc}")

    def _cancel_pending(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def load_all(
        self,
        work: list[tuple[FrameworkView, ComponentIdentity]],
        *,
        max_concurrency: int,
        on_fetch_start: Callable[[int], Any] | None = None,
        on_fetch_complete: Callable[[], Any] | None = None,
    ) -> ResolveStats:
        """
        并发加载所有直接引用（受 max_concurrency 限制）；任一直接引用失败则取消其余任务并抛出。
        """
        if on_fetch_start is not None:
            on_fetch_start(len(work))

        sem = asyncio.Semaphore(max(1, max_concurrency))

        async def worker(view: FrameworkView, identity: ComponentIdentity) -> None:
            async with sem:
                await self.load(view, identity)
            if on_fetch_complete is not None:
                on_fetch_complete()

        tasks = [asyncio.ensure_future(worker(v, i)) for v, i in work]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            self._cancel_pending()
            await asyncio.gather(*tasks, *self._tasks.values(), return_exceptions=True)
            raise

        return ResolveStats(total=len(work), loaded=len(self.resolved), dropped=self.dropped)
