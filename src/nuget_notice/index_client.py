from __future__ import annotations

import asyncio
import base64
import json
import random
import zipfile
from dataclasses import dataclass
from typing import Any

import httpx

from nuget_notice.archive import ComponentArchive
from nuget_notice.errors import UnresolvedComponentError
from nuget_notice.models import ComponentIdentity
from nuget_notice.output import Output
from nuget_notice.sources import PackageSource, PackagesFolder

PACKAGE_BASE_ADDRESS = "PackageBaseAddress/3.0.0"


@dataclass(frozen=True, slots=True)
class IndexAuth:
    """
    私有包源认证配置。
    """

    bearer_token: str | None = None
    basic_username: str | None = None
    basic_password: str | None = None


@dataclass(frozen=True, slots=True)
class IndexSettings:
    """
    包源访问配置。
    """

    sources: tuple[PackageSource, ...] = ()
    timeout_s: float = 30.0
    retries: int = 2
    offline: bool = False
    auth: IndexAuth | None = None


@dataclass(frozen=True, slots=True)
class SourceResponse:
    """
    单次请求的结果：成功时带响应体，否则带 HTTP 状态或错误信息。
    """

    body: bytes | None
    status: int | None
    error: str | None


def _build_headers(auth: IndexAuth | None) -> dict[str, str]:
    """
    基于认证配置构造 HTTP Header。
    """
    headers: dict[str, str] = {"User-Agent": "nuget-notice"}
    if not auth:
        return headers

    if auth.bearer_token:
        headers["Authorization"] = f"Bearer {auth.bearer_token}"
        return headers

    if auth.basic_username is not None and auth.basic_password is not None:
        token = f"{auth.basic_username}:{auth.basic_password}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(token).decode('ascii')}"
        return headers

    return headers


async def _request(client: httpx.AsyncClient, url: str, *, retries: int) -> SourceResponse:
    """
    发起 GET 请求；超时与网络错误按指数退避重试，HTTP 错误不重试。
    """
    attempt = 0
    while True:
        try:
            resp = await client.get(url)
            if resp.status_code >= 400:
                return SourceResponse(body=None, status=resp.status_code, error=f"http {resp.status_code}")
            return SourceResponse(body=resp.content, status=resp.status_code, error=None)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            if attempt >= retries:
                return SourceResponse(body=None, status=None, error=str(exc) or type(exc).__name__)
            backoff = (2**attempt) * 0.25 + random.random() * 0.25
            attempt += 1
            await asyncio.sleep(backoff)
        except httpx.HTTPError as exc:
            return SourceResponse(body=None, status=None, error=str(exc) or type(exc).__name__)


def _package_base_address(data: Any) -> str | None:
    """
    从 V3 服务索引中找到 PackageBaseAddress 资源的地址。
    """
    if not isinstance(data, dict):
        return None
    for resource in data.get("resources") or []:
        if not isinstance(resource, dict):
            continue
        types = resource.get("@type")
        if isinstance(types, str):
            types = [types]
        if any(str(t).startswith(PACKAGE_BASE_ADDRESS) for t in types or []):
            base = resource.get("@id")
            if base:
                return str(base).rstrip("/") + "/"
    return None


def _build_v3_download_url(base: str, identity: ComponentIdentity) -> str:
    """
    生成 V3 扁平容器的 .nupkg 下载地址（id 与版本均为小写）。
    """
    package_id = identity.id.lower()
    version = identity.version.normalized().lower()
    return f"{base}{package_id}/{version}/{package_id}.{version}.nupkg"


def _build_v2_download_url(source_url: str, identity: ComponentIdentity) -> str:
    return f"{source_url.rstrip('/')}/package/{identity.id}/{identity.version.normalized()}"


class PackageIndex:
    """
    按配置顺序访问包源获取归档；离线模式只查本地包目录。
    """

    def __init__(
        self,
        settings: IndexSettings,
        *,
        client: httpx.AsyncClient | None,
        packages_folder: PackagesFolder | None,
        output: Output | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.packages_folder = packages_folder
        self.output = output
        self._base_addresses: dict[str, str | None] = {}
        self._base_locks: dict[str, asyncio.Lock] = {}

    async def _resolve_base_address(self, source: PackageSource) -> tuple[str | None, str | None]:
        """
        获取（并缓存）某个 V3 源的 PackageBaseAddress；返回 (地址, 错误)。
        """
        lock = self._base_locks.setdefault(source.url, asyncio.Lock())
        async with lock:
            if source.url in self._base_addresses:
                return self._base_addresses[source.url], None
            if self.client is None:
                return None, f"{source.name}: network access disabled"
            res = await _request(self.client, source.url, retries=self.settings.retries)
            if res.body is None:
                return None, f"{source.name}: {res.error}"
            try:
                data = json.loads(res.body)
            except ValueError as exc:
                return None, f"{source.name}: invalid service index: {exc}"
            base = _package_base_address(data)
            if base is None:
                return None, f"{source.name}: no {PACKAGE_BASE_ADDRESS} resource in service index"
            self._base_addresses[source.url] = base
            return base, None

    def _fetch_local(self, source: PackageSource, identity: ComponentIdentity) -> bytes | None:
        """
        从本地目录型包源读取归档（支持扁平目录与 {id}/{version}/ 分层目录）。
        """
        root = source.local_path
        version = identity.version.normalized()
        names = [f"{identity.id}.{version}.nupkg", f"{identity.id.lower()}.{version.lower()}.nupkg"]
        candidates = [root / n for n in names]
        candidates.append(root / identity.id.lower() / version.lower() / names[1])
        for candidate in candidates:
            if candidate.is_file():
                return candidate.read_bytes()
        if root.is_dir():
            wanted = names[1]
            for entry in root.iterdir():
                if entry.name.lower() == wanted and entry.is_file():
                    return entry.read_bytes()
        return None

    async def _fetch_remote(self, source: PackageSource, identity: ComponentIdentity) -> tuple[bytes | None, str | None]:
        if self.client is None:
            return None, f"{source.name}: network access disabled"
        if source.url.lower().endswith(".json"):
            base, error = await self._resolve_base_address(source)
            if base is None:
                return None, error
            url = _build_v3_download_url(base, identity)
        else:
            url = _build_v2_download_url(source.url, identity)

        res = await _request(self.client, url, retries=self.settings.retries)
        if res.status == 404:
            return None, f"{source.name}: not found"
        if res.body is None:
            return None, f"{source.name}: {res.error}"
        return res.body, None

    def _remember(self, identity: ComponentIdentity, content: bytes) -> None:
        if self.packages_folder is None:
            return
        try:
            self.packages_folder.store(identity, content)
        except OSError as exc:
            if self.output is not None:
                self.output.warning(f"Could not cache {identity} in {self.packages_folder.root}: {exc}")

    async def fetch(self, identity: ComponentIdentity) -> ComponentArchive:
        """
        依次尝试：本地包目录 -> 配置的包源（严格按顺序，首个成功者胜出）。
        全部失败时抛出 UnresolvedComponentError，并附带每个包源的错误信息。
        """
        errors: list[str] = []

        if self.packages_folder is not None:
            try:
                cached = self.packages_folder.get(identity)
            except (OSError, zipfile.BadZipFile) as exc:
                cached = None
                errors.append(f"{self.packages_folder.root}: {exc}")
            if cached is not None:
                return cached

        if self.settings.offline:
            if self.packages_folder is not None:
                errors.append(f"{self.packages_folder.root}: not found in local package cache")
            raise UnresolvedComponentError(identity, errors)

        for source in self.settings.sources:
            if source.is_local:
                try:
                    content = self._fetch_local(source, identity)
                except OSError as exc:
                    errors.append(f"{source.name}: {exc}")
                    continue
                if content is None:
                    errors.append(f"{source.name}: not found")
                    continue
            else:
                content, error = await self._fetch_remote(source, identity)
                if content is None:
                    errors.append(error or f"{source.name}: request failed")
                    continue

            try:
                archive = ComponentArchive(content, source=source.url)
            except zipfile.BadZipFile as exc:
                errors.append(f"{source.name}: invalid package archive: {exc}")
                continue

            self._remember(identity, content)
            return archive

        raise UnresolvedComponentError(identity, errors)

    async def download_text(self, url: str) -> str:
        """
        下载 URL 文本内容（尽力而为：任何失败都返回空字符串）。
        """
        if self.client is None or self.settings.offline:
            return ""
        res = await _request(self.client, url, retries=self.settings.retries)
        if res.body is None:
            return ""
        return res.body.decode("utf-8", errors="replace")


def create_async_client(settings: IndexSettings) -> httpx.AsyncClient:
    """
    创建用于访问包源的 AsyncClient。
    """
    headers = _build_headers(settings.auth)
    timeout = httpx.Timeout(settings.timeout_s)
    return httpx.AsyncClient(headers=headers, timeout=timeout, follow_redirects=True)
