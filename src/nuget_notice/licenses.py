from __future__ import annotations

import codecs
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from nuget_notice.archive import ComponentArchive, Nuspec
from nuget_notice.cache import LicenseTextCache
from nuget_notice.errors import LicenseEvidenceError
from nuget_notice.output import Output
from nuget_notice.report import ReportEntry

MIT_LICENSE_EXPRESSION = "MIT"
MIT_LICENSE_TITLE = "MIT License"
APACHE_LICENSE_EXPRESSION = "Apache-2.0"
APACHE_LICENSE_URL = "http://www.apache.org/licenses/LICENSE-2.0"
APACHE_LICENSE_TITLE = "Apache License, Version 2.0"
MICROSOFT_NET_LIBRARY_URL = "http://go.microsoft.com/fwlink/?LinkId=329770"
MICROSOFT_NET_LIBRARY_LINE = f"License: MICROSOFT .NET LIBRARY ({MICROSOFT_NET_LIBRARY_URL})"

_APACHE_URL_RE = re.compile(r"https?://www\.apache\.org/licenses/LICENSE-2\.0", re.IGNORECASE)

# longest first: the UTF-32-LE mark starts with the UTF-16-LE one
_BOMS = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


@dataclass(frozen=True, slots=True)
class ExpressionEvidence:
    """
    <license type="expression">：已规范化的 SPDX 表达式。
    """

    expression: str


@dataclass(frozen=True, slots=True)
class FileEvidence:
    """
    <license type="file">：包内许可证文件的路径。
    """

    path: str


@dataclass(frozen=True, slots=True)
class UrlEvidence:
    """
    旧式 <licenseUrl>。
    """

    url: str


@dataclass(frozen=True, slots=True)
class NoEvidence:
    """
    没有任何许可证信息。
    """


LicenseEvidence = Union[ExpressionEvidence, FileEvidence, UrlEvidence, NoEvidence]


def evidence_for(spec: Nuspec) -> LicenseEvidence:
    """
    按优先级从 nuspec 中取出许可证证据：表达式 > 文件 > URL > 无。
    """
    if spec.license is not None:
        if spec.license.type == "file":
            return FileEvidence(path=spec.license.value)
        return ExpressionEvidence(expression=spec.license.value)
    if spec.license_url:
        return UrlEvidence(url=spec.license_url)
    return NoEvidence()


def decode_license_text(data: bytes) -> str:
    """
    按字节序标记选择编码，没有标记时按 UTF-8 解码；无法解码的字节用替换字符代替。
    """
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return data[len(bom):].decode(encoding, errors="replace")
    return data.decode("utf-8", errors="replace")


def is_apache2_license(line: str | None) -> bool:
    """
    判断一行文本是否带有 Apache-2.0 的特征（规范 URL 或标题）。
    """
    if not line:
        return False
    return bool(_APACHE_URL_RE.search(line)) or APACHE_LICENSE_TITLE.lower() in line.lower()


def is_mit_license(lines: list[str]) -> bool:
    """
    第一行包含 "MIT License" 即视为 MIT。
    """
    return bool(lines) and MIT_LICENSE_TITLE in lines[0]


def fingerprint(lines: list[str]) -> str | None:
    """
    用两个内置特征识别许可证文本，返回规范化标识或 None。
    """
    if is_mit_license(lines):
        return MIT_LICENSE_EXPRESSION
    if any(is_apache2_license(line) for line in lines):
        return APACHE_LICENSE_EXPRESSION
    return None


def format_license_text(lines: list[str]) -> list[str]:
    """
    将许可证正文逐行引用（"> " 前缀）。
    """
    return [f"> {line}" for line in lines]


def looks_like_html(lines: list[str]) -> bool:
    return any(line.lstrip().lower().startswith(("<html", "<!doctype html")) for line in lines)


class CachedTextFetcher:
    """
    带本地缓存的许可证文本下载器；下载失败（空文本）不写缓存。
    """

    def __init__(
        self,
        download: Callable[[str], Awaitable[str]],
        *,
        cache: LicenseTextCache | None = None,
        ttl_s: int = 0,
    ) -> None:
        self._download = download
        self._cache = cache
        self._ttl_s = ttl_s

    async def __call__(self, url: str) -> str:
        if self._cache is not None:
            entry = self._cache.get(url=url, ttl_s=self._ttl_s)
            if entry is not None:
                return entry.text
        text = await self._download(url)
        if text and self._cache is not None:
            self._cache.set(url=url, text=text)
        return text


class LicenseClassifier:
    """
    为每个组件生成一条报告记录（或跳过）。

    顺序：无项目地址 -> 跳过（always_report 时除外）；命中排除规则 -> 跳过；
    然后按证据类型分派。提取或分类过程中的任何意外错误都会终止整次运行。
    """

    def __init__(
        self,
        fetch_text: Callable[[str], Awaitable[str]],
        *,
        exclude: tuple[str, ...] = (),
        always_report: bool = False,
        output: Output | None = None,
    ) -> None:
        self._fetch_text = fetch_text
        self._exclude = [re.compile(p, re.IGNORECASE) for p in exclude if p]
        self._always_report = always_report
        self._output = output or Output()
        self._handlers = {
            ExpressionEvidence: self._from_expression,
            FileEvidence: self._from_file,
            UrlEvidence: self._from_url,
            NoEvidence: self._from_nothing,
        }

    def is_excluded(self, package_id: str) -> bool:
        return any(p.search(package_id) for p in self._exclude)

    async def classify(self, archive: ComponentArchive) -> ReportEntry | None:
        """
        生成报告记录；返回 None 表示该组件不出现在报告中。
        """
        try:
            spec = archive.nuspec
            package_id = spec.id
        except Exception as exc:
            name = archive.source or "<unknown package>"
            self._output.error(f"Error loading license metadata for package {name}")
            raise LicenseEvidenceError(name, exc) from exc

        if not spec.project_url and not self._always_report:
            self._output.line(f"Skip {package_id}: No project URL")
            return None

        if self.is_excluded(package_id):
            self._output.line(f"Skip {package_id}: Excluded")
            return None

        try:
            evidence = evidence_for(spec)
            license_lines = await self._handlers[type(evidence)](archive, evidence)
            version = archive.identity.version.normalized()
        except Exception as exc:
            self._output.error(f"Error loading license metadata for package {package_id}")
            raise LicenseEvidenceError(package_id, exc) from exc

        return ReportEntry(
            id=package_id,
            title=spec.title or package_id,
            version=version,
            project_url=spec.project_url or "",
            license_lines=tuple(license_lines),
        )

    async def _from_expression(self, archive: ComponentArchive, evidence: ExpressionEvidence) -> list[str]:
        return [f"License: {evidence.expression}"]

    async def _from_file(self, archive: ComponentArchive, evidence: FileEvidence) -> list[str]:
        text = decode_license_text(archive.read_entry(evidence.path))
        lines = text.splitlines()
        normalized = fingerprint(lines)
        if normalized is not None:
            return [f"License: {normalized}"]
        return ["License:", *format_license_text(lines)]

    async def _from_url(self, archive: ComponentArchive, evidence: UrlEvidence) -> list[str]:
        if is_apache2_license(evidence.url):
            return [f"License: {APACHE_LICENSE_EXPRESSION}"]
        if evidence.url.strip().lower() == MICROSOFT_NET_LIBRARY_URL.lower():
            return [MICROSOFT_NET_LIBRARY_LINE]

        lines = (await self._fetch_text(evidence.url)).splitlines()
        normalized = fingerprint(lines)
        if normalized is not None:
            return [f"License: {normalized}"]

        result = [f"License: {evidence.url}"]
        if not looks_like_html(lines):
            result.extend(format_license_text(lines))
        return result

    async def _from_nothing(self, archive: ComponentArchive, evidence: NoEvidence) -> list[str]:
        return ["License: Unknown"]
