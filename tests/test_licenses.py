from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest
from rich.console import Console

from nuget_notice.archive import ComponentArchive
from nuget_notice.cache import LicenseTextCache
from nuget_notice.errors import LicenseEvidenceError
from nuget_notice.licenses import (
    MICROSOFT_NET_LIBRARY_LINE,
    MICROSOFT_NET_LIBRARY_URL,
    CachedTextFetcher,
    ExpressionEvidence,
    FileEvidence,
    LicenseClassifier,
    NoEvidence,
    UrlEvidence,
    decode_license_text,
    evidence_for,
    fingerprint,
)
from nuget_notice.output import Output

APACHE_TEXT = """
                                 Apache License
                           Version 2.0, January 2004
                        http://www.apache.org/licenses/

   See http://www.apache.org/licenses/LICENSE-2.0 for details.
"""


class FakeFetcher:
    """
    记录请求的 URL 并返回预设文本。
    """

    def __init__(self, texts: dict[str, str]) -> None:
        self.texts = texts
        self.requested: list[str] = []

    async def __call__(self, url: str) -> str:
        self.requested.append(url)
        return self.texts.get(url, "")


def _classifier(fetcher=None, **kwargs) -> tuple[LicenseClassifier, io.StringIO]:
    buf = io.StringIO()
    output = Output(Console(file=buf, width=300, color_system=None))
    return LicenseClassifier(fetcher or FakeFetcher({}), output=output, **kwargs), buf


def test_evidence_priority(make_nupkg) -> None:
    """
    许可证证据优先级：表达式 > 文件 > URL > 无。
    """

    def ev(**kwargs):
        return evidence_for(ComponentArchive(make_nupkg("P", "1.0", **kwargs)).nuspec)

    assert ev(license="MIT", license_url="https://x.test") == ExpressionEvidence("MIT")
    assert ev(license="LICENSE", license_type="file", license_url="https://x.test") == FileEvidence("LICENSE")
    assert ev(license_url="https://x.test") == UrlEvidence("https://x.test")
    assert ev() == NoEvidence()


def test_fingerprint() -> None:
    """
    只识别 MIT（第一行）与 Apache-2.0 两种特征。
    """
    assert fingerprint(["  The MIT License (MIT)", "", "Copyright (c) x"]) == "MIT"
    assert fingerprint(["", "MIT License", "Copyright (c) x"]) is None
    assert fingerprint(["Copyright", "MIT License"]) is None
    assert fingerprint(APACHE_TEXT.splitlines()) == "Apache-2.0"
    assert fingerprint(["Licensed under the APACHE LICENSE, VERSION 2.0"]) == "Apache-2.0"
    assert fingerprint(["BSD 3-Clause"]) is None


@pytest.mark.asyncio
async def test_skip_without_project_url_and_excluded(make_nupkg) -> None:
    """
    没有项目地址或命中排除规则的包不出现在报告中，并给出诊断。
    """
    classifier, buf = _classifier(exclude=("^contoso\\.",))
    assert await classifier.classify(ComponentArchive(make_nupkg("NoUrl", "1.0", license="MIT"))) is None
    excluded = ComponentArchive(make_nupkg("Contoso.Internal", "1.0", project_url="https://c.test", license="MIT"))
    assert await classifier.classify(excluded) is None
    text = buf.getvalue()
    assert "Skip NoUrl: No project URL" in text
    assert "Skip Contoso.Internal: Excluded" in text


@pytest.mark.asyncio
async def test_always_report_includes_packages_without_project_url(make_nupkg) -> None:
    """
    always_report 时缺少项目地址的包也写入报告（项目地址为空）。
    """
    classifier, _ = _classifier(always_report=True)
    entry = await classifier.classify(ComponentArchive(make_nupkg("NoUrl", "1.0", license="MIT")))
    assert entry is not None
    assert entry.project_url == ""
    assert entry.title == "NoUrl"


@pytest.mark.asyncio
async def test_expression_evidence(make_nupkg) -> None:
    """
    表达式原样输出，版本规范化，标题缺失时用 id。
    """
    classifier, _ = _classifier()
    entry = await classifier.classify(
        ComponentArchive(make_nupkg("Pkg", "4.5.6.0", project_url="https://p.test", license="MIT OR Apache-2.0"))
    )
    assert entry is not None
    assert entry.license_lines == ("License: MIT OR Apache-2.0",)
    assert entry.version == "4.5.6"
    assert entry.title == "Pkg"


@pytest.mark.asyncio
async def test_file_evidence_fingerprints_and_quotes(make_nupkg) -> None:
    """
    包内许可证文件：MIT/Apache 归一化，其它文本逐行引用。
    """
    classifier, _ = _classifier()

    def pkg(text: str) -> ComponentArchive:
        return ComponentArchive(
            make_nupkg(
                "Pkg", "1.0", project_url="https://p.test", license="LICENSE.txt", license_type="file",
                files={"LICENSE.txt": text},
            )
        )

    mit = await classifier.classify(pkg("MIT License\r\n\r\nCopyright (c) Contoso\r\n"))
    assert mit is not None and mit.license_lines == ("License: MIT",)

    apache = await classifier.classify(pkg(APACHE_TEXT))
    assert apache is not None and apache.license_lines == ("License: Apache-2.0",)

    custom = await classifier.classify(pkg("Custom terms\nline two"))
    assert custom is not None
    assert custom.license_lines == ("License:", "> Custom terms", "> line two")


@pytest.mark.asyncio
async def test_url_evidence_shortcuts_do_not_download(make_nupkg) -> None:
    """
    Apache 标准地址与 Microsoft .NET Library 地址直接归类，不下载。
    """
    fetcher = FakeFetcher({})
    classifier, _ = _classifier(fetcher)
    apache = await classifier.classify(
        ComponentArchive(make_nupkg("A", "1.0", project_url="https://a.test", license_url="https://www.apache.org/licenses/LICENSE-2.0"))
    )
    ms = await classifier.classify(
        ComponentArchive(make_nupkg("M", "1.0", project_url="https://m.test", license_url=MICROSOFT_NET_LIBRARY_URL))
    )
    assert apache is not None and apache.license_lines == ("License: Apache-2.0",)
    assert ms is not None and ms.license_lines == (MICROSOFT_NET_LIBRARY_LINE,)
    assert fetcher.requested == []


@pytest.mark.asyncio
async def test_url_evidence_downloads_and_classifies(make_nupkg) -> None:
    """
    其它地址下载后识别；无法识别时输出地址并引用正文，HTML 正文不引用，下载失败只输出地址。
    """
    fetcher = FakeFetcher(
        {
            "https://l.test/mit": "MIT License\nCopyright",
            "https://l.test/custom": "Custom\nterms",
            "https://l.test/html": "<!DOCTYPE html>\n<HTML><body>license</body></HTML>",
        }
    )
    classifier, _ = _classifier(fetcher)

    async def lines(url: str) -> tuple[str, ...]:
        entry = await classifier.classify(
            ComponentArchive(make_nupkg("P", "1.0", project_url="https://p.test", license_url=url))
        )
        assert entry is not None
        return entry.license_lines

    assert await lines("https://l.test/mit") == ("License: MIT",)
    assert await lines("https://l.test/custom") == ("License: https://l.test/custom", "> Custom", "> terms")
    assert await lines("https://l.test/html") == ("License: https://l.test/html",)
    assert await lines("https://l.test/down") == ("License: https://l.test/down",)


@pytest.mark.asyncio
async def test_no_evidence_is_unknown(make_nupkg) -> None:
    """
    没有任何许可证信息时输出 Unknown。
    """
    classifier, _ = _classifier()
    entry = await classifier.classify(ComponentArchive(make_nupkg("P", "1.0", project_url="https://p.test")))
    assert entry is not None
    assert entry.license_lines == ("License: Unknown",)


@pytest.mark.asyncio
async def test_broken_license_file_is_fatal_and_names_package(make_nupkg) -> None:
    """
    许可证文件缺失等意外错误：输出带包名的错误诊断并抛出 LicenseEvidenceError。
    """
    classifier, buf = _classifier()
    archive = ComponentArchive(
        make_nupkg("Broken.Pkg", "1.0", project_url="https://b.test", license="LICENSE.md", license_type="file")
    )
    with pytest.raises(LicenseEvidenceError) as excinfo:
        await classifier.classify(archive)
    assert excinfo.value.package_id == "Broken.Pkg"
    assert "Error loading license metadata for package Broken.Pkg" in buf.getvalue()


def test_decode_license_text_handles_boms_and_legacy_bytes() -> None:
    """
    按字节序标记解码 UTF-8/16/32；其它编码的字节被替换而不是报错。
    """
    text = "MIT License\r\nCopyright © Contoso\r\n"
    for encoding in ("utf-8-sig", "utf-16", "utf-16-be", "utf-32"):
        data = text.encode(encoding)
        if encoding == "utf-16-be":
            data = b"\xfe\xff" + data
        assert decode_license_text(data) == text
    assert decode_license_text(text.encode("utf-8")) == text
    assert decode_license_text("Copyright © Contoso".encode("cp1252")) == "Copyright � Contoso"


@pytest.mark.asyncio
async def test_license_file_in_legacy_encodings_is_classified(make_nupkg) -> None:
    """
    cp1252 或 UTF-16 编码的许可证文件照常分类，不会终止运行。
    """
    classifier, _ = _classifier()

    def pkg(data: bytes) -> ComponentArchive:
        return ComponentArchive(
            make_nupkg(
                "Legacy", "1.0", project_url="https://l.test", license="LICENSE.txt", license_type="file",
                files={"LICENSE.txt": data},
            )
        )

    custom = await classifier.classify(pkg("Custom terms\nCopyright © Contoso\n".encode("cp1252")))
    assert custom is not None
    assert custom.license_lines == ("License:", "> Custom terms", "> Copyright � Contoso")

    mit = await classifier.classify(pkg("MIT License\r\n\r\nCopyright (c) Contoso\r\n".encode("utf-16")))
    assert mit is not None and mit.license_lines == ("License: MIT",)


@pytest.mark.asyncio
async def test_unreadable_nuspec_is_fatal_and_names_source() -> None:
    """
    nuspec 无法读取时输出带来源名的错误诊断并抛出 LicenseEvidenceError。
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("readme.txt", "no metadata")
    classifier, out = _classifier()
    with pytest.raises(LicenseEvidenceError) as excinfo:
        await classifier.classify(ComponentArchive(buf.getvalue(), source="Broken.1.0.0.nupkg"))
    assert excinfo.value.package_id == "Broken.1.0.0.nupkg"
    assert "Error loading license metadata for package Broken.1.0.0.nupkg" in out.getvalue()


@pytest.mark.asyncio
async def test_cached_text_fetcher_uses_cache(tmp_path: Path) -> None:
    """
    命中缓存时不再下载；下载失败（空文本）不写缓存。
    """
    calls: list[str] = []

    async def download(url: str) -> str:
        calls.append(url)
        return "" if url.endswith("bad") else f"text for {url}"

    cache = LicenseTextCache(tmp_path / "cache.sqlite3")
    try:
        fetch = CachedTextFetcher(download, cache=cache, ttl_s=3600)
        assert await fetch("https://l.test/ok") == "text for https://l.test/ok"
        assert await fetch("https://l.test/ok") == "text for https://l.test/ok"
        assert await fetch("https://l.test/bad") == ""
        assert await fetch("https://l.test/bad") == ""
        assert calls == ["https://l.test/ok", "https://l.test/bad", "https://l.test/bad"]
    finally:
        cache.close()
