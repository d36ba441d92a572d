from __future__ import annotations

import io
import zipfile
from pathlib import Path
from xml.sax.saxutils import escape

import pytest

NUSPEC_NS = "http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd"


def build_nupkg(
    package_id: str,
    version: str,
    *,
    title: str | None = None,
    project_url: str | None = None,
    license: str | None = None,
    license_type: str = "expression",
    license_url: str | None = None,
    dependencies: list[tuple[str, str]] | None = None,
    groups: dict[str, list[tuple[str, str]]] | None = None,
    files: dict[str, str | bytes] | None = None,
) -> bytes:
    """
    在内存中构造一个最小的 .nupkg（zip + 根目录下的 .nuspec）。
    """
    meta = [f"<id>{escape(package_id)}</id>", f"<version>{escape(version)}</version>"]
    if title is not None:
        meta.append(f"<title>{escape(title)}</title>")
    if project_url is not None:
        meta.append(f"<projectUrl>{escape(project_url)}</projectUrl>")
    if license is not None:
        meta.append(f'<license type="{license_type}">{escape(license)}</license>')
    if license_url is not None:
        meta.append(f"<licenseUrl>{escape(license_url)}</licenseUrl>")

    def dep_xml(items: list[tuple[str, str]]) -> str:
        return "".join(f'<dependency id="{escape(i)}" version="{escape(v)}" />' for i, v in items)

    if groups is not None:
        body = "".join(f'<group targetFramework="{tf}">{dep_xml(items)}</group>' for tf, items in groups.items())
        meta.append(f"<dependencies>{body}</dependencies>")
    elif dependencies is not None:
        meta.append(f"<dependencies>{dep_xml(dependencies)}</dependencies>")

    nuspec = f'<?xml version="1.0" encoding="utf-8"?><package xmlns="{NUSPEC_NS}"><metadata>{"".join(meta)}</metadata></package>'

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"{package_id}.nuspec", nuspec)
        for name, text in (files or {}).items():
            zf.writestr(name, text)
    return buf.getvalue()


@pytest.fixture
def make_nupkg():
    """
    返回 .nupkg 构造函数。
    """
    return build_nupkg


@pytest.fixture
def packages_dir(tmp_path: Path) -> Path:
    """
    隔离的全局包目录（避免读写用户的 ~/.nuget/packages）。
    """
    root = tmp_path / "packages"
    root.mkdir()
    return root


@pytest.fixture(autouse=True)
def _isolated_nuget_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    让每个测试使用临时 HOME 与缓存目录，不读取真实的 NuGet.Config。
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("APPDATA", str(home / "AppData"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(home / ".cache"))
    monkeypatch.delenv("NUGET_PACKAGES", raising=False)
    for key in (
        "NUGET_NOTICE_SOURCES",
        "NUGET_NOTICE_BEARER_TOKEN",
        "NUGET_NOTICE_BASIC_USERNAME",
        "NUGET_NOTICE_BASIC_PASSWORD",
    ):
        monkeypatch.delenv(key, raising=False)
