from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib

from nuget_notice.index_client import IndexAuth


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    nuget-notice 的运行配置（可来自配置文件、环境变量与 CLI 参数合并）。
    """

    sources: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    recursive: bool = False
    offline: bool = False
    always_report: bool = False
    max_concurrency: int = 8
    timeout_s: float = 30.0
    retries: int = 2
    use_license_cache: bool = True
    license_cache_ttl_s: int = 7 * 24 * 60 * 60
    packages_folder: str | None = None
    auth: IndexAuth | None = None


def _find_default_config_file(cwd: Path) -> Path | None:
    """
    在当前目录查找默认配置文件路径。
    """
    candidates = [
        ".nuget-notice.toml",
        ".nuget-notice.yaml",
        ".nuget-notice.yml",
        "nuget-notice.toml",
        "nuget-notice.yaml",
        "nuget-notice.yml",
    ]
    for name in candidates:
        p = cwd / name
        if p.exists() and p.is_file():
            return p
    return None


def _load_yaml(path: Path) -> dict[str, Any]:
    """
    读取 YAML 配置文件（需要 PyYAML）。
    """
    import yaml

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _load_config_file(path: Path) -> dict[str, Any]:
    """
    读取 .toml 或 .yaml 配置文件，返回配置字典。
    """
    suffix = path.suffix.lower()
    if suffix == ".toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}
    if suffix in {".yaml", ".yml"}:
        return _load_yaml(path)
    return {}


def _env_list(key: str) -> list[str]:
    """
    从环境变量读取列表（逗号分隔）。
    """
    value = os.environ.get(key)
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value or []]


def load_config(config_path: str | None) -> AppConfig:
    """
    从配置文件与环境变量加载 AppConfig。
    """
    config_data: dict[str, Any] = {}
    if config_path:
        config_data = _load_config_file(Path(config_path))
    else:
        default = _find_default_config_file(Path.cwd())
        if default:
            config_data = _load_config_file(default)

    tool_cfg = config_data.get("nuget_notice") if isinstance(config_data, dict) else {}
    if not isinstance(tool_cfg, dict):
        tool_cfg = {}

    sources = tuple(_env_list("NUGET_NOTICE_SOURCES") or _as_list(tool_cfg.get("sources")))

    bearer = os.environ.get("NUGET_NOTICE_BEARER_TOKEN") or str(tool_cfg.get("bearer_token") or "") or None
    basic_user = os.environ.get("NUGET_NOTICE_BASIC_USERNAME") or str(tool_cfg.get("basic_username") or "") or None
    basic_pass = os.environ.get("NUGET_NOTICE_BASIC_PASSWORD") or str(tool_cfg.get("basic_password") or "") or None
    auth = None
    if bearer or (basic_user is not None and basic_pass is not None):
        auth = IndexAuth(bearer_token=bearer, basic_username=basic_user, basic_password=basic_pass)

    use_license_cache = bool(tool_cfg.get("use_license_cache") if "use_license_cache" in tool_cfg else True)
    license_cache_ttl_s = tool_cfg.get("license_cache_ttl_s")

    return AppConfig(
        sources=sources,
        exclude=tuple(_as_list(tool_cfg.get("exclude"))),
        recursive=bool(tool_cfg.get("recursive") or False),
        offline=bool(tool_cfg.get("offline") or False),
        always_report=bool(tool_cfg.get("always_report") or False),
        max_concurrency=int(tool_cfg.get("max_concurrency") or 8),
        timeout_s=float(tool_cfg.get("timeout_s") or 30.0),
        retries=int(tool_cfg.get("retries") if tool_cfg.get("retries") is not None else 2),
        use_license_cache=use_license_cache,
        license_cache_ttl_s=int(license_cache_ttl_s) if license_cache_ttl_s is not None else 7 * 24 * 60 * 60,
        packages_folder=str(tool_cfg.get("packages_folder") or "") or None,
        auth=auth,
    )
