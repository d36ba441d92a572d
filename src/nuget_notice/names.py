from __future__ import annotations

import os


def normalize_package_id(package_id: str) -> str:
    """
    将 NuGet 包 id 规范化（大小写不敏感，用于去重键与缓存路径）。
    """
    return package_id.strip().lower()


def normalize_project_path(path: str | os.PathLike[str]) -> str:
    """
    将项目文件路径规范化为绝对路径键（同一物理文件只对应一个键）。
    """
    return os.path.normcase(os.path.normpath(os.path.abspath(os.fspath(path))))
