from __future__ import annotations

import os
import sqlite3
import sys
import time
from dataclasses import dataclass
from pathlib import Path


_SCHEMA_VERSION = 1


def default_cache_path() -> Path:
    """
    返回默认缓存数据库路径（用户目录下全局共用）。
    """
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        if base:
            return Path(base) / "nuget-notice" / "cache.sqlite3"
        home = Path.home()
        return home / "AppData" / "Local" / "nuget-notice" / "cache.sqlite3"

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "nuget-notice" / "cache.sqlite3"

    xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        return Path(xdg_cache_home) / "nuget-notice" / "cache.sqlite3"

    return Path.home() / ".cache" / "nuget-notice" / "cache.sqlite3"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    单个许可证地址在缓存中的记录。
    """

    text: str
    fetched_at: int


class LicenseTextCache:
    """
    远程许可证文本的 SQLite 缓存（全局共用）。只缓存成功下载的非空文本。
    """

    def __init__(self, path: Path) -> None:
        """
        初始化缓存数据库连接（必要时创建表结构）。
        """
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def close(self) -> None:
        """
        关闭数据库连接。
        """
        self._conn.close()

    def _ensure_schema(self) -> None:
        """
        创建或升级缓存数据库表结构。
        """
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS license_text (
                url TEXT PRIMARY KEY,
                text TEXT NOT NULL,
                fetched_at INTEGER NOT NULL
            )
            """
        )
        cur.execute("SELECT value FROM meta WHERE key = 'schema_version'")
        row = cur.fetchone()
        if row is None:
            cur.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?)", (str(_SCHEMA_VERSION),))
            self._conn.commit()
            return

        if int(row["value"]) != _SCHEMA_VERSION:
            cur.execute("DELETE FROM license_text")
            cur.execute("UPDATE meta SET value = ? WHERE key = 'schema_version'", (str(_SCHEMA_VERSION),))
            self._conn.commit()

    def get(self, *, url: str, ttl_s: int) -> CacheEntry | None:
        """
        获取缓存记录；若过期或不存在则返回 None。
        """
        cur = self._conn.cursor()
        cur.execute("SELECT text, fetched_at FROM license_text WHERE url = ?", (url,))
        row = cur.fetchone()
        if row is None:
            return None

        fetched_at = int(row["fetched_at"])
        if ttl_s > 0 and (time.time() - fetched_at) > ttl_s:
            return None
        return CacheEntry(text=row["text"], fetched_at=fetched_at)

    def set(self, *, url: str, text: str) -> None:
        """
        写入缓存记录。
        """
        cur = self._conn.cursor()
        cur.execute(
            """
            INSERT INTO license_text(url, text, fetched_at)
            VALUES(?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                text = excluded.text,
                fetched_at = excluded.fetched_at
            """,
            (url, text, int(time.time())),
        )
        self._conn.commit()
