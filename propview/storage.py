"""
SQLite-backed response cache storage for the offline/asset cache.

Each named cache is a generation of stored responses keyed by absolute URL.
"""
import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

import httpx

from .errors import QuotaExceededError
from .utils import now_iso

logger = logging.getLogger(__name__)


# Schema definitions
DDL_CACHES = """
CREATE TABLE IF NOT EXISTS caches (
  name TEXT PRIMARY KEY,
  created_at TEXT
);
"""

DDL_CACHE_ENTRIES = """
CREATE TABLE IF NOT EXISTS cache_entries (
  cache_name TEXT,
  url TEXT,
  status INTEGER,
  headers_json TEXT,
  body BLOB,
  stored_at TEXT,
  PRIMARY KEY (cache_name, url)
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_cache_entries_cache ON cache_entries(cache_name);"
]

UrlLike = Union[str, httpx.URL, httpx.Request]


def db_connect(path: str) -> sqlite3.Connection:
    """Create database connection with optimized settings."""
    conn = sqlite3.connect(path)
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def db_init(conn: sqlite3.Connection):
    """Initialize database schema with tables and indexes."""
    conn.execute(DDL_CACHES)
    conn.execute(DDL_CACHE_ENTRIES)
    for ddl in DDL_INDEXES:
        conn.execute(ddl)
    conn.commit()


def normalize_url(url: UrlLike) -> str:
    if isinstance(url, httpx.Request):
        url = url.url
    return str(httpx.URL(str(url)).copy_with(fragment=None))


@dataclass(frozen=True)
class StoredResponse:
    """Snapshot of a response: status, headers and the raw body bytes.

    Every read builds a fresh ``httpx.Response`` so a cached body can be
    handed out any number of times.
    """

    status_code: int
    headers: Tuple[Tuple[str, str], ...]
    body: bytes

    def to_response(self) -> httpx.Response:
        return httpx.Response(self.status_code, headers=list(self.headers), content=self.body)


class ResponseCache:
    """One named cache inside a :class:`CacheStorage`."""

    def __init__(self, storage: "CacheStorage", name: str):
        self.storage = storage
        self.name = name

    async def match(self, url: UrlLike) -> Optional[httpx.Response]:
        stored = self.storage._get(self.name, normalize_url(url))
        return None if stored is None else stored.to_response()

    async def put(self, url: UrlLike, stored: StoredResponse) -> None:
        self.storage._put_all(self.name, [(normalize_url(url), stored)])

    async def put_all(self, entries: Iterable[Tuple[UrlLike, StoredResponse]]) -> None:
        """Store every entry or none of them."""
        self.storage._put_all(self.name, [(normalize_url(u), s) for u, s in entries])

    async def delete(self, url: UrlLike) -> bool:
        return self.storage._delete_entry(self.name, normalize_url(url))

    async def keys(self) -> List[str]:
        return self.storage._entry_urls(self.name)


class CacheStorage:
    """Named response caches persisted in SQLite.

    ``quota_bytes`` caps the total size of stored bodies across all caches;
    a write that would exceed it raises :class:`QuotaExceededError` and
    leaves the storage unchanged.
    """

    def __init__(self, path: str = ":memory:", quota_bytes: Optional[int] = None):
        self.path = path
        self.quota_bytes = quota_bytes
        self._conn = db_connect(path)
        db_init(self._conn)

    async def open(self, name: str) -> ResponseCache:
        self._conn.execute(
            "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)", (name, now_iso())
        )
        self._conn.commit()
        return ResponseCache(self, name)

    async def has(self, name: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM caches WHERE name = ?", (name,)).fetchone()
        return row is not None

    async def keys(self) -> List[str]:
        rows = self._conn.execute("SELECT name FROM caches ORDER BY created_at, name").fetchall()
        return [r[0] for r in rows]

    async def delete(self, name: str) -> bool:
        with self._conn:
            self._conn.execute("DELETE FROM cache_entries WHERE cache_name = ?", (name,))
            cur = self._conn.execute("DELETE FROM caches WHERE name = ?", (name,))
        return cur.rowcount > 0

    def usage(self) -> int:
        row = self._conn.execute("SELECT COALESCE(SUM(length(body)), 0) FROM cache_entries").fetchone()
        return int(row[0])

    def close(self) -> None:
        self._conn.close()

    # Synchronous primitives used by ResponseCache

    def _get(self, name: str, url: str) -> Optional[StoredResponse]:
        row = self._conn.execute(
            "SELECT status, headers_json, body FROM cache_entries WHERE cache_name = ? AND url = ?",
            (name, url),
        ).fetchone()
        if row is None:
            return None
        headers = tuple((k, v) for k, v in json.loads(row[1]))
        return StoredResponse(status_code=row[0], headers=headers, body=bytes(row[2]))

    def _put_all(self, name: str, entries: List[Tuple[str, StoredResponse]]) -> None:
        if self.quota_bytes is not None:
            replaced = 0
            for url, _ in entries:
                row = self._conn.execute(
                    "SELECT length(body) FROM cache_entries WHERE cache_name = ? AND url = ?",
                    (name, url),
                ).fetchone()
                if row is not None and row[0] is not None:
                    replaced += row[0]
            incoming = sum(len(s.body) for _, s in entries)
            needed = self.usage() - replaced + incoming
            if needed > self.quota_bytes:
                raise QuotaExceededError(
                    f"Cache quota exceeded: {needed} bytes needed, {self.quota_bytes} allowed"
                )

        stored_at = now_iso()
        with self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)", (name, stored_at)
            )
            for url, stored in entries:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries
                      (cache_name, url, status, headers_json, body, stored_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (name, url, stored.status_code, json.dumps(list(stored.headers)),
                     sqlite3.Binary(stored.body), stored_at),
                )

    def _delete_entry(self, name: str, url: str) -> bool:
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE cache_name = ? AND url = ?", (name, url)
            )
        return cur.rowcount > 0

    def _entry_urls(self, name: str) -> List[str]:
        rows = self._conn.execute(
            "SELECT url FROM cache_entries WHERE cache_name = ? ORDER BY url", (name,)
        ).fetchall()
        return [r[0] for r in rows]
