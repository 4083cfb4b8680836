"""SQLite-backed cache for ESIID address searches."""

import json
import logging
import re
import sqlite3
import time
from pathlib import Path
from typing import List, Optional

from .models import ESIIDResult

logger = logging.getLogger(__name__)

_ABBREVIATIONS = [
    ("street", "st"), ("avenue", "ave"), ("boulevard", "blvd"),
    ("drive", "dr"), ("road", "rd"), ("lane", "ln"), ("court", "ct"),
    ("parkway", "pkwy"), ("highway", "hwy"), ("apartment", "apt"),
    ("suite", "ste"), ("north", "n"), ("south", "s"), ("east", "e"), ("west", "w"),
]


def search_key(address: str, zip_code: str) -> str:
    """'123 Main Street ', '75201' -> '123 main st|75201'."""
    if not address:
        return ""
    key = address.lower().strip()
    key = re.sub(r"[.,#]", " ", key)
    key = re.sub(r"\s+", " ", key).strip()
    for full, abbr in _ABBREVIATIONS:
        key = re.sub(rf"\b{full}\b", abbr, key)
    return f"{key}|{(zip_code or '').strip()}"


class ESIIDCache:
    """TTL cache of ESIID search results keyed by normalized address + ZIP."""

    def __init__(self, db_path: Path, ttl_hours: float = 1):
        self.db_path = Path(db_path)
        self.ttl_hours = ttl_hours
        self.hits = 0
        self.misses = 0
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS esiid_cache (
                search_key TEXT PRIMARY KEY,
                results_json TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_esiid_expires ON esiid_cache(expires_at)
        """)
        self._conn.commit()

    def get(self, address: str, zip_code: str) -> Optional[List[ESIIDResult]]:
        """Cached results for an address, or None if not cached / expired."""
        key = search_key(address, zip_code)
        if not key:
            return None
        row = self._conn.execute(
            "SELECT results_json FROM esiid_cache WHERE search_key = ? AND expires_at > ?",
            (key, time.time()),
        ).fetchone()
        if not row:
            self.misses += 1
            return None
        try:
            results = [ESIIDResult(**d) for d in json.loads(row[0])]
        except (json.JSONDecodeError, TypeError):
            self.misses += 1
            return None
        self.hits += 1
        logger.debug(f"ESIID cache hit: {key}")
        return results

    def put(self, address: str, zip_code: str, results: List[ESIIDResult]):
        key = search_key(address, zip_code)
        if not key:
            return
        now = time.time()
        expires = now + self.ttl_hours * 3600
        self._conn.execute(
            "INSERT OR REPLACE INTO esiid_cache (search_key, results_json, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (key, json.dumps([r.to_dict() for r in results]), now, expires),
        )
        self._conn.commit()

    def invalidate(self, address: str, zip_code: str):
        key = search_key(address, zip_code)
        self._conn.execute("DELETE FROM esiid_cache WHERE search_key = ?", (key,))
        self._conn.commit()

    def clear(self):
        self._conn.execute("DELETE FROM esiid_cache")
        self._conn.commit()
        self.hits = 0
        self.misses = 0

    def clear_expired(self):
        deleted = self._conn.execute(
            "DELETE FROM esiid_cache WHERE expires_at <= ?", (time.time(),)
        ).rowcount
        self._conn.commit()
        if deleted:
            logger.info(f"ESIID cache: cleared {deleted} expired entries")

    @property
    def size(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM esiid_cache").fetchone()
        return row[0] if row else 0

    def stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 3) if lookups else 0.0,
        }

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None
