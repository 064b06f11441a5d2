"""Idempotent write-through cache of enriched records, keyed by name."""

from __future__ import annotations

import json
import re
import sqlite3
from pathlib import Path

from ..models import ProductRecord
from .schema import ensure_schema

_WHITESPACE = re.compile(r"\s+")


def cache_key_for(name: str) -> str:
    """``"Blue Dream"`` → ``"strain_blue_dream"``."""
    return "strain_" + _WHITESPACE.sub("_", name.strip().lower())


class ProductCacheDB:
    """Upserts keyed by a normalized name so concurrent writers converge."""

    def __init__(self, db_path: str | Path = "~/.config/doobiedb/scanner.db") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def put(self, record: ProductRecord) -> str:
        """Insert or replace the cache entry for the record's name.

        Returns:
            The cache key written.
        """
        key = cache_key_for(record.name)
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO product_cache (cache_key, record_json)
               VALUES (?, ?)
               ON CONFLICT(cache_key) DO UPDATE SET
                 record_json=excluded.record_json,
                 updated_at=datetime('now', 'localtime')""",
            (key, json.dumps(record.to_dict(), ensure_ascii=False)),
        )
        conn.commit()
        return key

    def get(self, name: str) -> ProductRecord | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT record_json FROM product_cache WHERE cache_key = ?",
            (cache_key_for(name),),
        ).fetchone()
        return ProductRecord.from_dict(json.loads(row["record_json"])) if row else None

    def get_all(self) -> list[dict]:
        """Return all cache rows."""
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM product_cache").fetchall()
        return [dict(r) for r in rows]
