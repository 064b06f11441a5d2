"""Durable, operator-scoped product records."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from pathlib import Path

from ..models import ProductRecord
from .schema import ensure_schema


def _row_to_record(row: sqlite3.Row) -> ProductRecord:
    data = dict(row)
    data.pop("created_at", None)
    data["effect_profiles"] = json.loads(data.pop("effects"))
    data["flavor_profiles"] = json.loads(data.pop("flavors"))
    data["terpenes"] = json.loads(data["terpenes"])
    data["medical_uses"] = json.loads(data["medical_uses"])
    return ProductRecord.from_dict(data)


class CatalogDB:
    """Manages the product_records table."""

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

    def insert_record(self, record: ProductRecord, operator_id: str) -> str:
        """Insert a finished record for an operator.

        Returns:
            The record id.
        """
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO product_records
               (id, operator_id, name, category, thc, thc_min, thc_max, cbd,
                confidence, effects, flavors, terpenes, medical_uses,
                description, source, scanned_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.id,
                operator_id,
                record.name,
                record.category,
                record.thc,
                record.thc_min,
                record.thc_max,
                record.cbd,
                record.confidence,
                json.dumps([asdict(p) for p in record.effect_profiles], ensure_ascii=False),
                json.dumps([asdict(p) for p in record.flavor_profiles], ensure_ascii=False),
                json.dumps([asdict(t) for t in record.terpenes], ensure_ascii=False),
                json.dumps(record.medical_uses, ensure_ascii=False),
                record.description,
                record.source,
                record.scanned_at,
            ),
        )
        conn.commit()
        return record.id

    def list_records(self, operator_id: str) -> list[ProductRecord]:
        """Return an operator's records, oldest first."""
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT * FROM product_records
               WHERE operator_id = ?
               ORDER BY scanned_at, rowid""",
            (operator_id,),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def find_by_name(self, operator_id: str, name: str) -> ProductRecord | None:
        """Return the first record whose name contains ``name`` (case-insensitive)."""
        if not name.strip():
            return None
        conn = self._get_conn()
        row = conn.execute(
            """SELECT * FROM product_records
               WHERE operator_id = ?
                 AND instr(lower(name), lower(?)) > 0
               ORDER BY scanned_at, rowid
               LIMIT 1""",
            (operator_id, name.strip()),
        ).fetchone()
        return _row_to_record(row) if row else None

    def delete_records(self, record_ids: list[str]) -> int:
        """Delete records by id.

        Returns:
            Number of rows deleted.
        """
        if not record_ids:
            return 0
        conn = self._get_conn()
        placeholders = ", ".join("?" for _ in record_ids)
        cur = conn.execute(
            f"DELETE FROM product_records WHERE id IN ({placeholders})",
            list(record_ids),
        )
        conn.commit()
        return cur.rowcount
