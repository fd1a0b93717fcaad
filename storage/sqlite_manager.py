"""SQLite key-value persistence backing the storage areas."""
from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

_DB_PATH_ENV = "REDIRECT_DB_PATH"
_DEFAULT_DB_FILENAME = "redirects.db"

_connection_lock = Lock()


def get_db_path() -> str:
    """Return the configured SQLite database path."""
    env_path = os.environ.get(_DB_PATH_ENV)
    if env_path:
        return env_path
    storage_dir = Path(__file__).resolve().parent
    return str(storage_dir / _DEFAULT_DB_FILENAME)


def _connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = Path(db_path or get_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False, timeout=10.0)
    conn.row_factory = sqlite3.Row
    return conn


def _query(
    query: str,
    params: Iterable[Any] | Dict[str, Any] | None = None,
    db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
    with _connection_lock:
        conn = _connect(db_path)
        try:
            rows = conn.execute(query, params or []).fetchall()
        finally:
            conn.close()
    return [dict(row) for row in rows]


def get_values(area: str, keys: Iterable[str], db_path: Optional[str] = None) -> Dict[str, str]:
    """Return the raw stored text for each present key of ``area``."""

    keys = list(keys)
    if not keys:
        return {}
    placeholders = ",".join(["?" for _ in keys])
    rows = _query(
        f"SELECT key, value FROM kv_store WHERE area = ? AND key IN ({placeholders})",
        [area, *keys],
        db_path,
    )
    return {row["key"]: row["value"] for row in rows}


def set_values(
    area: str,
    payload: Dict[str, str],
    writer: str,
    updated_at: int,
    db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Upsert every key of ``payload`` in one transaction.

    Each key gets the next global revision. Returns one row per key with the
    previous value (``None`` when absent) so callers can build change events.
    """

    written: List[Dict[str, Any]] = []
    with _connection_lock:
        conn = _connect(db_path)
        try:
            with conn:
                for key, value in payload.items():
                    previous = conn.execute(
                        "SELECT value FROM kv_store WHERE area = ? AND key = ?",
                        (area, key),
                    ).fetchone()
                    revision = conn.execute(
                        "SELECT COALESCE(MAX(revision), 0) + 1 FROM kv_store"
                    ).fetchone()[0]
                    conn.execute(
                        "INSERT INTO kv_store (area, key, value, revision, writer, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?) "
                        "ON CONFLICT(area, key) DO UPDATE SET value=excluded.value, "
                        "revision=excluded.revision, writer=excluded.writer, "
                        "updated_at=excluded.updated_at",
                        (area, key, value, revision, writer, updated_at),
                    )
                    written.append(
                        {
                            "area": area,
                            "key": key,
                            "old_value": previous["value"] if previous else None,
                            "value": value,
                            "revision": revision,
                        }
                    )
        finally:
            conn.close()
    return written


def fetch_changes_since(
    revision: int,
    exclude_writer: Optional[str] = None,
    limit: int = 200,
    db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Rows written after ``revision`` ordered ascending by revision."""

    query = "SELECT area, key, value, revision, writer, updated_at FROM kv_store WHERE revision > ?"
    params: List[Any] = [revision]
    if exclude_writer is not None:
        query += " AND writer != ?"
        params.append(exclude_writer)
    query += " ORDER BY revision ASC LIMIT ?"
    params.append(limit)
    return _query(query, params, db_path)


def latest_revision(db_path: Optional[str] = None) -> int:
    rows = _query("SELECT COALESCE(MAX(revision), 0) AS revision FROM kv_store", db_path=db_path)
    return int(rows[0]["revision"]) if rows else 0


def list_entries(area: Optional[str] = None, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    query = "SELECT area, key, value, revision, writer, updated_at FROM kv_store"
    params: List[Any] = []
    if area is not None:
        query += " WHERE area = ?"
        params.append(area)
    query += " ORDER BY area, key"
    return _query(query, params, db_path)


__all__ = [
    "get_db_path",
    "get_values",
    "set_values",
    "fetch_changes_since",
    "latest_revision",
    "list_entries",
]
