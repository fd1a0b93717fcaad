"""Database migration and initialization utilities."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from .sqlite_manager import get_db_path, _connect

LOGGER = logging.getLogger(__name__)


CREATE_TABLE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS kv_store (
        area TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT,
        revision INTEGER NOT NULL,
        writer TEXT,
        updated_at INTEGER,
        PRIMARY KEY (area, key)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_kv_store_revision ON kv_store (revision)
    """,
)


def initialize_database(db_path: str | None = None) -> None:
    """Create the key-value tables if they do not exist yet."""
    path = Path(db_path or get_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(str(path))
    try:
        with conn:
            for statement in CREATE_TABLE_STATEMENTS:
                conn.execute(statement)
    finally:
        conn.close()
    LOGGER.info("Database initialized at %s", path)


def _parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SQLite migration helper")
    parser.add_argument("--init", action="store_true", help="initialize database tables")
    parser.add_argument("--db-path", help="override database path", default=None)
    return parser.parse_args(args)


def main(argv: Iterable[str] | None = None) -> None:
    args = _parse_args(argv)
    if args.init:
        initialize_database(args.db_path)
    else:
        LOGGER.info("No action specified. Use --init to create tables.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    main()
