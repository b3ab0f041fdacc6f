"""SQLite database connection and schema management."""

from __future__ import annotations

import sqlite3
import logging
from pathlib import Path

from src.common.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS bundles (
    id TEXT PRIMARY KEY,
    price REAL NOT NULL,
    observed_at TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_bundles_observed
    ON bundles(observed_at);

CREATE TABLE IF NOT EXISTS bundle_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    bundle_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    item_type_id TEXT NOT NULL,
    quantity REAL NOT NULL,
    FOREIGN KEY (bundle_id) REFERENCES bundles(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_bundle_items_bundle
    ON bundle_items(bundle_id, position);

CREATE TABLE IF NOT EXISTS price_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_date TEXT NOT NULL,
    item_type_id TEXT NOT NULL,
    price REAL NOT NULL,
    confidence REAL NOT NULL,
    bundle_count INTEGER NOT NULL,
    total_quantity REAL NOT NULL,
    price_change_24h REAL,
    trend TEXT NOT NULL DEFAULT 'stable',
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_snapshots_date_item
    ON price_snapshots(snapshot_date, item_type_id);
"""


def _resolve_path(db: Settings | str | Path | None) -> Path:
    if db is None:
        return default_settings.database_abs_path
    if isinstance(db, Settings):
        return db.database_abs_path
    return Path(db)


def get_connection(db: Settings | str | Path | None = None) -> sqlite3.Connection:
    """Get a SQLite connection with row factory enabled.

    Args:
        db: Settings object or explicit database path. Uses the
            global settings if not provided.

    Returns:
        sqlite3.Connection with Row factory.
    """
    db_path = _resolve_path(db)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(db: Settings | str | Path | None = None) -> None:
    """Initialize database schema (idempotent)."""
    conn = get_connection(db)
    try:
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
        logger.info("Database schema initialized at %s", _resolve_path(db))
    finally:
        conn.close()
