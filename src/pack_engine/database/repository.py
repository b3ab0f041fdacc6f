"""Bundle repository adapters.

The record store that owns bundle submission and approval lives outside
this package. The pricing core only needs a read-only view of it:
``BundleRepository.list_bundles()``. Raw rows are validated into
``BundleRecord`` once, here, and malformed rows are dropped.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from src.common.config import Settings
from src.common.models import BundleRecord
from .connection import get_connection, init_db

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """The bundle store could not be read or written."""


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    """Map alternate field names used by bundle exports onto BundleRecord fields."""
    data = dict(row)
    if "observed_at" not in data and "created_at" in data:
        data["observed_at"] = data.pop("created_at")
    items = data.get("items")
    if isinstance(items, list):
        data["items"] = [
            {
                "item_type_id": item.get("item_type_id", item.get("itemTypeId")),
                "quantity": item.get("quantity"),
            }
            if isinstance(item, dict)
            else item
            for item in items
        ]
    return data


def load_bundles(rows: Iterable[dict[str, Any] | BundleRecord]) -> list[BundleRecord]:
    """Validate raw rows into BundleRecords, excluding malformed ones.

    A row is malformed when its price is missing or non-positive, its item
    list is empty, or any line lacks an item type or a positive quantity.
    Exclusions are a data-quality signal, not an error.
    """
    bundles: list[BundleRecord] = []
    excluded = 0
    for row in rows:
        if isinstance(row, BundleRecord):
            bundles.append(row)
            continue
        try:
            bundles.append(BundleRecord.model_validate(_normalize_row(row)))
        except ValidationError as exc:
            excluded += 1
            logger.debug("Excluded malformed bundle %s: %s", row.get("id", "?"), exc)
    if excluded:
        logger.info("Excluded %d malformed bundle rows (%d kept)", excluded, len(bundles))
    return bundles


class BundleRepository(ABC):
    """Read-only source of historical bundles."""

    @abstractmethod
    def list_bundles(self) -> list[BundleRecord]:
        """Return every bundle currently in the store.

        Raises:
            RepositoryError: If the store is unavailable.
        """
        ...


class InMemoryBundleRepository(BundleRepository):
    """Repository over an in-process list, used for tests and embedding."""

    def __init__(self, rows: Iterable[dict[str, Any] | BundleRecord] = ()) -> None:
        self._bundles = load_bundles(rows)

    def add(self, bundle: BundleRecord) -> None:
        self._bundles.append(bundle)

    def list_bundles(self) -> list[BundleRecord]:
        return list(self._bundles)


class SQLiteBundleRepository(BundleRepository):
    """Repository backed by the ``bundles`` / ``bundle_items`` tables.

    Usage:
        repo = SQLiteBundleRepository(settings)
        repo.add_bundle(bundle)
        bundles = repo.list_bundles()
    """

    def __init__(self, db: Settings | str | Path | None = None) -> None:
        self._db = db
        try:
            init_db(db)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Cannot initialize bundle store: {exc}") from exc

    def add_bundle(self, bundle: BundleRecord) -> None:
        """Insert or replace a bundle and its item lines."""
        try:
            conn = get_connection(self._db)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Cannot open bundle store: {exc}") from exc
        try:
            conn.execute("DELETE FROM bundle_items WHERE bundle_id = ?", (bundle.id,))
            conn.execute(
                "INSERT OR REPLACE INTO bundles (id, price, observed_at) VALUES (?, ?, ?)",
                (bundle.id, bundle.price, bundle.observed_at.isoformat()),
            )
            conn.executemany(
                """INSERT INTO bundle_items (bundle_id, position, item_type_id, quantity)
                   VALUES (?, ?, ?, ?)""",
                [
                    (bundle.id, position, line.item_type_id, line.quantity)
                    for position, line in enumerate(bundle.items)
                ],
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to store bundle {bundle.id}: {exc}") from exc
        finally:
            conn.close()

    def list_bundles(self) -> list[BundleRecord]:
        try:
            conn = get_connection(self._db)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Cannot open bundle store: {exc}") from exc
        try:
            bundle_rows = conn.execute(
                "SELECT id, price, observed_at FROM bundles ORDER BY observed_at, id"
            ).fetchall()
            item_rows = conn.execute(
                """SELECT bundle_id, item_type_id, quantity
                   FROM bundle_items ORDER BY bundle_id, position"""
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to list bundles: {exc}") from exc
        finally:
            conn.close()

        items_by_bundle: dict[str, list[dict]] = {}
        for row in item_rows:
            items_by_bundle.setdefault(row["bundle_id"], []).append(
                {"item_type_id": row["item_type_id"], "quantity": row["quantity"]}
            )

        rows = [
            {
                "id": row["id"],
                "price": row["price"],
                "observed_at": row["observed_at"],
                "items": items_by_bundle.get(row["id"], []),
            }
            for row in bundle_rows
        ]
        bundles = load_bundles(rows)
        logger.debug("Loaded %d bundles from %s", len(bundles), self._db or "default db")
        return bundles
