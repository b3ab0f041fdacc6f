"""Daily market snapshots of inferred item prices.

One snapshot per calendar day, stored in the ``price_snapshots`` table.
Each item row records the day-over-day change against the previous
day's snapshot:

- up: more than +2%
- down: more than -2%
- stable: otherwise, or when no previous price exists
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta
from pathlib import Path

from src.common.config import Settings
from src.common.models import ItemSnapshot, MarketSnapshot, PriceTrend, PricingModel
from ..database.connection import get_connection, init_db
from ..database.repository import RepositoryError

logger = logging.getLogger(__name__)

TREND_THRESHOLD_PERCENT = 2.0


def classify_change(change_percent: float | None) -> PriceTrend:
    """Map a 24h percent change to a trend direction."""
    if change_percent is None:
        return PriceTrend.STABLE
    if change_percent > TREND_THRESHOLD_PERCENT:
        return PriceTrend.UP
    if change_percent < -TREND_THRESHOLD_PERCENT:
        return PriceTrend.DOWN
    return PriceTrend.STABLE


class MarketSnapshotter:
    """Persist and query daily item price snapshots.

    Usage:
        snapshotter = MarketSnapshotter(settings)
        snapshot = snapshotter.create_daily_snapshot(model)
        history = snapshotter.get_item_history("energy_pot", days=30)
    """

    def __init__(self, db: Settings | str | Path | None = None) -> None:
        self._db = db
        init_db(db)

    def create_daily_snapshot(
        self,
        model: PricingModel,
        today: date | None = None,
    ) -> MarketSnapshot | None:
        """Store today's prices; returns the existing snapshot if one was already taken.

        Returns None when the model has no priced items.
        """
        today = today or date.today()
        existing = self.get_snapshot(today)
        if existing is not None:
            logger.info("Daily snapshot already exists for %s", today.isoformat())
            return existing

        if model.is_empty:
            logger.warning("No priced items available for daily snapshot")
            return None

        previous = self._prices_for(today - timedelta(days=1))
        created_at = datetime.now()
        items: list[ItemSnapshot] = []
        for item_type_id, estimate in sorted(model.estimates.items()):
            change: float | None = None
            yesterday_price = previous.get(item_type_id)
            if yesterday_price:
                change = (estimate.price_per_unit - yesterday_price) / yesterday_price * 100
            items.append(
                ItemSnapshot(
                    item_type_id=item_type_id,
                    price=estimate.price_per_unit,
                    confidence=estimate.confidence,
                    bundle_count=estimate.supporting_bundle_count,
                    total_quantity=estimate.total_quantity,
                    price_change_24h=change,
                    trend=classify_change(change),
                )
            )

        conn = get_connection(self._db)
        try:
            conn.executemany(
                """INSERT INTO price_snapshots
                   (snapshot_date, item_type_id, price, confidence, bundle_count,
                    total_quantity, price_change_24h, trend, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        today.isoformat(),
                        item.item_type_id,
                        item.price,
                        item.confidence,
                        item.bundle_count,
                        item.total_quantity,
                        item.price_change_24h,
                        item.trend.value,
                        created_at.isoformat(),
                    )
                    for item in items
                ],
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to store snapshot for {today}: {exc}") from exc
        finally:
            conn.close()

        logger.info("Daily snapshot for %s saved with %d items", today.isoformat(), len(items))
        return MarketSnapshot(snapshot_date=today, created_at=created_at, items=items)

    def get_snapshot(self, day: date) -> MarketSnapshot | None:
        """Load the snapshot of one day, or None."""
        conn = get_connection(self._db)
        try:
            rows = conn.execute(
                "SELECT * FROM price_snapshots WHERE snapshot_date = ? ORDER BY item_type_id",
                (day.isoformat(),),
            ).fetchall()
        finally:
            conn.close()

        if not rows:
            return None
        return MarketSnapshot(
            snapshot_date=day,
            created_at=datetime.fromisoformat(rows[0]["created_at"]),
            items=[self._row_to_item(row) for row in rows],
        )

    def get_item_history(
        self,
        item_type_id: str,
        days: int = 30,
        today: date | None = None,
    ) -> list[tuple[date, ItemSnapshot]]:
        """Snapshots of one item type within the last ``days`` days, newest first."""
        today = today or date.today()
        cutoff = today - timedelta(days=days)
        conn = get_connection(self._db)
        try:
            rows = conn.execute(
                """SELECT * FROM price_snapshots
                   WHERE item_type_id = ? AND snapshot_date >= ? AND snapshot_date <= ?
                   ORDER BY snapshot_date DESC""",
                (item_type_id, cutoff.isoformat(), today.isoformat()),
            ).fetchall()
        finally:
            conn.close()
        return [(date.fromisoformat(row["snapshot_date"]), self._row_to_item(row)) for row in rows]

    def _prices_for(self, day: date) -> dict[str, float]:
        conn = get_connection(self._db)
        try:
            rows = conn.execute(
                "SELECT item_type_id, price FROM price_snapshots WHERE snapshot_date = ?",
                (day.isoformat(),),
            ).fetchall()
        finally:
            conn.close()
        return {row["item_type_id"]: row["price"] for row in rows}

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> ItemSnapshot:
        return ItemSnapshot(
            item_type_id=row["item_type_id"],
            price=row["price"],
            confidence=row["confidence"],
            bundle_count=row["bundle_count"],
            total_quantity=row["total_quantity"],
            price_change_24h=row["price_change_24h"],
            trend=PriceTrend(row["trend"]),
        )
