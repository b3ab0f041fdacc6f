"""Caller-facing entry points of the pack value engine.

Composes the repository, model cache, grading engine and trend stabilizer:

    service = PackPricingService.from_settings(settings)
    model = service.get_pricing_model()
    result = service.grade_bundle([ItemLine(item_type_id="energy_pot", quantity=10)], 9.99)
    trend = service.get_price_trend("energy_pot")
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable

from src.common.config import Settings
from src.common.logging import setup_logging
from src.common.models import (
    DailyPricePoint,
    DealRanking,
    GradeResult,
    ItemLine,
    MarketSnapshot,
    PricingModel,
)
from .database.repository import BundleRepository, RepositoryError, SQLiteBundleRepository
from .grading.engine import GradingEngine
from .pricing.builder import PricingModelBuilder
from .pricing.cache import ModelCache
from .trends.snapshots import MarketSnapshotter
from .trends.stabilizer import TrendStabilizer, group_by_day

logger = logging.getLogger(__name__)


class PackPricingService:
    """Pricing, grading and trend operations over one bundle repository."""

    def __init__(
        self,
        repository: BundleRepository,
        settings: Settings | None = None,
        cache: ModelCache | None = None,
        snapshotter: MarketSnapshotter | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.repository = repository
        self.cache = cache or ModelCache(
            repository,
            builder=PricingModelBuilder(self.settings.pricing),
            settings=self.settings.cache,
        )
        self.grading = GradingEngine(self.settings.grading)
        self.trends = TrendStabilizer(self.settings.trends)
        self.snapshotter = snapshotter

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        log_level: int | None = None,
    ) -> PackPricingService:
        """Service over the SQLite store configured in ``settings``.

        Pass ``log_level`` to attach the package's stdout log handler.
        """
        if log_level is not None:
            setup_logging(log_level, module_name="src")
        return cls(
            SQLiteBundleRepository(settings),
            settings=settings,
            snapshotter=MarketSnapshotter(settings),
        )

    def get_pricing_model(self, force_refresh: bool = False) -> PricingModel:
        return self.cache.get(force_refresh)

    def notify_bundle_submitted(self) -> PricingModel:
        """Rebuild right away so the submitting caller sees its own bundle priced in."""
        return self.cache.get(force_refresh=True)

    def grade_bundle(self, items: Iterable[ItemLine], price: float) -> GradeResult:
        """Grade a bundle against the bundles behind the active model."""
        snapshot = self.cache.get_snapshot()
        return self.grading.grade(list(items), price, snapshot.model, snapshot.bundles)

    def best_deals(self, limit: int = 10) -> list[DealRanking]:
        snapshot = self.cache.get_snapshot()
        return self.grading.rank_deals(snapshot.model, snapshot.bundles, limit=limit)

    def get_price_trend(
        self,
        item_type_id: str,
        end_date: date | None = None,
    ) -> list[DailyPricePoint]:
        """Smoothed daily price series of one item type."""
        end_date = end_date or date.today()
        snapshot = self.cache.get_snapshot()
        start = end_date - timedelta(days=self.settings.trends.days - 1)
        recent = [
            bundle
            for bundle in snapshot.bundles
            if start <= bundle.observed_at.date() <= end_date
            and item_type_id in bundle.item_type_ids
        ]
        return self.trends.build_series(
            item_type_id, group_by_day(recent), snapshot.model, end_date=end_date
        )

    def create_daily_snapshot(self, today: date | None = None) -> MarketSnapshot | None:
        """Persist today's item prices; requires a configured snapshotter."""
        if self.snapshotter is None:
            raise ValueError("No snapshot store configured")
        model = self.cache.get()
        try:
            return self.snapshotter.create_daily_snapshot(model, today)
        except RepositoryError:
            logger.warning("Daily snapshot failed", exc_info=True)
            return None
