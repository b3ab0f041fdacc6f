"""End-to-end tests for the pack value engine.

Bundles go into the SQLite store; pricing, grading, trends and snapshots
are read back through PackPricingService.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from src.common.models import Grade, ItemLine, PriceTrend
from src.pack_engine.database.repository import (
    BundleRepository,
    InMemoryBundleRepository,
    RepositoryError,
)
from src.pack_engine.service import PackPricingService


@pytest.fixture
def service(temp_settings, example_bundles) -> PackPricingService:
    service = PackPricingService.from_settings(temp_settings)
    for bundle in example_bundles:
        service.repository.add_bundle(bundle)
    return service


class TestPricingFlow:
    """Store -> model -> grade."""

    def test_model_from_stored_bundles(self, service):
        model = service.get_pricing_model()

        assert model.price("energy_pot") == pytest.approx(1.00)
        assert model.price("gem") == pytest.approx(1.00)
        assert model.usable_bundles == 2
        assert model.anchor_bundles == 1

    def test_grade_bundle_against_history(self, service):
        result = service.grade_bundle([ItemLine(item_type_id="energy_pot", quantity=10)], 8.00)

        assert result.value_ratio == pytest.approx(1.25)
        assert result.comparison_sample_size == 2
        assert result.better_than_percent == 100
        assert result.grade == Grade.SSS
        assert {s.bundle_id for s in result.similar_bundles} == {"a"}

    def test_log_level_attaches_package_handler(self, temp_settings):
        package_logger = logging.getLogger("src")
        try:
            PackPricingService.from_settings(temp_settings, log_level=logging.DEBUG)
            assert len(package_logger.handlers) == 1
            assert package_logger.level == logging.DEBUG
        finally:
            for handler in list(package_logger.handlers):
                package_logger.removeHandler(handler)
            package_logger.setLevel(logging.NOTSET)

    def test_grade_rejects_bad_price(self, service):
        with pytest.raises(ValueError):
            service.grade_bundle([ItemLine(item_type_id="energy_pot", quantity=10)], -1)

    def test_submitted_bundle_visible_immediately(self, service, make_bundle):
        service.get_pricing_model()
        service.repository.add_bundle(make_bundle("c", 4.00, [("tome", 2)]))

        # Within the TTL the cached model is still served
        assert service.get_pricing_model().price("tome") is None
        assert service.notify_bundle_submitted().price("tome") == pytest.approx(2.00)

    def test_best_deals(self, service, make_bundle):
        service.repository.add_bundle(make_bundle("deal", 6.00, [("energy_pot", 5), ("gem", 5)]))
        deals = service.best_deals(limit=5)

        assert deals[0].bundle_id == "deal"
        assert deals[0].value_ratio > 1.0


class TestTrendFlow:

    def test_price_trend_for_week(self, temp_settings, dated_bundles, make_bundle):
        service = PackPricingService.from_settings(temp_settings)
        for bundle in dated_bundles:
            service.repository.add_bundle(bundle)
        service.repository.add_bundle(
            make_bundle("other", 5.00, [("gem", 5)], datetime(2026, 10, 3, 10))
        )

        trend = service.get_price_trend("energy_pot", end_date=date(2026, 10, 7))

        assert len(trend) == 7
        assert trend[0].day == date(2026, 10, 1)
        assert trend[-1].price == pytest.approx(1.6)
        assert all(point.observations == 1 for point in trend)

    def test_trend_for_unknown_item_is_empty(self, service):
        assert service.get_price_trend("tome", end_date=date(2026, 10, 7)) == []

    def test_daily_snapshot_and_history(self, service):
        first = service.create_daily_snapshot(today=date(2026, 10, 6))
        again = service.create_daily_snapshot(today=date(2026, 10, 6))

        assert {item.item_type_id for item in first.items} == {"energy_pot", "gem"}
        assert again.created_at == first.created_at

        second = service.create_daily_snapshot(today=date(2026, 10, 7))
        assert all(item.trend == PriceTrend.STABLE for item in second.items)
        assert all(item.price_change_24h == pytest.approx(0.0) for item in second.items)

        history = service.snapshotter.get_item_history("gem", today=date(2026, 10, 7))
        assert [day for day, _ in history] == [date(2026, 10, 7), date(2026, 10, 6)]

    def test_snapshot_requires_store(self, example_bundles):
        service = PackPricingService(InMemoryBundleRepository(example_bundles))
        with pytest.raises(ValueError):
            service.create_daily_snapshot()


class TestDegradedStore:
    """Repository failures never reach the caller as exceptions."""

    @pytest.fixture
    def flaky_repository(self, example_bundles):
        repo = MagicMock(spec=BundleRepository)
        repo.list_bundles.return_value = list(example_bundles)
        return repo

    def test_stale_model_served_during_outage(self, flaky_repository):
        service = PackPricingService(flaky_repository)
        before = service.get_pricing_model()

        flaky_repository.list_bundles.side_effect = RepositoryError("store offline")
        after = service.notify_bundle_submitted()

        assert after is before
        result = service.grade_bundle([ItemLine(item_type_id="gem", quantity=2)], 1.00)
        assert result.comparison_sample_size == 2

    def test_outage_before_first_build_grades_with_fallback(self, flaky_repository):
        flaky_repository.list_bundles.side_effect = RepositoryError("store offline")
        service = PackPricingService(flaky_repository)

        result = service.grade_bundle([ItemLine(item_type_id="gem", quantity=2)], 1.00)

        assert service.get_pricing_model().is_empty
        assert result.is_fallback
        assert result.total_market_value == 0.0
        assert result.grade == Grade.F
