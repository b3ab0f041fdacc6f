"""Tests for the pricing model cache."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.common.config import CacheSettings
from src.pack_engine.database.repository import InMemoryBundleRepository, RepositoryError
from src.pack_engine.pricing.cache import ModelCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository(example_bundles):
    repo = MagicMock(spec=InMemoryBundleRepository)
    repo.list_bundles.return_value = list(example_bundles)
    return repo


@pytest.fixture
def cache(repository, clock) -> ModelCache:
    return ModelCache(repository, settings=CacheSettings(ttl_seconds=30), clock=clock)


class TestCaching:
    """TTL behaviour and forced refresh."""

    def test_first_get_builds(self, cache, repository):
        model = cache.get()
        assert model.price("gem") == pytest.approx(1.00)
        assert repository.list_bundles.call_count == 1
        assert cache.has_model

    def test_get_within_ttl_reuses_model(self, cache, repository, clock):
        first = cache.get()
        clock.advance(29)
        second = cache.get()

        assert second is first
        assert repository.list_bundles.call_count == 1

    def test_get_after_ttl_rebuilds(self, cache, repository, clock):
        first = cache.get()
        clock.advance(31)
        second = cache.get()

        assert second is not first
        assert repository.list_bundles.call_count == 2

    def test_force_refresh_bypasses_ttl(self, cache, repository, make_bundle):
        cache.get()
        repository.list_bundles.return_value = [
            make_bundle("a", 20.00, [("energy_pot", 10)]),
        ]
        model = cache.get(force_refresh=True)

        assert model.price("energy_pot") == pytest.approx(2.00)
        assert repository.list_bundles.call_count == 2

    def test_invalidate_forces_next_rebuild(self, cache, repository):
        cache.get()
        cache.invalidate()
        cache.get()
        assert repository.list_bundles.call_count == 2

    def test_reference_bundles_match_model_snapshot(self, cache, example_bundles):
        assert [b.id for b in cache.reference_bundles()] == [b.id for b in example_bundles]


class TestFailureRecovery:
    """Stale serving and the empty model."""

    def test_failure_without_cache_returns_empty_model(self, repository, clock):
        repository.list_bundles.side_effect = RepositoryError("store offline")
        cache = ModelCache(repository, clock=clock)

        model = cache.get()

        assert model.is_empty
        assert not cache.has_model
        assert cache.reference_bundles() == []

    def test_failure_serves_stale_model(self, cache, repository, clock):
        first = cache.get()
        clock.advance(60)
        repository.list_bundles.side_effect = RepositoryError("store offline")

        stale = cache.get()

        assert stale is first
        assert cache.get_snapshot().stale

    def test_forced_refresh_failure_serves_stale_model(self, cache, repository):
        first = cache.get()
        repository.list_bundles.side_effect = ConnectionError("timeout")

        assert cache.get(force_refresh=True) is first

    def test_recovers_after_store_returns(self, repository, clock, example_bundles):
        repository.list_bundles.side_effect = RepositoryError("store offline")
        cache = ModelCache(repository, clock=clock)
        assert cache.get().is_empty

        repository.list_bundles.side_effect = None
        repository.list_bundles.return_value = list(example_bundles)

        # The empty model is never cached, so the next call rebuilds
        assert cache.get().price("gem") == pytest.approx(1.00)

    def test_invalidated_model_served_with_its_age(self, cache, repository, clock, caplog):
        first = cache.get()
        clock.advance(12)
        cache.invalidate()
        repository.list_bundles.side_effect = RepositoryError("store offline")

        with caplog.at_level("WARNING"):
            assert cache.get() is first

        assert "built 12.0s ago" in caplog.text
        assert "infs ago" not in caplog.text

    def test_failure_is_logged(self, repository, clock, caplog):
        repository.list_bundles.side_effect = RepositoryError("store offline")
        cache = ModelCache(repository, clock=clock)

        with caplog.at_level("WARNING"):
            cache.get()

        assert "no model is cached" in caplog.text
