"""Shared test fixtures for the pack value engine."""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure src is importable
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.common.config import DatabaseSettings, Settings
from src.common.models import BundleRecord, ItemLine, ItemPriceEstimate, PricingModel
from src.pack_engine.database.connection import get_connection, init_db


def make_bundle(
    bundle_id: str,
    price: float,
    items: list[tuple[str, float]],
    observed_at: datetime | None = None,
) -> BundleRecord:
    """Build a validated BundleRecord from (item_type_id, quantity) pairs."""
    return BundleRecord(
        id=bundle_id,
        price=price,
        items=[ItemLine(item_type_id=t, quantity=q) for t, q in items],
        observed_at=observed_at or datetime(2026, 10, 1, 12, 0, 0),
    )


def make_model(prices: dict[str, float]) -> PricingModel:
    """Build an anchored PricingModel from per-unit prices."""
    return PricingModel(
        estimates={
            item_type_id: ItemPriceEstimate(
                item_type_id=item_type_id,
                price_per_unit=price,
                total_cost=price * 10,
                total_quantity=10,
                supporting_bundle_count=1,
                is_anchor=True,
            )
            for item_type_id, price in prices.items()
        }
    )


@pytest.fixture(name="make_bundle")
def make_bundle_fixture():
    """Expose make_bundle to tests."""
    return make_bundle


@pytest.fixture(name="make_model")
def make_model_fixture():
    """Expose make_model to tests."""
    return make_model


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def temp_settings(tmp_path) -> Settings:
    """Provide Settings pointing to a temporary SQLite database."""
    db_file = tmp_path / "test_pack_engine.db"
    settings = Settings(database=DatabaseSettings(db_path=str(db_file)))
    init_db(settings)
    return settings


@pytest.fixture
def db_conn(temp_settings):
    """Provide an initialized SQLite connection from temp_settings."""
    conn = get_connection(temp_settings)
    yield conn
    conn.close()


@pytest.fixture
def example_bundles() -> list[BundleRecord]:
    """Pot priced alone at $1.00/unit; gem inferred from a mixed bundle."""
    return [
        make_bundle("a", 10.00, [("energy_pot", 10)]),
        make_bundle("b", 7.00, [("energy_pot", 5), ("gem", 2)]),
    ]


@pytest.fixture
def consistent_bundles() -> list[BundleRecord]:
    """Every item anchored by a single-item bundle; mixed bundles agree with anchors."""
    return [
        make_bundle("pot", 10.00, [("energy_pot", 10)]),
        make_bundle("shard", 20.00, [("sacred_shard", 4)]),
        make_bundle("silver", 5.00, [("silver", 50_000)]),
        make_bundle("mix-1", 15.00, [("energy_pot", 5), ("sacred_shard", 2)]),
        make_bundle("mix-2", 7.50, [("silver", 50_000), ("energy_pot", 2.5)]),
    ]


@pytest.fixture
def dated_bundles() -> list[BundleRecord]:
    """A week of single-item energy pot bundles ending 2026-10-07."""
    start = datetime(2026, 10, 1, 9, 0, 0)
    return [
        make_bundle(f"day-{i}", 10.00 + i, [("energy_pot", 10)], start + timedelta(days=i))
        for i in range(7)
    ]
