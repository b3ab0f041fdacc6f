"""Shared Pydantic data models for the pack value engine.

These models define the data contracts between the bundle repository,
the pricing core (builder, cache, grading, trends) and callers.
All modules import from here.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field


# === Enums ===

class Grade(str, Enum):
    """Value grade of a bundle, SSS (best) to F (worst).

    NEW marks a bundle that could not be graded.
    """
    SSS = "SSS"
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"
    NEW = "NEW"

    @property
    def tier(self) -> int | None:
        """1 for the best grade through 7 for the worst; None for NEW."""
        return _GRADE_TIERS.get(self)


_GRADE_TIERS = {
    Grade.SSS: 1,
    Grade.S: 2,
    Grade.A: 3,
    Grade.B: 4,
    Grade.C: 5,
    Grade.D: 6,
    Grade.F: 7,
}


class PriceTrend(str, Enum):
    """Day-over-day direction of an item price."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


# === Bundles ===

class ItemLine(BaseModel):
    """An (item type, quantity) pair within a bundle."""
    item_type_id: str = Field(min_length=1)
    quantity: float = Field(gt=0)

    model_config = {"frozen": True}


class BundleRecord(BaseModel):
    """A historical bundle observation: one price for one or more item lines."""
    id: str
    price: float = Field(gt=0, description="Total bundle price (USD)")
    items: list[ItemLine] = Field(min_length=1)
    observed_at: datetime

    model_config = {"frozen": True}

    @property
    def is_single_item(self) -> bool:
        return len(self.items) == 1

    @property
    def item_type_ids(self) -> set[str]:
        return {line.item_type_id for line in self.items}

    def quantity_of(self, item_type_id: str) -> float:
        """Total quantity of an item type across all lines of this bundle."""
        return sum(line.quantity for line in self.items if line.item_type_id == item_type_id)


# === Pricing Model ===

class ItemPriceEstimate(BaseModel):
    """Inferred per-unit market price of one item type."""
    item_type_id: str
    price_per_unit: float
    total_cost: float
    total_quantity: float
    supporting_bundle_count: int = Field(ge=0)
    is_anchor: bool = Field(
        default=False,
        description="True when single-item bundles established the baseline",
    )

    model_config = {"frozen": True}

    @property
    def confidence(self) -> float:
        """0-100 score: 10 points per bundle plus 0.5 per unit (units capped at 100)."""
        score = self.supporting_bundle_count * 10 + min(self.total_quantity, 100) * 0.5
        return min(100.0, max(0.0, score))


class PricingModel(BaseModel):
    """Immutable result of one pricing build."""
    estimates: dict[str, ItemPriceEstimate] = {}
    iteration_count: int = 0
    converged: bool = True
    total_bundles: int = 0
    usable_bundles: int = 0
    anchor_bundles: int = 0
    built_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}

    @classmethod
    def empty(cls) -> PricingModel:
        """A model with no priced items, used before any successful build."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.estimates

    @property
    def prices(self) -> dict[str, float]:
        return {k: e.price_per_unit for k, e in self.estimates.items()}

    def price(self, item_type_id: str) -> float | None:
        estimate = self.estimates.get(item_type_id)
        return estimate.price_per_unit if estimate else None

    def market_value(self, items: Iterable[ItemLine]) -> float:
        """Sum of price x quantity; unpriced lines contribute zero."""
        total = 0.0
        for line in items:
            unit_price = self.price(line.item_type_id)
            if unit_price is not None:
                total += unit_price * line.quantity
        return total

    def unpriced(self, items: Iterable[ItemLine]) -> list[str]:
        """Item type ids among the lines that have no price in this model."""
        missing: list[str] = []
        for line in items:
            if line.item_type_id not in self.estimates and line.item_type_id not in missing:
                missing.append(line.item_type_id)
        return missing


# === Grading ===

class SimilarBundle(BaseModel):
    """A historical bundle of comparable total market value."""
    bundle_id: str
    price: float
    total_value: float
    value_ratio: float
    items: list[ItemLine] = []


class GradeResult(BaseModel):
    """Value grade of one bundle. Computed per request, never persisted."""
    grade: Grade
    value_ratio: float
    total_market_value: float
    better_than_percent: int = Field(ge=0, le=100)
    comparison_sample_size: int = Field(ge=0)
    similar_bundles: list[SimilarBundle] = []
    unpriced_items: list[str] = []

    @property
    def is_fallback(self) -> bool:
        """True when the grade comes from the absolute ladder, not a ranking."""
        return self.comparison_sample_size == 0


class DealRanking(BaseModel):
    """A historical bundle priced below its inferred market value."""
    bundle_id: str
    price: float
    total_value: float
    value_ratio: float
    savings: float
    savings_percent: float


# === Trends ===

class DailyPricePoint(BaseModel):
    """Price of an item type on one day."""
    day: date
    price: float = Field(gt=0)
    confidence: int = Field(ge=0, le=100)
    observations: int = Field(default=0, ge=0)
    smoothed: bool = False
    carried: bool = False

    model_config = {"frozen": True}


class ItemSnapshot(BaseModel):
    """Price of one item type captured in a daily market snapshot."""
    item_type_id: str
    price: float
    confidence: float = Field(ge=0, le=100)
    bundle_count: int
    total_quantity: float
    price_change_24h: float | None = None
    trend: PriceTrend = PriceTrend.STABLE


class MarketSnapshot(BaseModel):
    """All item prices captured for one day."""
    snapshot_date: date
    created_at: datetime
    items: list[ItemSnapshot] = []
