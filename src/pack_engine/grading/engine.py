"""Bundle value grading.

Grades a bundle by where its value ratio (inferred market value / price)
ranks among historical bundles:

- Percentile ladder (default): >=95 SSS, >=85 S, >=70 A, >=50 B,
  >=30 C, >=15 D, else F.
- Fallback when no usable reference bundle exists: absolute ladder on the
  ratio itself (>=2.0 SSS ... <0.7 F), reported with a sample size of 0.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from src.common.config import GradingSettings, UnpricedPolicy
from src.common.models import (
    BundleRecord,
    DealRanking,
    Grade,
    GradeResult,
    ItemLine,
    PricingModel,
    SimilarBundle,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BundleValuation:
    """A reference bundle valued against a pricing model."""

    bundle: BundleRecord
    total_value: float
    value_ratio: float


def _ladder_grade(score: float, ladder: Sequence[tuple[float, str]]) -> Grade:
    for threshold, grade in ladder:
        if score >= threshold:
            return Grade(grade)
    return Grade.F


class GradingEngine:
    """Assign value grades and find comparable bundles.

    Usage:
        engine = GradingEngine()
        result = engine.grade(items, 9.99, model, reference_bundles)
        print(result.grade, result.better_than_percent)
    """

    def __init__(self, settings: GradingSettings | None = None) -> None:
        self.settings = settings or GradingSettings()

    def grade(
        self,
        target_items: Sequence[ItemLine],
        target_price: float,
        model: PricingModel,
        reference_bundles: Iterable[BundleRecord],
    ) -> GradeResult:
        """Grade a bundle against the reference set.

        Args:
            target_items: Item lines of the bundle being graded.
            target_price: Total price of the bundle.
            model: Pricing model used for every valuation.
            reference_bundles: Historical bundles to rank against.

        Returns:
            GradeResult for the target bundle.

        Raises:
            ValueError: If the price is not positive or there are no items.
        """
        if target_price is None or target_price <= 0:
            raise ValueError("target_price must be positive")
        if not target_items:
            raise ValueError("target_items must not be empty")

        total_value = model.market_value(target_items)
        value_ratio = total_value / target_price
        unpriced = model.unpriced(target_items)

        if unpriced and self.settings.unpriced_policy == UnpricedPolicy.DISQUALIFY:
            logger.info("Bundle not graded; unpriced items: %s", ", ".join(unpriced))
            return GradeResult(
                grade=Grade.NEW,
                value_ratio=value_ratio,
                total_market_value=total_value,
                better_than_percent=0,
                comparison_sample_size=0,
                unpriced_items=unpriced,
            )

        valuations = self.value_bundles(model, reference_bundles)

        if not valuations:
            grade = _ladder_grade(value_ratio, self.settings.fallback_ladder)
            logger.info(
                "No comparison bundles; fallback grade %s (%.2fx value ratio)",
                grade.value,
                value_ratio,
            )
            return GradeResult(
                grade=grade,
                value_ratio=value_ratio,
                total_market_value=total_value,
                better_than_percent=0,
                comparison_sample_size=0,
                unpriced_items=unpriced,
            )

        better_than = self.percentile(value_ratio, [v.value_ratio for v in valuations])
        grade = _ladder_grade(better_than, self.settings.percentile_ladder)
        similar = self.find_similar(total_value, valuations)

        logger.info(
            "Grade %s: %.3fx value ratio, better than %d%% of %d bundles",
            grade.value,
            value_ratio,
            better_than,
            len(valuations),
        )
        return GradeResult(
            grade=grade,
            value_ratio=value_ratio,
            total_market_value=total_value,
            better_than_percent=better_than,
            comparison_sample_size=len(valuations),
            similar_bundles=similar,
            unpriced_items=unpriced,
        )

    def value_bundles(
        self,
        model: PricingModel,
        bundles: Iterable[BundleRecord],
    ) -> list[BundleValuation]:
        """Value every usable reference bundle with the same model."""
        valuations: list[BundleValuation] = []
        for bundle in bundles:
            if not bundle.items or bundle.price is None or bundle.price <= 0:
                continue
            if (
                self.settings.unpriced_policy == UnpricedPolicy.DISQUALIFY
                and model.unpriced(bundle.items)
            ):
                continue
            total_value = model.market_value(bundle.items)
            valuations.append(
                BundleValuation(
                    bundle=bundle,
                    total_value=total_value,
                    value_ratio=total_value / bundle.price,
                )
            )
        return valuations

    @staticmethod
    def percentile(value_ratio: float, reference_ratios: Sequence[float]) -> int:
        """Percent of reference ratios at or below the given ratio, rounded."""
        if not reference_ratios:
            return 0
        at_or_below = sum(1 for ratio in reference_ratios if ratio <= value_ratio)
        # Half-up, so 50.5 reports as 51
        return int(math.floor(100 * at_or_below / len(reference_ratios) + 0.5))

    def find_similar(
        self,
        total_value: float,
        valuations: Iterable[BundleValuation],
    ) -> list[SimilarBundle]:
        """Bundles within the value band of the target, best value ratio first."""
        band = self.settings.similar_value_band
        low, high = total_value * (1 - band), total_value * (1 + band)
        in_band = [v for v in valuations if low <= v.total_value <= high]
        in_band.sort(key=lambda v: v.value_ratio, reverse=True)
        return [
            SimilarBundle(
                bundle_id=v.bundle.id,
                price=v.bundle.price,
                total_value=v.total_value,
                value_ratio=v.value_ratio,
                items=list(v.bundle.items),
            )
            for v in in_band[: self.settings.similar_limit]
        ]

    def rank_deals(
        self,
        model: PricingModel,
        bundles: Iterable[BundleRecord],
        limit: int = 10,
        min_ratio: float = 1.0,
    ) -> list[DealRanking]:
        """Historical bundles priced below their market value, best ratio first."""
        deals = [v for v in self.value_bundles(model, bundles) if v.value_ratio > min_ratio]
        deals.sort(key=lambda v: v.value_ratio, reverse=True)
        return [
            DealRanking(
                bundle_id=v.bundle.id,
                price=v.bundle.price,
                total_value=v.total_value,
                value_ratio=v.value_ratio,
                savings=v.total_value - v.bundle.price,
                savings_percent=(
                    round((v.total_value - v.bundle.price) / v.total_value * 100, 1)
                    if v.total_value > 0
                    else 0.0
                ),
            )
            for v in deals[:limit]
        ]
