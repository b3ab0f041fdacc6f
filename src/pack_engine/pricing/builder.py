"""Dynamic item pricing from observed bundles.

Individual item prices are never recorded; only bundle totals are. The
builder infers a per-unit price for every reachable item type:

1. Baseline: bundles with a single item line give anchor prices directly
   (total cost / total quantity).
2. Refinement: each pass walks the multi-item bundles. Value left over
   after pricing the known lines is split across the unknown lines by
   quantity; fully-known bundles whose price disagrees with the current
   estimates contribute a proportionally corrected copy of themselves.

Contributions of a pass go to a shadow table and are merged into the
running totals only after the pass, so the result does not depend on
bundle order. Passes stop once prices move by no more than the tolerance
and no new item type was priced, or after ``max_iterations`` passes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from src.common.config import PricingSettings
from src.common.models import BundleRecord, ItemLine, ItemPriceEstimate, PricingModel

logger = logging.getLogger(__name__)


@dataclass
class _Accumulator:
    """Running cost / quantity totals for one item type."""

    total_cost: float = 0.0
    total_quantity: float = 0.0
    bundle_count: int = 0

    def merge(self, other: _Accumulator) -> None:
        self.total_cost += other.total_cost
        self.total_quantity += other.total_quantity
        self.bundle_count += other.bundle_count

    @property
    def price_per_unit(self) -> float | None:
        if self.total_quantity <= 0:
            return None
        return self.total_cost / self.total_quantity


def _is_usable(bundle: BundleRecord) -> bool:
    return bool(bundle.items) and bundle.price is not None and bundle.price > 0


class PricingModelBuilder:
    """Build a PricingModel from a snapshot of bundles.

    Usage:
        builder = PricingModelBuilder()
        model = builder.build(repository.list_bundles())
        model.price("energy_pot")
    """

    def __init__(self, settings: PricingSettings | None = None) -> None:
        self.settings = settings or PricingSettings()

    def build(self, bundles: Iterable[BundleRecord]) -> PricingModel:
        """Infer per-unit prices for every reachable item type."""
        bundles = list(bundles)

        # Pass 0: filtering and partition
        usable = [b for b in bundles if _is_usable(b)]
        if len(usable) < len(bundles):
            logger.info(
                "Skipped %d bundles without a positive price or items",
                len(bundles) - len(usable),
            )
        singles = [b for b in usable if len(b.items) == 1]
        multis = [b for b in usable if len(b.items) > 1]

        # Pass 1: baseline
        stats = self._baseline(singles)
        anchors = set(stats)
        prices = self._prices(stats)
        logger.info(
            "Baseline prices for %d item types from %d single-item bundles",
            len(prices),
            len(singles),
        )

        # Pass 2..N: refinement
        iteration_count = 0
        converged = False
        while iteration_count < self.settings.max_iterations:
            shadow = self.refine_pass(multis, prices)
            for item_type_id, acc in shadow.items():
                stats.setdefault(item_type_id, _Accumulator()).merge(acc)

            new_prices = self._prices(stats)
            discovered = sorted(set(new_prices) - set(prices))
            max_change = max(
                (abs(new_prices[k] - prices[k]) for k in prices if k in new_prices),
                default=0.0,
            )
            iteration_count += 1
            for item_type_id in discovered:
                logger.debug("Discovered %s = %.6f", item_type_id, new_prices[item_type_id])
            logger.debug(
                "Pass %d: %d new item types, max price change %.6f",
                iteration_count,
                len(discovered),
                max_change,
            )
            prices = new_prices

            if max_change <= self.settings.tolerance and not discovered:
                converged = True
                break

        if not converged:
            logger.warning(
                "Pricing did not converge within %d passes; returning best approximation",
                self.settings.max_iterations,
            )

        self._warn_on_thin_data(len(usable), len(singles))

        estimates = {
            item_type_id: ItemPriceEstimate(
                item_type_id=item_type_id,
                price_per_unit=prices[item_type_id],
                total_cost=acc.total_cost,
                total_quantity=acc.total_quantity,
                supporting_bundle_count=acc.bundle_count,
                is_anchor=item_type_id in anchors,
            )
            for item_type_id, acc in stats.items()
            if item_type_id in prices
        }

        model = PricingModel(
            estimates=estimates,
            iteration_count=iteration_count,
            converged=converged,
            total_bundles=len(bundles),
            usable_bundles=len(usable),
            anchor_bundles=len(singles),
        )
        logger.info(
            "Pricing model covers %d item types after %d passes (converged=%s)",
            len(estimates),
            iteration_count,
            converged,
        )
        return model

    @staticmethod
    def _baseline(singles: list[BundleRecord]) -> dict[str, _Accumulator]:
        stats: dict[str, _Accumulator] = {}
        for bundle in singles:
            line = bundle.items[0]
            acc = stats.setdefault(line.item_type_id, _Accumulator())
            acc.total_cost += bundle.price
            acc.total_quantity += line.quantity
            acc.bundle_count += 1
        return stats

    @staticmethod
    def _prices(stats: dict[str, _Accumulator]) -> dict[str, float]:
        # Zero-quantity totals never yield a price
        prices: dict[str, float] = {}
        for item_type_id, acc in stats.items():
            unit_price = acc.price_per_unit
            if unit_price is not None:
                prices[item_type_id] = unit_price
        return prices

    def refine_pass(
        self,
        bundles: Iterable[BundleRecord],
        prices: dict[str, float],
    ) -> dict[str, _Accumulator]:
        """Run one refinement pass against fixed prices and return its shadow table."""
        shadow: dict[str, _Accumulator] = defaultdict(_Accumulator)
        for bundle in bundles:
            contributions = self._contributions(bundle, prices)
            for item_type_id, (cost, quantity) in contributions.items():
                acc = shadow[item_type_id]
                acc.total_cost += cost
                acc.total_quantity += quantity
                acc.bundle_count += 1
        return dict(shadow)

    def _contributions(
        self,
        bundle: BundleRecord,
        prices: dict[str, float],
    ) -> dict[str, tuple[float, float]]:
        """Cost and quantity this bundle adds per item type during one pass."""
        known: list[tuple[ItemLine, float]] = []
        unknown: list[ItemLine] = []
        for line in bundle.items:
            unit_price = prices.get(line.item_type_id)
            if unit_price is None:
                unknown.append(line)
            else:
                known.append((line, unit_price))

        known_value = sum(unit_price * line.quantity for line, unit_price in known)
        contributions: dict[str, tuple[float, float]] = {}

        def add(item_type_id: str, cost: float, quantity: float) -> None:
            prev_cost, prev_quantity = contributions.get(item_type_id, (0.0, 0.0))
            contributions[item_type_id] = (prev_cost + cost, prev_quantity + quantity)

        if unknown and known and known_value < bundle.price:
            remaining = bundle.price - known_value
            total_unknown_quantity = sum(line.quantity for line in unknown)
            for line in unknown:
                add(line.item_type_id, remaining * line.quantity / total_unknown_quantity, line.quantity)

        elif not unknown and len(known) > 1 and known_value > 0:
            if abs(known_value - bundle.price) > self.settings.consistency_epsilon:
                factor = bundle.price / known_value
                for line, unit_price in known:
                    add(line.item_type_id, unit_price * line.quantity * factor, line.quantity)

        return contributions

    def _warn_on_thin_data(self, usable_count: int, anchor_count: int) -> None:
        if usable_count < self.settings.min_bundles_warning:
            logger.warning(
                "Limited data: only %d usable bundles; prices may be unstable",
                usable_count,
            )
        if anchor_count < self.settings.min_anchor_warning:
            logger.warning(
                "Few baseline bundles: only %d single-item bundles for anchor prices",
                anchor_count,
            )
