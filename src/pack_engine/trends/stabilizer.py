"""Daily price trend per item type.

Builds a short daily series from the bundles observed each day and
smooths single-point outliers so one malformed bundle cannot distort the
displayed trend.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from statistics import mean
from typing import Iterable, Mapping, Sequence

from src.common.config import FillPolicy, TrendSettings
from src.common.models import BundleRecord, DailyPricePoint, PricingModel

logger = logging.getLogger(__name__)


def group_by_day(bundles: Iterable[BundleRecord]) -> dict[date, list[BundleRecord]]:
    """Group bundles by the calendar day they were observed."""
    grouped: dict[date, list[BundleRecord]] = {}
    for bundle in bundles:
        grouped.setdefault(bundle.observed_at.date(), []).append(bundle)
    return grouped


class TrendStabilizer:
    """Build and smooth daily price series.

    Usage:
        stabilizer = TrendStabilizer()
        series = stabilizer.build_series("energy_pot", group_by_day(bundles), model)
    """

    def __init__(self, settings: TrendSettings | None = None) -> None:
        self.settings = settings or TrendSettings()

    def build_series(
        self,
        item_type_id: str,
        bundles_by_day: Mapping[date, Sequence[BundleRecord]],
        model: PricingModel,
        end_date: date | None = None,
    ) -> list[DailyPricePoint]:
        """Daily prices for the last ``days`` days ending at ``end_date``, oldest first."""
        end_date = end_date or date.today()
        start = end_date - timedelta(days=self.settings.days - 1)
        observed: list[DailyPricePoint] = []

        for offset in range(self.settings.days):
            day = start + timedelta(days=offset)
            estimates = [
                estimate
                for bundle in bundles_by_day.get(day, ())
                if (estimate := self.unit_estimate(item_type_id, bundle, model)) is not None
            ]
            if estimates:
                observed.append(
                    DailyPricePoint(
                        day=day,
                        price=mean(estimates),
                        confidence=min(
                            self.settings.max_confidence,
                            len(estimates) * self.settings.confidence_per_observation,
                        ),
                        observations=len(estimates),
                    )
                )

        logger.debug("%s: %d observed days before smoothing", item_type_id, len(observed))
        # Gaps are filled from smoothed points so an outlier is never carried
        series = self.smooth(observed, label=item_type_id)
        if self.settings.fill_policy == FillPolicy.CARRY_FORWARD:
            series = self.carry_forward(series, end_date)
        return series

    def carry_forward(
        self,
        series: Sequence[DailyPricePoint],
        end_date: date,
    ) -> list[DailyPricePoint]:
        """Repeat the last price on each empty day up to ``end_date``.

        Days before the first point stay empty. Each carried day loses
        ``carry_forward_penalty`` confidence, floor 0.
        """
        if not series:
            return []
        by_day = {point.day: point for point in series}
        filled: list[DailyPricePoint] = []
        day = series[0].day
        while day <= end_date:
            point = by_day.get(day)
            if point is None:
                last = filled[-1]
                point = DailyPricePoint(
                    day=day,
                    price=last.price,
                    confidence=max(0, last.confidence - self.settings.carry_forward_penalty),
                    observations=0,
                    carried=True,
                )
            filled.append(point)
            day += timedelta(days=1)
        return filled

    def unit_estimate(
        self,
        item_type_id: str,
        bundle: BundleRecord,
        model: PricingModel,
    ) -> float | None:
        """Per-unit price of an item type implied by one bundle, or None.

        Bundles holding only this item type give the price directly. In
        mixed bundles the value of the other priced lines is subtracted from
        the bundle price; the remainder must fall within the plausibility
        band around the model price.
        """
        if bundle.price is None or bundle.price <= 0:
            return None
        quantity = bundle.quantity_of(item_type_id)
        if quantity <= 0:
            return None

        if bundle.item_type_ids == {item_type_id}:
            return bundle.price / quantity

        other_value = model.market_value(
            line for line in bundle.items if line.item_type_id != item_type_id
        )
        remaining = bundle.price - other_value
        if remaining <= 0:
            return None
        unit_price = remaining / quantity

        reference = model.price(item_type_id)
        if reference is not None:
            low = reference * self.settings.plausibility_low
            high = reference * self.settings.plausibility_high
            if not low <= unit_price <= high:
                logger.debug(
                    "%s: rejected implausible price %.4f from bundle %s (range %.4f-%.4f)",
                    item_type_id,
                    unit_price,
                    bundle.id,
                    low,
                    high,
                )
                return None
        return unit_price

    def smooth(
        self,
        series: Sequence[DailyPricePoint],
        label: str = "",
    ) -> list[DailyPricePoint]:
        """Replace interior points far from both neighbours by the neighbours' mean."""
        points = list(series)
        if len(points) < 3:
            return points

        factor = self.settings.outlier_factor
        smoothed = list(points)
        for i in range(1, len(points) - 1):
            prev_price = points[i - 1].price
            price = points[i].price
            next_price = points[i + 1].price
            if self._deviates(price, prev_price, factor) and self._deviates(price, next_price, factor):
                replacement = (prev_price + next_price) / 2
                logger.warning(
                    "%s anomaly on %s: %.4f -> %.4f (smoothed)",
                    label or "series",
                    points[i].day.isoformat(),
                    price,
                    replacement,
                )
                smoothed[i] = points[i].model_copy(
                    update={
                        "price": replacement,
                        "confidence": max(0, points[i].confidence - self.settings.smoothing_penalty),
                        "smoothed": True,
                    }
                )
        return smoothed

    @staticmethod
    def _deviates(price: float, neighbour: float, factor: float) -> bool:
        # A jump of exactly ``factor`` counts as an outlier
        return price >= neighbour * factor or price <= neighbour / factor
