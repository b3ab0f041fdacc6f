"""Daily price trends and market snapshots."""

from .snapshots import MarketSnapshotter, classify_change
from .stabilizer import TrendStabilizer, group_by_day

__all__ = ["MarketSnapshotter", "TrendStabilizer", "classify_change", "group_by_day"]
