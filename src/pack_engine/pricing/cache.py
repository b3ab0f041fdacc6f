"""Short-lived memoization of the pricing model.

One active snapshot per cache object: the model and the bundle list it
was built from. The composing application owns the cache; nothing is
kept at module level.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from src.common.config import CacheSettings
from src.common.models import BundleRecord, PricingModel
from ..database.repository import BundleRepository
from .builder import PricingModelBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSnapshot:
    """A built model together with the bundles it was built from."""

    model: PricingModel
    bundles: tuple[BundleRecord, ...] = ()
    built_at: float = 0.0
    stale: bool = field(default=False, compare=False)
    expired: bool = field(default=False, compare=False)


_EMPTY_SNAPSHOT = ModelSnapshot(model=PricingModel.empty())


class ModelCache:
    """TTL cache around PricingModelBuilder with stale-serve on failure.

    Usage:
        cache = ModelCache(repository)
        model = cache.get()                    # cached for ttl_seconds
        model = cache.get(force_refresh=True)  # after a new submission
    """

    def __init__(
        self,
        repository: BundleRepository,
        builder: PricingModelBuilder | None = None,
        settings: CacheSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.builder = builder or PricingModelBuilder()
        self.settings = settings or CacheSettings()
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: ModelSnapshot | None = None

    @property
    def has_model(self) -> bool:
        """True once a build has succeeded."""
        return self._snapshot is not None

    def get(self, force_refresh: bool = False) -> PricingModel:
        """Return the active pricing model, rebuilding when expired or forced."""
        return self.get_snapshot(force_refresh).model

    def reference_bundles(self, force_refresh: bool = False) -> list[BundleRecord]:
        """Bundles the active model was built from."""
        return list(self.get_snapshot(force_refresh).bundles)

    def invalidate(self) -> None:
        """Expire the active snapshot; the next read rebuilds.

        The expired snapshot is still served if that rebuild fails.
        """
        with self._lock:
            if self._snapshot is not None:
                self._snapshot = ModelSnapshot(
                    model=self._snapshot.model,
                    bundles=self._snapshot.bundles,
                    built_at=self._snapshot.built_at,
                    expired=True,
                )
        logger.info("Pricing cache invalidated")

    def get_snapshot(self, force_refresh: bool = False) -> ModelSnapshot:
        current = self._snapshot
        if not force_refresh and current is not None and self._is_fresh(current):
            logger.debug("Using cached pricing model")
            return current

        try:
            # Fetch once; the build is a pure function of this snapshot
            bundles = self.repository.list_bundles()
            model = self.builder.build(bundles)
        except Exception:
            fallback = self._snapshot
            if fallback is not None:
                logger.warning(
                    "Pricing rebuild failed; serving stale model built %.1fs ago",
                    self._clock() - fallback.built_at,
                    exc_info=True,
                )
                return ModelSnapshot(
                    model=fallback.model,
                    bundles=fallback.bundles,
                    built_at=fallback.built_at,
                    stale=True,
                )
            logger.warning(
                "Pricing build failed and no model is cached; returning empty model",
                exc_info=True,
            )
            return _EMPTY_SNAPSHOT

        snapshot = ModelSnapshot(model=model, bundles=tuple(bundles), built_at=self._clock())
        with self._lock:
            self._snapshot = snapshot
        logger.info("Pricing model cached for %d item types", len(model.estimates))
        return snapshot

    def _is_fresh(self, snapshot: ModelSnapshot) -> bool:
        if snapshot.expired:
            return False
        return self._clock() - snapshot.built_at < self.settings.ttl_seconds
