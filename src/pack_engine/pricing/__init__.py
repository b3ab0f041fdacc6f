"""Item price inference and the model cache."""

from .builder import PricingModelBuilder
from .cache import ModelCache, ModelSnapshot

__all__ = ["PricingModelBuilder", "ModelCache", "ModelSnapshot"]
