"""Bundle value grading and comparable-bundle lookup."""

from .engine import BundleValuation, GradingEngine

__all__ = ["BundleValuation", "GradingEngine"]
