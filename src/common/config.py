"""Project configuration and paths.

Loads settings from config/settings.yaml and environment variables.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# === Paths ===
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = PROJECT_ROOT / "data"

# Load .env from project root
load_dotenv(PROJECT_ROOT / ".env")


class UnpricedPolicy(str, Enum):
    """How bundle lines without a model price are valued during grading."""
    ZERO_VALUE = "zero_value"
    DISQUALIFY = "disqualify"


class FillPolicy(str, Enum):
    """How the trend series handles days without observations."""
    SPARSE = "sparse"
    CARRY_FORWARD = "carry_forward"


class PricingSettings(BaseModel):
    """Settings for the iterative price inference."""
    max_iterations: int = Field(default=15, ge=1)
    tolerance: float = Field(default=0.001, gt=0)
    consistency_epsilon: float = Field(default=0.01, ge=0)
    min_bundles_warning: int = 100
    min_anchor_warning: int = 20


class GradingSettings(BaseModel):
    """Grade ladders and comparable-bundle lookup."""
    # (minimum better-than percent, grade) from best to worst; below the last → F
    percentile_ladder: list[tuple[float, str]] = [
        (95, "SSS"), (85, "S"), (70, "A"), (50, "B"), (30, "C"), (15, "D"),
    ]
    # (minimum value ratio, grade) used when no reference bundles exist
    fallback_ladder: list[tuple[float, str]] = [
        (2.0, "SSS"), (1.5, "S"), (1.3, "A"), (1.1, "B"), (0.9, "C"), (0.7, "D"),
    ]
    similar_value_band: float = Field(default=0.2, ge=0)
    similar_limit: int = Field(default=5, ge=0)
    unpriced_policy: UnpricedPolicy = UnpricedPolicy.ZERO_VALUE


class CacheSettings(BaseModel):
    """Pricing model cache settings."""
    ttl_seconds: float = Field(default=30.0, ge=0)


class TrendSettings(BaseModel):
    """Daily price trend settings."""
    days: int = Field(default=7, ge=1)
    fill_policy: FillPolicy = FillPolicy.SPARSE
    plausibility_low: float = 0.1
    plausibility_high: float = 10.0
    confidence_per_observation: int = 20
    max_confidence: int = Field(default=95, le=100)
    carry_forward_penalty: int = 20
    outlier_factor: float = Field(default=50.0, gt=1)
    smoothing_penalty: int = 30


class DatabaseSettings(BaseModel):
    """Database connection settings."""
    db_path: str = str(DATA_DIR / "pack_engine.db")


class Settings(BaseModel):
    """Top-level application settings."""
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    grading: GradingSettings = Field(default_factory=GradingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    trends: TrendSettings = Field(default_factory=TrendSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @classmethod
    def load(cls, path: str | Path | None = None) -> Settings:
        """Load settings from YAML (config/settings.yaml by default), then env overrides."""
        settings_path = Path(path) if path else CONFIG_DIR / "settings.yaml"
        data: dict = {}
        if settings_path.exists():
            with open(settings_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        loaded = cls(**data)
        loaded._apply_env_overrides()
        return loaded

    def _apply_env_overrides(self) -> None:
        if db_path := os.getenv("PACK_ENGINE_DB_PATH"):
            self.database.db_path = db_path
        if ttl := os.getenv("PACK_ENGINE_CACHE_TTL"):
            self.cache.ttl_seconds = float(ttl)
        if iterations := os.getenv("PACK_ENGINE_MAX_ITERATIONS"):
            self.pricing.max_iterations = int(iterations)
        if policy := os.getenv("PACK_ENGINE_UNPRICED_POLICY"):
            self.grading.unpriced_policy = UnpricedPolicy(policy.strip().lower())

    @property
    def database_abs_path(self) -> Path:
        """Resolve database path relative to project root."""
        p = Path(self.database.db_path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


# Singleton settings instance
settings = Settings.load()
