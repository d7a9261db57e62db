"""ParamConfig: Expert defaults for coralstats.

This module defines the complete default configuration. ALL engine
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

import math
from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from coralstats.schemas.base import CoralBaseModel


DEFAULT_BREAKPOINTS = [0.0, 25.0, 100.0, 500.0, 2000.0, math.inf]


# =============================================================================
# Nested Configuration Models
# =============================================================================

class DataConfig(CoralBaseModel):
    """Observation dataset location and file names."""
    data_dir: Optional[str] = None
    survival_file: str = "apal_surv_ind.csv"
    growth_file: str = "apal_growth_ind.csv"
    fragmentation_file: str = "apal_fragmentation.csv"
    use_mock_data: bool = False
    mock_seed: int = 42


class SizeClassConfig(CoralBaseModel):
    """Size-class breakpoints in cm² (half-open on the left)."""
    breakpoints: list[float] = Field(default_factory=lambda: list(DEFAULT_BREAKPOINTS))
    labels: Optional[list[str]] = None

    @field_validator("breakpoints", mode="before")
    @classmethod
    def coerce_breakpoints(cls, v):
        """Accept comma-separated strings and 'Inf' tokens."""
        if isinstance(v, str):
            v = [token.strip() for token in v.split(",") if token.strip()]
        return [float(b) for b in v]

    @field_validator("breakpoints")
    @classmethod
    def require_ascending(cls, v):
        if len(v) < 2:
            raise ValueError("at least 2 breakpoints are required")
        if any(math.isnan(b) for b in v):
            raise ValueError("breakpoints must not contain NaN")
        if any(lo >= hi for lo, hi in zip(v, v[1:])):
            raise ValueError(f"breakpoints must be strictly ascending, got {v}")
        return v

    @model_validator(mode="after")
    def labels_match_classes(self):
        if self.labels is not None and len(self.labels) != len(self.breakpoints) - 1:
            raise ValueError(
                f"{len(self.breakpoints) - 1} size classes need as many labels, "
                f"got {len(self.labels)}"
            )
        return self


class AggregationConfig(CoralBaseModel):
    """Group summary settings."""
    z_value: float = Field(1.96, gt=0)
    min_n_by_size: int = Field(10, ge=1)
    min_n_transitions: int = Field(20, ge=1)


class SurvivalModelConfig(CoralBaseModel):
    """Logistic survival (and positive-growth) model settings."""
    min_n: int = Field(30, ge=3)
    min_n_growth_model: int = Field(50, ge=3)
    n_prediction_points: int = Field(100, ge=2)
    max_iter: int = Field(100, ge=1)
    z_value: float = Field(1.96, gt=0)


class I2ThresholdsConfig(CoralBaseModel):
    """Lower bounds (exclusive, in %) of each heterogeneity label."""
    moderate: float = Field(25.0, ge=0, le=100)
    substantial: float = Field(50.0, ge=0, le=100)
    considerable: float = Field(75.0, ge=0, le=100)

    @model_validator(mode="after")
    def ordered(self):
        if not (self.moderate <= self.substantial <= self.considerable):
            raise ValueError("I² thresholds must be non-decreasing")
        return self


class MetaAnalysisConfig(CoralBaseModel):
    """Random-effects meta-analysis settings."""
    continuity_correction: float = Field(0.5, gt=0)
    z_value: float = Field(1.96, gt=0)
    i2_thresholds: I2ThresholdsConfig = Field(default_factory=I2ThresholdsConfig)
    egger_min_studies: int = Field(3, ge=3)
    egger_alpha: float = Field(0.05, gt=0, lt=1)


class PopulationConfig(CoralBaseModel):
    """Lefkovitch matrix model and bootstrap settings."""
    bootstrap_replicates: int = Field(1000, ge=1)
    min_bootstrap_replicates: int = Field(500, ge=1)
    seed: Optional[int] = 42
    n_jobs: int = Field(1, ge=1)
    eigen_tolerance: float = Field(1e-8, gt=0)
    elasticity_tolerance_pct: float = Field(0.5, gt=0)
    min_final_size: float = Field(1.0, ge=0)
    ci_level: float = Field(0.95, gt=0, lt=1)
    projection_years: int = Field(20, ge=1, le=100)


class ScenarioConfig(CoralBaseModel):
    """Restoration scenario and path-to-stability settings."""
    improvement_pct: float = Field(10.0, gt=0, le=100)
    target_lambda: float = Field(1.0, gt=0)
    significant_elasticity_pct: float = Field(0.5, ge=0)
    max_iterations: int = Field(60, ge=1)
    lambda_tolerance: float = Field(1e-4, gt=0)
    feasible_pct: float = Field(10.0, gt=0)
    moderate_pct: float = Field(25.0, gt=0)


class QualityConfig(CoralBaseModel):
    """Data-quality warning thresholds."""
    dominant_threshold: float = Field(0.5, gt=0, le=1)
    min_n: int = Field(100, ge=1)
    r_squared_floor: float = Field(0.10, ge=0, le=1)
    fragment_minority_pct: float = Field(10.0, ge=0, le=50)
    min_class_n: int = Field(30, ge=0)
    min_regions: int = Field(3, ge=0)


class RecommendationConfig(CoralBaseModel):
    """Outplant size recommendation thresholds."""
    min_survival_n: int = Field(30, ge=1)
    min_growth_n: int = Field(20, ge=1)
    z_value: float = Field(1.96, gt=0)
    high_min_survival_n: int = Field(100, ge=1)
    high_min_growth_n: int = Field(50, ge=1)
    high_max_se: float = Field(0.05, gt=0)
    high_min_studies: int = Field(5, ge=1)
    medium_min_survival_n: int = Field(30, ge=1)
    medium_min_growth_n: int = Field(20, ge=1)
    medium_min_studies: int = Field(3, ge=1)
    limited_survival_n: int = Field(50, ge=0)
    limited_growth_n: int = Field(30, ge=0)


class ServerConfig(CoralBaseModel):
    """HTTP server settings."""
    host: str = "127.0.0.1"
    port: int = Field(8000, ge=1, le=65535)
    api_prefix: str = "/api"


class LoggingConfig(CoralBaseModel):
    """Logging settings."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(CoralBaseModel):
    """Complete expert configuration with all defaults."""
    data: DataConfig = Field(default_factory=DataConfig)
    size_classes: SizeClassConfig = Field(default_factory=SizeClassConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    survival_model: SurvivalModelConfig = Field(default_factory=SurvivalModelConfig)
    meta_analysis: MetaAnalysisConfig = Field(default_factory=MetaAnalysisConfig)
    population: PopulationConfig = Field(default_factory=PopulationConfig)
    scenarios: ScenarioConfig = Field(default_factory=ScenarioConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    recommendation: RecommendationConfig = Field(default_factory=RecommendationConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
