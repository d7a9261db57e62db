"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that computation code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import Field, ConfigDict
from coralstats.schemas.base import CoralBaseModel


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalDataConfig(CoralBaseModel):
    """Runtime dataset configuration.

    Note: data_dir may be None only when use_mock_data is True
    (validated in resolve_config()).
    """
    data_dir: Optional[str]
    survival_file: str
    growth_file: str
    fragmentation_file: str
    use_mock_data: bool
    mock_seed: int


class InternalSizeClassConfig(CoralBaseModel):
    """Runtime size-class configuration."""
    breakpoints: tuple[float, ...]
    labels: tuple[str, ...]


class InternalAggregationConfig(CoralBaseModel):
    """Runtime group summary configuration."""
    z_value: float
    min_n_by_size: int
    min_n_transitions: int


class InternalSurvivalModelConfig(CoralBaseModel):
    """Runtime logistic model configuration."""
    min_n: int
    min_n_growth_model: int
    n_prediction_points: int
    max_iter: int
    z_value: float


class InternalI2ThresholdsConfig(CoralBaseModel):
    """Runtime heterogeneity label thresholds."""
    moderate: float
    substantial: float
    considerable: float


class InternalMetaAnalysisConfig(CoralBaseModel):
    """Runtime meta-analysis configuration."""
    continuity_correction: float
    z_value: float
    i2_thresholds: InternalI2ThresholdsConfig
    egger_min_studies: int
    egger_alpha: float


class InternalPopulationConfig(CoralBaseModel):
    """Runtime population model configuration."""
    bootstrap_replicates: int
    min_bootstrap_replicates: int
    seed: Optional[int]  # None draws fresh entropy
    n_jobs: int
    eigen_tolerance: float
    elasticity_tolerance_pct: float
    min_final_size: float
    ci_level: float
    projection_years: int = Field(ge=1, le=100)


class InternalScenarioConfig(CoralBaseModel):
    """Runtime scenario configuration."""
    improvement_pct: float
    target_lambda: float
    significant_elasticity_pct: float
    max_iterations: int
    lambda_tolerance: float
    feasible_pct: float
    moderate_pct: float


class InternalQualityConfig(CoralBaseModel):
    """Runtime data-quality thresholds."""
    dominant_threshold: float
    min_n: int
    r_squared_floor: float
    fragment_minority_pct: float
    min_class_n: int
    min_regions: int


class InternalRecommendationConfig(CoralBaseModel):
    """Runtime outplant recommendation thresholds."""
    min_survival_n: int
    min_growth_n: int
    z_value: float
    high_min_survival_n: int
    high_min_growth_n: int
    high_max_se: float
    high_min_studies: int
    medium_min_survival_n: int
    medium_min_growth_n: int
    medium_min_studies: int
    limited_survival_n: int
    limited_growth_n: int


class InternalServerConfig(CoralBaseModel):
    """Runtime server settings."""
    host: str
    port: int
    api_prefix: str


class InternalLoggingConfig(CoralBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    log_file: Optional[str]


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(CoralBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that computation code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters.

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.replicates = config.population.bootstrap_replicates  # NOT .get()

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    data: InternalDataConfig
    size_classes: InternalSizeClassConfig
    aggregation: InternalAggregationConfig
    survival_model: InternalSurvivalModelConfig
    meta_analysis: InternalMetaAnalysisConfig
    population: InternalPopulationConfig
    scenarios: InternalScenarioConfig
    quality: InternalQualityConfig
    recommendation: InternalRecommendationConfig
    server: InternalServerConfig
    logging: InternalLoggingConfig

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
