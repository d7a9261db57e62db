"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., DATA_DIR → data_dir, BREAKPOINTS →
breakpoints).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected,
comma-separated strings where lists are expected, etc.
"""

from typing import Optional, Any
from pydantic import Field, field_validator
from coralstats.schemas.base import CoralBaseModel


class UserSizeClassConfig(CoralBaseModel):
    """User-facing size class config."""
    breakpoints: Optional[list[float]] = None
    labels: Optional[list[str]] = None

    @field_validator("breakpoints", mode="before")
    @classmethod
    def coerce_breakpoints(cls, v):
        """Accept '0,25,100,Inf' as well as lists."""
        if isinstance(v, str):
            v = [token.strip() for token in v.split(",") if token.strip()]
        if v is not None:
            return [float(b) for b in v]
        return v


class UserPopulationConfig(CoralBaseModel):
    """User-facing population model config."""
    bootstrap_replicates: Optional[int] = None
    min_bootstrap_replicates: Optional[int] = None
    seed: Optional[int] = None
    n_jobs: Optional[int] = None
    projection_years: Optional[int] = None


class UserQualityConfig(CoralBaseModel):
    """User-facing data-quality config."""
    dominant_threshold: Optional[float] = None
    min_n: Optional[int] = None
    r_squared_floor: Optional[float] = None
    fragment_minority_pct: Optional[float] = None

    @field_validator("dominant_threshold", "r_squared_floor", mode="before")
    @classmethod
    def accept_percentages(cls, v):
        """Accept 50 as well as 0.5."""
        if v is not None and float(v) > 1:
            return float(v) / 100.0
        return v


class UserConfig(CoralBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig(
            data_dir="/data/coral/standardized_data",
            breakpoints="0,25,100,500,2000,Inf",
            bootstrap_replicates=2000,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Data
    data_dir: Optional[str] = Field(None, alias="DATA_DIR")
    use_mock_data: Optional[bool] = Field(None, alias="USE_MOCK_DATA")

    # Size classes (flat aliases)
    breakpoints: Optional[list[float]] = Field(None, alias="BREAKPOINTS")

    # Models (flat aliases)
    min_n_model: Optional[int] = Field(None, alias="MIN_N_MODEL")
    bootstrap_replicates: Optional[int] = Field(None, alias="BOOTSTRAP_REPLICATES")
    seed: Optional[int] = Field(None, alias="SEED")
    improvement_pct: Optional[float] = Field(None, alias="IMPROVEMENT_PCT")
    target_lambda: Optional[float] = Field(None, alias="TARGET_LAMBDA")

    # Quality (flat aliases)
    dominant_threshold: Optional[float] = Field(None, alias="DOMINANT_THRESHOLD")
    min_n_quality: Optional[int] = Field(None, alias="MIN_N_QUALITY")

    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")

    # Nested overrides (advanced users)
    size_classes: Optional[UserSizeClassConfig] = None
    population: Optional[UserPopulationConfig] = None
    quality: Optional[UserQualityConfig] = None
    aggregation: Optional[dict[str, Any]] = None
    survival_model: Optional[dict[str, Any]] = None
    meta_analysis: Optional[dict[str, Any]] = None
    scenarios: Optional[dict[str, Any]] = None
    recommendation: Optional[dict[str, Any]] = None
    server: Optional[dict[str, Any]] = None

    model_config = CoralBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("breakpoints", mode="before")
    @classmethod
    def coerce_breakpoints(cls, v):
        if isinstance(v, str):
            v = [token.strip() for token in v.split(",") if token.strip()]
        if v is not None:
            return [float(b) for b in v]
        return v

    @field_validator("dominant_threshold", mode="before")
    @classmethod
    def accept_percentage(cls, v):
        """Accept 50 as well as 0.5."""
        if v is not None and float(v) > 1:
            return float(v) / 100.0
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        data = {}
        if self.data_dir is not None:
            data["data_dir"] = str(self.data_dir)
        if self.use_mock_data is not None:
            data["use_mock_data"] = self.use_mock_data
        if data:
            overrides["data"] = data

        size_classes = {}
        if self.breakpoints is not None:
            size_classes["breakpoints"] = self.breakpoints
        if self.size_classes is not None:
            size_classes.update(self.size_classes.model_dump(exclude_none=True))
        if size_classes:
            overrides["size_classes"] = size_classes

        survival_model = {}
        if self.min_n_model is not None:
            survival_model["min_n"] = self.min_n_model
        if self.survival_model is not None:
            survival_model.update(self.survival_model)
        if survival_model:
            overrides["survival_model"] = survival_model

        population = {}
        if self.bootstrap_replicates is not None:
            population["bootstrap_replicates"] = self.bootstrap_replicates
        if self.seed is not None:
            population["seed"] = self.seed
        if self.population is not None:
            population.update(self.population.model_dump(exclude_none=True))
        if population:
            overrides["population"] = population

        scenarios = {}
        if self.improvement_pct is not None:
            scenarios["improvement_pct"] = self.improvement_pct
        if self.target_lambda is not None:
            scenarios["target_lambda"] = self.target_lambda
        if self.scenarios is not None:
            scenarios.update(self.scenarios)
        if scenarios:
            overrides["scenarios"] = scenarios

        quality = {}
        if self.dominant_threshold is not None:
            quality["dominant_threshold"] = self.dominant_threshold
        if self.min_n_quality is not None:
            quality["min_n"] = self.min_n_quality
        if self.quality is not None:
            quality.update(self.quality.model_dump(exclude_none=True))
        if quality:
            overrides["quality"] = quality

        for section in ("aggregation", "meta_analysis", "recommendation", "server"):
            value = getattr(self, section)
            if value:
                overrides[section] = dict(value)

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
