"""Data-quality indicators and human-readable warnings."""

from dataclasses import dataclass, field
from typing import Optional
import logging

import pandas as pd

from coralstats.demography.size_classes import SizeClassifier
from coralstats.demography.survival_model import SurvivalModelFit

__all__ = ['QualityMetrics', 'QualityAssessor', 'assess']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityMetrics:
    r_squared: Optional[float]
    sample_size: int
    n_studies: int
    n_regions: int
    dominant_study: Optional[dict]
    fragment_mix: dict
    year_range: Optional[tuple]
    size_class_n: dict
    warnings: tuple = field(default_factory=tuple)


class QualityAssessor:
    """Derive quality indicators for a set of observations.

    Warning rules fire independently and are always emitted in this order:

    1. pseudo-R² below ``r_squared_floor``
    2. one study above ``dominant_threshold`` of the records
    3. both fragments and colonies above ``fragment_minority_pct``
    4. fewer than ``min_n`` records
    5. size classes with fewer than ``min_class_n`` records
    6. fewer than ``min_regions`` regions

    Every message quotes the value that triggered it.
    """

    def __init__(self, dominant_threshold: float = 0.5, min_n: int = 100,
                 r_squared_floor: float = 0.10, fragment_minority_pct: float = 10.0,
                 min_class_n: int = 30, min_regions: int = 3,
                 classifier: Optional[SizeClassifier] = None):
        self.dominant_threshold = dominant_threshold
        self.min_n = min_n
        self.r_squared_floor = r_squared_floor
        self.fragment_minority_pct = fragment_minority_pct
        self.min_class_n = min_class_n
        self.min_regions = min_regions
        self.classifier = classifier

    @classmethod
    def from_config(cls, config, classifier: Optional[SizeClassifier] = None) -> "QualityAssessor":
        """Build from an ``InternalQualityConfig``."""
        return cls(config.dominant_threshold, config.min_n, config.r_squared_floor,
                   config.fragment_minority_pct, config.min_class_n, config.min_regions,
                   classifier)

    def assess(self, observations: pd.DataFrame,
               model_fit: Optional[SurvivalModelFit] = None) -> QualityMetrics:
        n = len(observations)
        r_squared = model_fit.pseudo_r_squared if model_fit is not None else None

        dominant = None
        studies = observations["study"].dropna() if "study" in observations else pd.Series(dtype=object)
        if len(studies):
            counts = studies.value_counts()
            dominant = {
                "name": str(counts.index[0]),
                "n": int(counts.iloc[0]),
                "pct": float(counts.iloc[0] / n * 100.0),
            }

        statuses = observations.get("fragment_status", pd.Series(dtype=object))
        fragment_pct = float((statuses == "fragment").sum() / n * 100.0) if n else 0.0
        colony_pct = float((statuses == "colony").sum() / n * 100.0) if n else 0.0
        mixed = (fragment_pct > self.fragment_minority_pct
                 and colony_pct > self.fragment_minority_pct)

        year_range = None
        if "survey_year" in observations and observations["survey_year"].notna().any():
            years = observations["survey_year"].dropna()
            year_range = (int(years.min()), int(years.max()))

        size_class_n = {}
        if self.classifier is not None and "size_cm2" in observations:
            classes = pd.Series(self.classifier.classify_series(observations["size_cm2"]))
            size_class_n = {label: int((classes == label).sum()) for label in self.classifier.labels}

        n_regions = int(observations["region"].nunique()) if "region" in observations else 0

        warnings = []
        if r_squared is not None and r_squared < self.r_squared_floor:
            warnings.append(
                f"Size explains only {r_squared * 100:.1f}% of survival variance - "
                f"other factors dominate"
            )
        if dominant is not None and dominant["pct"] > self.dominant_threshold * 100.0:
            warnings.append(
                f"{dominant['pct']:.0f}% of data from a single study ({dominant['name']}) - "
                f"results may not generalize to other populations"
            )
        if mixed:
            warnings.append(
                f"Data contains mixed fragments ({fragment_pct:.0f}%) and colonies "
                f"({colony_pct:.0f}%) - consider analyzing separately"
            )
        if n < self.min_n:
            warnings.append(f"Limited sample size (n={n}, recommended >= {self.min_n})")
        low = [f"{label} (n={count})" for label, count in size_class_n.items()
               if count < self.min_class_n]
        if low:
            warnings.append(
                f"Limited data (n < {self.min_class_n}) in size classes: {', '.join(low)}"
            )
        if n_regions < self.min_regions:
            warnings.append(
                f"Data from only {n_regions} region(s) - limited geographic generalizability"
            )

        if warnings:
            logger.debug("Quality warnings: %s", warnings)
        return QualityMetrics(
            r_squared=r_squared,
            sample_size=n,
            n_studies=int(studies.nunique()),
            n_regions=n_regions,
            dominant_study=dominant,
            fragment_mix={"mixed": mixed, "fragment_pct": fragment_pct, "colony_pct": colony_pct},
            year_range=year_range,
            size_class_n=size_class_n,
            warnings=tuple(warnings),
        )


def assess(observations: pd.DataFrame, model_fit: Optional[SurvivalModelFit] = None,
           dominant_threshold: float = 0.5, min_n: int = 100, **thresholds) -> QualityMetrics:
    """Functional form of ``QualityAssessor(...).assess``."""
    return QualityAssessor(dominant_threshold=dominant_threshold, min_n=min_n,
                           **thresholds).assess(observations, model_fit)
