"""Outplant size-class recommendation.

Each size class present in both the survival and the growth tables gets a
survival outlook and a growth outlook:

- survival rate with a standard error inflated by the between-study
  variance τ² (method of moments on study-level rates), a confidence
  interval for the mean and a wider prediction interval for a new site
- mean, median and SD of growth, plus the share of colonies growing and
  shrinking

Classes are scored per goal. ``survival`` uses the survival rate,
``growth`` the share of colonies with positive growth and ``balance`` the
mean of the two. The best-scoring class is recommended (ties go to the
smaller class) together with a confidence level and caveats.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging
import math

import pandas as pd

from coralstats.demography.size_classes import SizeClassifier
from coralstats.errors import InsufficientData, InvalidParameter

__all__ = [
    'GOALS',
    'SCORING_METHODS',
    'SizeClassOutlook',
    'OutplantRecommendation',
    'OutplantRecommender',
    'validate_goal',
    'goal_score',
    'survival_by_class',
    'growth_by_class',
]

logger = logging.getLogger(__name__)

GOALS = ("survival", "growth", "balance")

SCORING_METHODS = {
    "survival": "100% survival rate weight",
    "growth": "100% positive growth probability weight",
    "balance": "50% survival + 50% positive growth probability",
}


def validate_goal(goal) -> str:
    """Return ``goal`` or raise InvalidParameter."""
    if goal not in GOALS:
        raise InvalidParameter(
            f"Parameter 'goal' must be one of: {', '.join(GOALS)}",
            parameter="goal", value=goal, details={"allowed": list(GOALS)},
        )
    return goal


def goal_score(survival_rate: float, pct_growing: float, goal: str) -> float:
    """Score in [0, 1]; higher is better."""
    growing = pct_growing / 100.0
    if goal == "survival":
        return survival_rate
    if goal == "growth":
        return growing
    return 0.5 * survival_rate + 0.5 * growing


def _size_range(classifier: SizeClassifier, index: int) -> str:
    size_class = classifier.classes[index]
    if index == classifier.n_classes - 1:
        return f">{size_class.lower:g} cm²"
    return f"{size_class.lower:g}-{size_class.upper:g} cm²"


def survival_by_class(observations: pd.DataFrame, classifier: SizeClassifier,
                      z: float = 1.96) -> dict:
    """Per-class survival with between-study uncertainty.

    Returns
    -------
    dict
        Size-class label to a dict with ``n``, ``rate``, ``n_studies``,
        ``tau_squared``, ``se`` (for the mean), ``se_prediction`` and the
        clipped ``ci_*`` / ``pi_*`` bounds.
    """
    df = pd.DataFrame({
        "size_class": classifier.classify_series(observations["size_cm2"]),
        "survived": pd.to_numeric(observations["survived"], errors="coerce").to_numpy(),
        "study": observations["study"].fillna("unknown").to_numpy(),
    }).dropna(subset=["size_class", "survived"])

    out = {}
    for label, group in df.groupby("size_class", observed=True, sort=True):
        n = len(group)
        rate = float(group["survived"].mean())
        studies = group.groupby("study")["survived"].agg(["size", "mean"])
        n_studies = len(studies)
        tau_squared = 0.0
        if n_studies > 1:
            within = (studies["mean"] * (1 - studies["mean"]) / studies["size"]).mean()
            tau_squared = max(0.0, float(studies["mean"].var(ddof=1) - within))
        se_naive = math.sqrt(rate * (1 - rate) / n)
        se = math.sqrt(se_naive ** 2 + tau_squared / n_studies) if n_studies > 1 else se_naive
        se_prediction = math.sqrt(se_naive ** 2 + tau_squared)
        out[str(label)] = {
            "n": n,
            "rate": rate,
            "n_studies": n_studies,
            "tau_squared": tau_squared,
            "se": se,
            "se_prediction": se_prediction,
            "ci_lower": max(0.0, rate - z * se),
            "ci_upper": min(1.0, rate + z * se),
            "pi_lower": max(0.0, rate - z * se_prediction),
            "pi_upper": min(1.0, rate + z * se_prediction),
        }
    return out


def growth_by_class(observations: pd.DataFrame, classifier: SizeClassifier) -> dict:
    """Per-class growth summaries; rows without a growth value are ignored."""
    df = pd.DataFrame({
        "size_class": classifier.classify_series(observations["size_cm2"]),
        "growth": pd.to_numeric(observations["growth_cm2_yr"], errors="coerce").to_numpy(),
    }).dropna(subset=["size_class", "growth"])

    out = {}
    for label, group in df.groupby("size_class", observed=True, sort=True):
        growth = group["growth"]
        out[str(label)] = {
            "n": len(growth),
            "mean": float(growth.mean()),
            "median": float(growth.median()),
            "sd": float(growth.std(ddof=1)),
            "pct_growing": float((growth > 0).mean() * 100.0),
            "pct_shrinking": float((growth < 0).mean() * 100.0),
        }
    return out


@dataclass(frozen=True)
class SizeClassOutlook:
    size_class: str
    size_range: str
    survival_rate: float
    survival_se: float
    survival_ci_lower: float
    survival_ci_upper: float
    survival_pi_lower: float
    survival_pi_upper: float
    survival_n: int
    n_studies: int
    tau_squared: float
    mean_growth: float
    median_growth: float
    sd_growth: float
    pct_growing: float
    pct_shrinking: float
    growth_n: int
    score_survival: float
    score_growth: float
    score_balance: float
    confidence: str

    def score(self, goal: str) -> float:
        return getattr(self, f"score_{goal}")


@dataclass(frozen=True)
class OutplantRecommendation:
    goal: str
    recommended: SizeClassOutlook
    classes: tuple          # best score first
    confidence: str
    caveats: tuple = field(default_factory=tuple)

    @property
    def scoring_method(self) -> str:
        return SCORING_METHODS[self.goal]


class OutplantRecommender:
    """Recommend the outplant size class that best serves a goal.

    Confidence per class:

    - ``very_low``: fewer than ``medium_min_studies`` studies
    - ``high``: at least ``high_min_survival_n`` survival and
      ``high_min_growth_n`` growth records, SE below ``high_max_se`` and
      at least ``high_min_studies`` studies
    - ``medium``: at least the ``medium_*`` counts
    - ``low``: everything else
    """

    def __init__(self, classifier: SizeClassifier, z_value: float = 1.96,
                 min_survival_n: int = 30, min_growth_n: int = 20,
                 high_min_survival_n: int = 100, high_min_growth_n: int = 50,
                 high_max_se: float = 0.05, high_min_studies: int = 5,
                 medium_min_survival_n: int = 30, medium_min_growth_n: int = 20,
                 medium_min_studies: int = 3, limited_survival_n: int = 50,
                 limited_growth_n: int = 30):
        self.classifier = classifier
        self.z_value = z_value
        self.min_survival_n = min_survival_n
        self.min_growth_n = min_growth_n
        self.high_min_survival_n = high_min_survival_n
        self.high_min_growth_n = high_min_growth_n
        self.high_max_se = high_max_se
        self.high_min_studies = high_min_studies
        self.medium_min_survival_n = medium_min_survival_n
        self.medium_min_growth_n = medium_min_growth_n
        self.medium_min_studies = medium_min_studies
        self.limited_survival_n = limited_survival_n
        self.limited_growth_n = limited_growth_n

    @classmethod
    def from_config(cls, config, classifier: SizeClassifier) -> "OutplantRecommender":
        """Build from an ``InternalRecommendationConfig``."""
        return cls(classifier, **config.model_dump())

    def confidence_level(self, n_survival: int, n_growth: int, se_survival: Optional[float],
                         n_studies: int) -> str:
        if n_studies < self.medium_min_studies:
            return "very_low"
        if (n_survival >= self.high_min_survival_n and n_growth >= self.high_min_growth_n
                and se_survival is not None and se_survival < self.high_max_se
                and n_studies >= self.high_min_studies):
            return "high"
        if n_survival >= self.medium_min_survival_n and n_growth >= self.medium_min_growth_n:
            return "medium"
        return "low"

    def compare(self, survival: pd.DataFrame, growth: pd.DataFrame) -> list:
        """Outlook for every class with both survival and growth data, smallest first.

        Raises
        ------
        InsufficientData
            No size class has both survival and growth records.
        """
        surv = survival_by_class(survival, self.classifier, self.z_value)
        grow = growth_by_class(growth, self.classifier)
        outlooks = []
        for index, label in enumerate(self.classifier.labels):
            if label not in surv or label not in grow:
                continue
            s, g = surv[label], grow[label]
            outlooks.append(SizeClassOutlook(
                size_class=label,
                size_range=_size_range(self.classifier, index),
                survival_rate=s["rate"],
                survival_se=s["se"],
                survival_ci_lower=s["ci_lower"],
                survival_ci_upper=s["ci_upper"],
                survival_pi_lower=s["pi_lower"],
                survival_pi_upper=s["pi_upper"],
                survival_n=s["n"],
                n_studies=s["n_studies"],
                tau_squared=s["tau_squared"],
                mean_growth=g["mean"],
                median_growth=g["median"],
                sd_growth=g["sd"],
                pct_growing=g["pct_growing"],
                pct_shrinking=g["pct_shrinking"],
                growth_n=g["n"],
                score_survival=goal_score(s["rate"], g["pct_growing"], "survival"),
                score_growth=goal_score(s["rate"], g["pct_growing"], "growth"),
                score_balance=goal_score(s["rate"], g["pct_growing"], "balance"),
                confidence=self.confidence_level(s["n"], g["n"], s["se"], s["n_studies"]),
            ))
        if not outlooks:
            raise InsufficientData("No size classes have both survival and growth data",
                                   n=0, minimum_required=1)
        return outlooks

    def recommend(self, survival: pd.DataFrame, growth: pd.DataFrame, goal: str = "balance",
                  regional: bool = False, fragment_status: Optional[str] = None,
                  r_squared: Optional[float] = None, dominant_study_pct: Optional[float] = None,
                  i_squared: Optional[float] = None) -> OutplantRecommendation:
        """Recommend a size class for ``goal``.

        Raises
        ------
        InvalidParameter
            Unknown goal.
        InsufficientData
            Too few survival or growth records, or no class with both.
        """
        validate_goal(goal)
        if len(survival) < self.min_survival_n:
            raise InsufficientData("Not enough survival data for reliable recommendation",
                                   n=len(survival), minimum_required=self.min_survival_n)
        if len(growth) < self.min_growth_n:
            raise InsufficientData("Not enough growth data for reliable recommendation",
                                   n=len(growth), minimum_required=self.min_growth_n)

        outlooks = self.compare(survival, growth)
        best = max(outlooks, key=lambda o: o.score(goal))
        ranked = sorted(outlooks, key=lambda o: -o.score(goal))
        caveats = self.caveats(best, goal, regional, fragment_status, r_squared,
                               dominant_study_pct, i_squared)
        logger.debug("Recommended %s for goal %s (score %.3f)", best.size_class, goal,
                     best.score(goal))
        return OutplantRecommendation(goal, best, tuple(ranked), best.confidence, tuple(caveats))

    def caveats(self, best: SizeClassOutlook, goal: str, regional: bool,
                fragment_status: Optional[str], r_squared: Optional[float],
                dominant_study_pct: Optional[float], i_squared: Optional[float]) -> list:
        notes = [
            "CRITICAL: Estimates do not model major disturbance events (disease, bleaching, "
            "hurricanes), which are the primary drivers of A. palmata mortality",
        ]
        heterogeneity = "" if i_squared is None else f" (I-squared = {i_squared:.1f}%)"
        notes.append(
            "Prediction intervals show the expected range for a new restoration site and are "
            f"wider than confidence intervals because of between-study heterogeneity{heterogeneity}"
        )
        if best.n_studies < self.medium_min_studies:
            notes.append(f"Very Low Confidence: Only {best.n_studies} study(ies) contribute "
                         f"data for this size class - estimates are unreliable")
        elif best.n_studies < self.high_min_studies:
            notes.append(f"Low Confidence: Only {best.n_studies} studies contribute data "
                         f"for this size class")
        if r_squared is not None:
            notes.append(f"Size explains only {r_squared * 100:.1f}% of survival variance")
        if best.survival_n < self.limited_survival_n:
            notes.append(f"Limited survival data for {best.size_class} (n={best.survival_n})")
        if best.growth_n < self.limited_growth_n:
            notes.append(f"Limited growth data for {best.size_class} (n={best.growth_n})")
        if dominant_study_pct is not None and dominant_study_pct > 50.0:
            notes.append(f"{dominant_study_pct:.0f}% of data from single study - "
                         f"results may not generalize")
        if regional:
            notes.append("Regional estimates may differ from pooled data shown")
        if fragment_status == "fragment":
            notes.append("Fragment survival typically lower than whole colonies")
        index = self.classifier.class_index(best.size_class)
        if goal == "survival" and index < 2:
            notes.append("Consider growing fragments larger before outplanting for better survival")
        if goal == "growth" and index >= self.classifier.n_classes - 2:
            notes.append("Large colonies grow slower relative to size but start closer to maturity")
        notes.append("Local site conditions may significantly affect outcomes")
        return notes
