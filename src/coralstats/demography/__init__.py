"""Demographic statistics: size classes, group summaries, survival models,
meta-analysis, the matrix population model, restoration scenarios,
outplant recommendations and data-quality assessment."""

from coralstats.demography.size_classes import SizeClass, SizeClassifier, classify
from coralstats.demography.aggregator import GroupSummary, aggregate
from coralstats.demography.survival_model import SurvivalModelFit, fit_logistic
from coralstats.demography.meta_analysis import MetaAnalysisResult, StudyEffect, analyze
from coralstats.demography.transitions import TransitionCounts, count_transitions
from coralstats.demography.population_matrix import (
    PopulationMatrixEngine,
    PopulationModelResult,
    TransitionMatrix,
    build,
    solve,
)
from coralstats.demography.scenarios import path_to_stability, perturb
from coralstats.demography.quality import QualityAssessor, QualityMetrics, assess
from coralstats.demography.recommendation import OutplantRecommendation, OutplantRecommender

__all__ = [
    "SizeClass", "SizeClassifier", "classify",
    "GroupSummary", "aggregate",
    "SurvivalModelFit", "fit_logistic",
    "MetaAnalysisResult", "StudyEffect", "analyze",
    "TransitionCounts", "count_transitions",
    "PopulationMatrixEngine", "PopulationModelResult", "TransitionMatrix", "build", "solve",
    "path_to_stability", "perturb",
    "QualityAssessor", "QualityMetrics", "assess",
    "OutplantRecommendation", "OutplantRecommender",
]
