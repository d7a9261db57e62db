"""Query service: one method per API route.

CoralQueryService binds an ObservationRepository and an InternalConfig and
turns parsed query parameters into result objects. It raises
CoralStatsError subclasses for every failure; the HTTP layer only wraps
results and errors into envelopes.

Each call filters its own copy of the data and computes from scratch, so
the service holds no mutable state and can serve concurrent requests.
"""

from dataclasses import asdict, dataclass, field
import logging

import numpy as np
import pandas as pd

from coralstats.api.params import (
    parse_breaks,
    parse_csv_list,
    parse_fragment,
    parse_number,
    parse_range,
    sanitize_string,
)
from coralstats.core.repository import (
    DATA_TYPES,
    ObservationFilter,
    ObservationRepository,
    unfiltered_columns,
)
from coralstats.demography.aggregator import aggregate
from coralstats.demography.meta_analysis import analyze, study_effects_from_observations
from coralstats.demography.population_matrix import (
    PopulationMatrixEngine,
    dominant_eigenvalue,
    project_population,
    transition_type,
)
from coralstats.demography.quality import QualityAssessor
from coralstats.demography.recommendation import (
    SCORING_METHODS,
    OutplantRecommender,
    validate_goal,
)
from coralstats.demography.scenarios import (
    SCENARIOS,
    apply_improvement,
    feasibility_label,
    individual_perturbations,
    max_feasible_improvement,
    path_to_stability,
    restoration_action,
    scenario_cells,
    significant_cells,
)
from coralstats.demography.size_classes import SizeClassifier
from coralstats.demography.survival_model import fit_logistic, size_at_probability
from coralstats.demography.transitions import count_transitions, transition_probabilities
from coralstats.errors import (
    InsufficientData,
    InvalidParameter,
    ModelFittingFailed,
    NoDataFound,
    Unreachable,
)
from coralstats.schemas.internal import InternalConfig

__all__ = ['CoralQueryService', 'QueryResult']

logger = logging.getLogger(__name__)

YEAR_BOUNDS = (1900, 2100)
CATEGORY_BY_TYPE = {"stasis": "Survival", "growth": "Growth",
                    "shrinkage": "Shrinkage", "fragmentation": "Reproduction"}


@dataclass(frozen=True)
class QueryResult:
    data: object
    meta: dict = field(default_factory=dict)


def _coral_type(data_type: pd.Series) -> pd.Series:
    """field → Natural, nursery_* → Restored."""
    return data_type.map(lambda t: "Restored" if "nursery" in str(t).lower()
                         else ("Natural" if t == "field" else "Other"))


class CoralQueryService:
    """Route-level operations over an immutable repository.

    Parameters
    ----------
    repository : ObservationRepository
    config : InternalConfig
    """

    def __init__(self, repository: ObservationRepository, config: InternalConfig):
        self.repository = repository
        self.config = config
        self.classifier = SizeClassifier.from_config(config.size_classes)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _filter(self, region="", data_type="", year_min=None, year_max=None,
                size_min=None, size_max=None, fragment="",
                fragment_parameter: str = "fragment") -> ObservationFilter:
        return ObservationFilter(
            regions=parse_csv_list(region, "region"),
            data_types=parse_csv_list(data_type, "data_type", allowed=DATA_TYPES),
            year_range=parse_range(year_min, year_max, "year_min", "year_max",
                                   minimum=YEAR_BOUNDS[0], maximum=YEAR_BOUNDS[1]),
            size_range=parse_range(size_min, size_max, "size_min", "size_max", minimum=0),
            fragment_status=parse_fragment(fragment, fragment_parameter),
        )

    @staticmethod
    def _require_rows(df: pd.DataFrame, flt: ObservationFilter, what: str) -> None:
        if len(df) == 0:
            raise NoDataFound(f"No {what} records match the specified filters",
                              details={"filters": flt.describe()})

    def _require_n(self, df: pd.DataFrame, minimum: int, flt: ObservationFilter,
                   message: str) -> None:
        if len(df) < minimum:
            raise InsufficientData(message, n=len(df), minimum_required=minimum,
                                   details={"filters": flt.describe()})

    def _size_table(self, df: pd.DataFrame, classifier: SizeClassifier) -> pd.DataFrame:
        out = df.copy()
        out["size_class"] = classifier.classify_series(out["size_cm2"])
        return out

    def _records(self, summaries) -> list:
        return [s.to_record() for s in summaries]

    # ------------------------------------------------------------------
    # Survival
    # ------------------------------------------------------------------

    def survival_individual(self, region="", data_type="", year_min=None, year_max=None,
                            size_min=None, size_max=None, fragment="") -> QueryResult:
        flt = self._filter(region, data_type, year_min, year_max, size_min, size_max, fragment)
        df = self.repository.survival(flt)
        self._require_rows(df, flt, "survival")
        return QueryResult(df, self._observation_meta(df))

    def survival_by_size(self, region="", data_type="", fragment="", breaks="") -> QueryResult:
        flt = self._filter(region, data_type, fragment=fragment)
        custom = parse_breaks(breaks)
        classifier = SizeClassifier(custom) if custom is not None else self.classifier
        df = self.repository.survival(flt)
        self._require_rows(df, flt, "survival")
        minimum = self.config.aggregation.min_n_by_size
        self._require_n(df, minimum, flt,
                        f"Not enough data for size class analysis (minimum {minimum} records required)")
        summaries = aggregate(self._size_table(df, classifier), ["size_class"], "survived",
                              kind="binary", sort="key", z=self.config.aggregation.z_value)
        return QueryResult(self._records(summaries), {
            "total_records": len(df),
            "size_classes": len(summaries),
            "breaks": list(classifier.breakpoints),
            "labels": list(classifier.labels),
        })

    def survival_model(self, region="", data_type="") -> QueryResult:
        flt = self._filter(region, data_type)
        df = self.repository.survival(flt)
        self._require_rows(df, flt, "survival")
        cfg = self.config.survival_model
        model_fit = fit_logistic(df, "survived", min_n=cfg.min_n, n_points=cfg.n_prediction_points,
                                 z=cfg.z_value, max_iter=cfg.max_iter)
        return QueryResult(model_fit, {
            "r_squared": model_fit.pseudo_r_squared,
            "n": model_fit.n,
            "deviance_explained": model_fit.deviance_explained_pct,
            "formula": "survived ~ log(size_cm2)",
        })

    def survival_by_size_and_type(self, region="") -> QueryResult:
        flt = self._filter(region)
        df = self.repository.survival(flt)
        self._require_rows(df, flt, "survival")
        df["coral_type"] = _coral_type(df["data_type"])
        df = df[df["coral_type"].isin(["Natural", "Restored"])]
        minimum = self.config.aggregation.min_n_by_size
        self._require_n(df, minimum, flt,
                        "Not enough Natural or Restored coral data for this analysis")
        summaries = aggregate(self._size_table(df, self.classifier), ["size_class", "coral_type"],
                              "survived", kind="binary", sort="key",
                              z=self.config.aggregation.z_value)
        return QueryResult(self._records(summaries), {
            "total_records": len(df),
            "coral_types": sorted(df["coral_type"].unique().tolist()),
        })

    def survival_by_study(self, region="", data_type="") -> QueryResult:
        flt = self._filter(region, data_type)
        df = self.repository.survival(flt)
        self._require_rows(df, flt, "survival")
        summaries = aggregate(df, ["study", "region"], "survived", kind="binary", sort="n",
                              z=self.config.aggregation.z_value)
        return QueryResult(self._records(summaries), {
            "total_records": len(df),
            "n_studies": int(df["study"].nunique()),
        })

    def survival_by_study_stratified(self, fragment_status="") -> QueryResult:
        flt = self._filter(fragment=fragment_status, fragment_parameter="fragment_status")
        df = self.repository.survival(flt)
        if len(df) == 0:
            raise NoDataFound("No survival records match the specified fragment status",
                              details={"fragment_status": fragment_status})
        summaries = aggregate(df, ["study", "fragment_status"], "survived", kind="binary",
                              sort="n", z=self.config.aggregation.z_value)
        quality = self._quality(df)
        return QueryResult(self._records(summaries), {
            "total_n": len(df),
            "n_studies": int(df["study"].nunique()),
            "quality": quality,
        })

    # ------------------------------------------------------------------
    # Growth
    # ------------------------------------------------------------------

    def growth_individual(self, region="", data_type="", year_min=None, year_max=None) -> QueryResult:
        flt = self._filter(region, data_type, year_min, year_max)
        df = self.repository.growth(flt)
        self._require_rows(df, flt, "growth")
        return QueryResult(df, self._observation_meta(df))

    def growth_by_size(self, region="", data_type="", fragment="") -> QueryResult:
        flt = self._filter(region, data_type, fragment=fragment)
        df = self.repository.growth(flt)
        self._require_rows(df, flt, "growth")
        minimum = self.config.aggregation.min_n_by_size
        self._require_n(df, minimum, flt,
                        f"Not enough data for size class analysis (minimum {minimum} records required)")
        summaries = aggregate(self._size_table(df, self.classifier), ["size_class"],
                              "growth_cm2_yr", kind="continuous", sort="key",
                              z=self.config.aggregation.z_value)
        return QueryResult(self._records(summaries), {"total_records": len(df)})

    def growth_by_study(self, region="", data_type="") -> QueryResult:
        flt = self._filter(region, data_type)
        df = self.repository.growth(flt)
        self._require_rows(df, flt, "growth")
        summaries = aggregate(df, ["study", "region"], "growth_cm2_yr", kind="continuous",
                              sort="n", z=self.config.aggregation.z_value)
        return QueryResult(self._records(summaries), {
            "total_records": len(df),
            "n_studies": int(df["study"].nunique()),
        })

    def growth_fragmentation_by_size(self, region="") -> QueryResult:
        """Share of shrinking colonies per size class and coral type."""
        flt = self._filter(region)
        df = self.repository.growth(flt)
        self._require_rows(df, flt, "growth")
        df["coral_type"] = _coral_type(df["data_type"])
        df = df[df["coral_type"].isin(["Natural", "Restored"])]
        minimum = self.config.aggregation.min_n_by_size
        self._require_n(df, minimum, flt,
                        "Not enough Natural or Restored coral data for fragmentation analysis")
        growth = pd.to_numeric(df["growth_cm2_yr"], errors="coerce")
        df["shrinking"] = np.where(growth.isna(), np.nan, (growth < 0).astype(float))
        summaries = aggregate(self._size_table(df, self.classifier), ["size_class", "coral_type"],
                              "shrinking", kind="binary", sort="key",
                              z=self.config.aggregation.z_value)
        return QueryResult(self._records(summaries), {"total_records": len(df)})

    def growth_transitions(self, region="", data_type="") -> QueryResult:
        flt = self._filter(region, data_type)
        df = self.repository.growth(flt)
        self._require_rows(df, flt, "growth")
        minimum = self.config.aggregation.min_n_transitions
        self._require_n(df, minimum, flt,
                        f"Not enough data to compute transition matrix (minimum {minimum} records required)")
        table = transition_probabilities(df, self.classifier,
                                         self.config.population.min_final_size, minimum)
        return QueryResult(table, {
            "total_records": len(df),
            "size_classes": list(self.classifier.labels),
        })

    def positive_growth_probability(self, region="", data_type="", fragment="") -> QueryResult:
        flt = self._filter(region, data_type, fragment=fragment)
        df = self.repository.growth(flt)
        self._require_rows(df, flt, "growth")
        growth = pd.to_numeric(df["growth_cm2_yr"], errors="coerce")
        df["positive_growth"] = np.where(growth.isna(), np.nan, (growth > 0).astype(float))
        cfg = self.config.survival_model
        model_fit = fit_logistic(df, "positive_growth", min_n=cfg.min_n_growth_model,
                                 n_points=cfg.n_prediction_points, z=cfg.z_value,
                                 max_iter=cfg.max_iter, grid="log")
        pct_positive = model_fit.n_events / model_fit.n * 100.0
        threshold_70 = size_at_probability(model_fit, 0.70)
        return QueryResult(model_fit, {
            "thresholds": {
                "threshold_50_cm2": size_at_probability(model_fit, 0.50),
                "threshold_70_cm2": threshold_70,
            },
            "n": model_fit.n,
            "pct_positive": pct_positive,
            "pct_shrinking": 100.0 - pct_positive,
            "interpretation": (
                f"{pct_positive:.0f}% of colonies show positive growth. "
                f"Colonies reach 70% growth probability at ~{threshold_70:.0f} cm²."
            ),
            "formula": "P(growth > 0) ~ log(size_cm2)",
        })

    # ------------------------------------------------------------------
    # Meta-analysis & quality
    # ------------------------------------------------------------------

    def meta_analysis(self, region="", data_type="") -> QueryResult:
        flt = self._filter(region, data_type)
        df = self.repository.survival(flt)
        self._require_rows(df, flt, "survival")
        cfg = self.config.meta_analysis
        effects = study_effects_from_observations(df, "survived",
                                                  continuity_correction=cfg.continuity_correction)
        result = analyze(effects, cfg)
        return QueryResult(result, {
            "method": "DerSimonian-Laird random effects on the logit scale",
            "k": result.k,
            "total_n": result.total_n,
        })

    def _quality(self, df: pd.DataFrame):
        cfg = self.config.survival_model
        try:
            model_fit = fit_logistic(df, "survived", min_n=cfg.min_n,
                                     n_points=cfg.n_prediction_points, max_iter=cfg.max_iter)
        except (InsufficientData, ModelFittingFailed) as e:
            logger.debug("No R² for quality metrics: %s", e.message)
            model_fit = None
        assessor = QualityAssessor.from_config(self.config.quality, self.classifier)
        return assessor.assess(df, model_fit)

    def quality_metrics(self, region="", data_type="") -> QueryResult:
        flt = self._filter(region, data_type)
        df = self.repository.survival(flt)
        if len(df) == 0:
            raise NoDataFound("No data available for selected filters",
                              details={"filters": flt.describe()})
        return QueryResult(self._quality(df),
                           {"using_mock_data": self.repository.using_mock_data})

    # ------------------------------------------------------------------
    # Population model
    # ------------------------------------------------------------------

    def _population(self, region="", data_type="", bootstrap: bool = False):
        """Counts, fitted model and the filter columns fragmentation was pooled over."""
        flt = self._filter(region, data_type)
        survival = self.repository.survival(flt)
        growth = self.repository.growth(flt)
        self._require_rows(survival, flt, "survival")
        self._require_rows(growth, flt, "growth")
        minimum = self.config.aggregation.min_n_transitions
        if len(growth) < minimum:
            raise InsufficientData(
                f"Not enough growth data for the matrix model (minimum {minimum} records required)",
                n=len(growth), minimum_required=minimum, details={"filters": flt.describe()},
            )
        fragmentation = self.repository.fragmentation(flt)
        pooled = [] if fragmentation is None else unfiltered_columns(fragmentation, flt)
        if pooled:
            logger.info("Fragmentation rates pooled over unfiltered columns %s", pooled)
        counts = count_transitions(survival, growth, self.classifier, fragmentation,
                                   self.config.population.min_final_size)
        engine = PopulationMatrixEngine(self.config.population)
        return counts, engine.analyze(counts, bootstrap=bootstrap), pooled

    def _elasticity_parts(self, model) -> list:
        """Elasticity split by survival and fragmentation share of each cell."""
        m = model.matrix
        scale = model.sensitivity / model.lambda_ * 100.0
        entries = []
        for j, source in enumerate(m.labels):
            for i, destination in enumerate(m.labels):
                parts = [(transition_type(i, j), m.survival_part[i, j]),
                         ("fragmentation", m.fragmentation_part[i, j])]
                for kind, value in parts:
                    if value <= 0:
                        continue
                    entries.append({
                        "from_class": source,
                        "to_class": destination,
                        "transition_type": kind,
                        "category": CATEGORY_BY_TYPE[kind],
                        "elasticity_pct": float(value * scale[i, j]),
                    })
        return entries

    def elasticity_matrix(self, region="", data_type="") -> QueryResult:
        counts, model, pooled = self._population(region, data_type)
        m = model.matrix
        records = []
        for j, source in enumerate(m.labels):
            for i, destination in enumerate(m.labels):
                records.append({
                    "from_class": source,
                    "to_class": destination,
                    "value": float(m.values[i, j]),
                    "elasticity_pct": float(model.elasticity[i, j]),
                    "sensitivity": float(model.sensitivity[i, j]),
                    "transition_type": transition_type(i, j),
                    "n_observations": int(counts.fates[i, j]),
                })
        return QueryResult(records, {
            "labels": list(m.labels),
            "lambda": model.lambda_,
            "total_elasticity": float(model.elasticity.sum()),
            "note": "Rows are destination classes, columns source classes; elasticities sum to 100%",
            "fragmentation_pooled_over": pooled,
        })

    def elasticity_breakdown(self, region="", data_type="") -> QueryResult:
        _, model, pooled = self._population(region, data_type)
        floor = self.config.scenarios.significant_elasticity_pct
        entries = [e for e in self._elasticity_parts(model) if e["elasticity_pct"] >= floor]
        for e in entries:
            if e["transition_type"] == "stasis":
                e["name"] = f"{e['from_class']} Survival"
            elif e["transition_type"] == "fragmentation":
                e["name"] = f"{e['from_class']} Fragmentation"
            elif e["transition_type"] == "growth":
                e["name"] = f"{e['from_class']} → {e['to_class']}"
            else:
                e["name"] = f"{e['from_class']} → {e['to_class']} (shrink)"
        entries.sort(key=lambda e: -e["elasticity_pct"])

        totals = {}
        for e in entries:
            bucket = totals.setdefault(e["category"], {"category": e["category"], "total": 0.0, "count": 0})
            bucket["total"] += e["elasticity_pct"]
            bucket["count"] += 1
        category_totals = sorted(totals.values(), key=lambda t: -t["total"])
        return QueryResult({"transitions": entries, "category_totals": category_totals}, {
            "total_transitions": len(entries),
            "total_elasticity": sum(e["elasticity_pct"] for e in entries),
            "note": f"Transitions with < {floor}% elasticity are filtered",
            "fragmentation_pooled_over": pooled,
        })

    def elasticity_summary(self, region="", data_type="") -> QueryResult:
        _, model, pooled = self._population(region, data_type, bootstrap=True)
        by_type = {"stasis": 0.0, "growth": 0.0, "shrinkage": 0.0, "fragmentation": 0.0}
        parts = self._elasticity_parts(model)
        for e in parts:
            by_type[e["transition_type"]] += e["elasticity_pct"]
        dominant = max(parts, key=lambda e: e["elasticity_pct"])
        boot = model.bootstrap
        return QueryResult({
            "lambda": {
                "estimate": model.lambda_,
                "ci_lower": model.lambda_ci[0],
                "ci_upper": model.lambda_ci[1],
                "p_decline": None if boot.p_decline is None else boot.p_decline * 100.0,
                "interpretation": model.interpretation,
            },
            "generation_time": model.generation_time,
            "damping_ratio": model.damping_ratio,
            "stable_stage_distribution": dict(zip(model.labels, model.stable_stage_distribution)),
            "reproductive_values": dict(zip(model.labels, model.reproductive_values)),
            "elasticity": by_type,
            "dominant": {
                "from_class": dominant["from_class"],
                "to_class": dominant["to_class"],
                "transition_type": dominant["transition_type"],
                "elasticity_pct": dominant["elasticity_pct"],
                "action": restoration_action(dominant["from_class"], dominant["to_class"]),
            },
        }, {
            "method": f"Parametric bootstrap over transition counts (n={boot.requested} replicates)",
            "successful_replicates": boot.successful,
            "failed_replicates": boot.failed,
            "low_confidence": boot.low_confidence,
            "ci_level": boot.ci_level,
            "fragmentation_pooled_over": pooled,
        })

    def elasticity_projection(self, years=None, region="", data_type="") -> QueryResult:
        horizon = parse_number(years, "years", minimum=1, maximum=100,
                               default=self.config.population.projection_years)
        if horizon != int(horizon):
            raise InvalidParameter("Parameter 'years' must be a whole number",
                                   parameter="years", value=years)
        _, model, pooled = self._population(region, data_type, bootstrap=True)
        rows = project_population(model.lambda_, int(horizon), model.lambda_ci)
        return QueryResult(rows, {
            "lambda": model.lambda_,
            "lambda_ci": list(model.lambda_ci),
            "years": int(horizon),
            "initial_population": 100.0,
            "fragmentation_pooled_over": pooled,
        })

    def elasticity_scenarios(self, improvement_pct=None, scenario="", region="",
                             data_type="") -> QueryResult:
        cfg = self.config.scenarios
        pct = parse_number(improvement_pct, "improvement_pct", default=cfg.improvement_pct)
        if not 0 < pct <= 100:
            raise InvalidParameter("improvement_pct must be between 0 (exclusive) and 100",
                                   parameter="improvement_pct", value=improvement_pct)
        wanted = sanitize_string(scenario) or None
        if wanted is not None and wanted not in SCENARIOS:
            raise InvalidParameter(f"Invalid scenario. Must be one of: {', '.join(SCENARIOS)}",
                                   parameter="scenario", value=scenario,
                                   details={"allowed": list(SCENARIOS)})

        _, model, pooled = self._population(region, data_type)
        matrix = model.matrix
        tol = self.config.population.eigen_tolerance
        baseline = model.lambda_
        target = cfg.target_lambda

        individual = individual_perturbations(matrix, model.elasticity, pct, tol)

        combined, paths = [], []
        for scenario_id, definition in SCENARIOS.items():
            if wanted is not None and scenario_id != wanted:
                continue
            cells = scenario_cells(matrix, scenario_id)
            # stop at the largest change keeping every source class survival <= 1
            bound = max_feasible_improvement(matrix, cells, definition.mode)
            applied = min(pct, bound)
            perturbed = apply_improvement(matrix, cells, applied, definition.mode)
            new_lambda = dominant_eigenvalue(perturbed.values, tol)
            combined.append({
                "scenario_id": scenario_id,
                "scenario_name": definition.name,
                "description": definition.description,
                "transitions_affected": [f"{matrix.labels[j]}→{matrix.labels[i]}" for i, j in cells],
                "requested_pct": pct,
                "applied_pct": applied,
                "capped": applied < pct,
                "baseline_lambda": baseline,
                "new_lambda": new_lambda,
                "delta_lambda": new_lambda - baseline,
                "pct_lambda_change": (new_lambda - baseline) / baseline * 100.0,
                "achieves_stability": new_lambda >= target,
            })
            paths.append(self._path_entry(matrix, scenario_id, definition.name, cells, definition.mode))
        combined.sort(key=lambda c: -c["delta_lambda"])

        significant = significant_cells(matrix, cfg.significant_elasticity_pct, model.elasticity)
        overall = self._path_entry(matrix, "elasticity_significant",
                                   "Elasticity-significant transitions", significant, "increase")

        return QueryResult({
            "individual": individual,
            "combined": combined,
            "path_to_stability": paths,
            "stability_target": overall,
        }, {
            "improvement_pct": pct,
            "baseline_lambda": baseline,
            "target_lambda": target,
            "fragmentation_pooled_over": pooled,
        })

    def _path_entry(self, matrix, scenario_id: str, name: str, cells, mode: str) -> dict:
        cfg = self.config.scenarios
        entry = {"scenario_id": scenario_id, "scenario_name": name}
        try:
            needed = path_to_stability(
                matrix, cfg.target_lambda, cells=cells, mode=mode,
                tolerance=cfg.lambda_tolerance, max_iterations=cfg.max_iterations,
                eigen_tolerance=self.config.population.eigen_tolerance,
            )
        except Unreachable as e:
            entry.update(improvement_needed_pct=None, feasibility="unreachable",
                         note="Cannot achieve stability with this scenario alone",
                         details=e.details)
            return entry
        entry.update(
            improvement_needed_pct=needed,
            feasibility=feasibility_label(needed, cfg.feasible_pct, cfg.moderate_pct),
            note=f"Requires ~{needed:.1f}% improvement in {name} vital rates",
        )
        return entry

    # ------------------------------------------------------------------
    # Outplant recommendation
    # ------------------------------------------------------------------

    def _recommendation_inputs(self, goal, region, fragment):
        goal = validate_goal(sanitize_string(goal) or "balance")
        flt = self._filter(region, fragment=fragment)
        survival = self.repository.survival(flt)
        growth = self.repository.growth(flt)
        self._require_rows(survival, flt, "survival")
        self._require_rows(growth, flt, "growth")
        return goal, flt, survival, growth

    def _recommendation_meta(self, goal: str, flt: ObservationFilter, survival, growth) -> dict:
        return {
            "total_survival_records": len(survival),
            "total_growth_records": len(growth),
            "filters": flt.describe(),
            "scoring": SCORING_METHODS[goal],
            "uncertainty_note": (
                "Confidence intervals (ci_*) reflect uncertainty in the mean survival rate. "
                "Prediction intervals (pi_*) reflect the expected range of survival at a new "
                "restoration site, including between-study variance. Use prediction intervals "
                "for planning."
            ),
        }

    def outplant_recommendation(self, goal="", region="", fragment="") -> QueryResult:
        goal, flt, survival, growth = self._recommendation_inputs(goal, region, fragment)
        quality = self._quality(survival)
        effects = study_effects_from_observations(
            survival, "survived",
            continuity_correction=self.config.meta_analysis.continuity_correction)
        i_squared = analyze(effects, self.config.meta_analysis).heterogeneity.i_squared
        recommender = OutplantRecommender.from_config(self.config.recommendation, self.classifier)
        recommendation = recommender.recommend(
            survival, growth, goal,
            regional=bool(flt.regions),
            fragment_status=flt.fragment_status,
            r_squared=quality.r_squared,
            dominant_study_pct=quality.dominant_study["pct"] if quality.dominant_study else None,
            i_squared=i_squared,
        )
        meta = self._recommendation_meta(goal, flt, survival, growth)
        meta["i_squared"] = i_squared
        return QueryResult(recommendation, meta)

    def compare_size_classes(self, goal="", region="", fragment="") -> QueryResult:
        goal, flt, survival, growth = self._recommendation_inputs(goal, region, fragment)
        recommender = OutplantRecommender.from_config(self.config.recommendation, self.classifier)
        outlooks = recommender.compare(survival, growth)
        best = max(outlooks, key=lambda o: o.score(goal))
        records = [dict(asdict(o), score=o.score(goal), is_recommended=o is best)
                   for o in sorted(outlooks, key=lambda o: -o.score(goal))]
        meta = self._recommendation_meta(goal, flt, survival, growth)
        meta["goal"] = goal
        meta["interpretation"] = (f"For goal '{goal}', {best.size_class} is recommended "
                                  f"with a score of {best.score(goal):.3f}")
        return QueryResult(records, meta)

    # ------------------------------------------------------------------
    # Descriptive rollups
    # ------------------------------------------------------------------

    def _observation_meta(self, df: pd.DataFrame) -> dict:
        meta = {
            "total_records": len(df),
            "regions": sorted(df["region"].dropna().unique().tolist()),
            "studies": sorted(df["study"].dropna().unique().tolist()),
        }
        if "survey_year" in df and df["survey_year"].notna().any():
            meta["year_range"] = [int(df["survey_year"].min()), int(df["survey_year"].max())]
        return meta

    def sites(self, region="", data_type="") -> QueryResult:
        regions = parse_csv_list(region, "region")
        if regions and regions[0].lower() in ("all", "all regions"):
            regions = None
        types = parse_csv_list(data_type, "data_type", allowed=DATA_TYPES + ("all",))
        if types and "all" in types:
            types = None
        surv = self.repository.survival()
        grouped = surv.groupby(["region", "location"], sort=True)
        sites = grouped.agg(
            latitude=("latitude", "median"),
            longitude=("longitude", "median"),
            depth_m=("depth_m", "median"),
            total_observations=("survived", "size"),
            survival_rate=("survived", "mean"),
        ).reset_index()
        sites["studies"] = grouped["study"].agg(lambda s: ", ".join(pd.unique(s.dropna()))).values
        sites["data_types"] = grouped["data_type"].agg(lambda s: ", ".join(sorted(pd.unique(s.dropna())))).values
        sites["site_id"] = sites["region"].astype(str) + "_" + sites["location"].astype(str)

        growth = self.repository.growth_data
        if growth is not None and len(growth):
            mean_growth = growth.groupby(["region", "location"])["growth_cm2_yr"].mean()
            sites = sites.merge(mean_growth.rename("mean_growth").reset_index(),
                                on=["region", "location"], how="left")
        else:
            sites["mean_growth"] = None

        if regions:
            sites = sites[sites["region"].isin(regions)]
        if types:
            sites = sites[sites["data_types"].map(lambda dts: any(t in dts.split(", ") for t in types))]
        if len(sites) == 0:
            raise NoDataFound("No sites match the specified filters",
                              details={"filters": {"region": regions, "data_type": types}})
        sites = sites.rename(columns={"location": "name"})
        return QueryResult(sites, {
            "total_records": len(sites),
            "regions": sorted(sites["region"].unique().tolist()),
        })

    def regions(self) -> QueryResult:
        surv = self.repository.survival()
        summary = surv.groupby("region").agg(
            n_sites=("location", "nunique"),
            n_observations=("survived", "size"),
            n_studies=("study", "nunique"),
            mean_survival=("survived", "mean"),
            lat_center=("latitude", "mean"),
            lon_center=("longitude", "mean"),
        ).reset_index().sort_values("n_observations", ascending=False)
        growth = self.repository.growth_data
        if growth is not None and len(growth):
            g = growth.groupby("region").agg(growth_n=("growth_cm2_yr", "size"),
                                             mean_growth=("growth_cm2_yr", "mean")).reset_index()
            summary = summary.merge(g, on="region", how="left")
        else:
            summary["growth_n"] = 0
            summary["mean_growth"] = None
        if len(summary) == 0:
            raise NoDataFound("No region data available")
        return QueryResult(summary.reset_index(drop=True), {"total_records": len(summary)})

    def overview(self) -> QueryResult:
        surv = self.repository.survival()
        growth = self.repository.growth_data
        n_growth = 0 if growth is None else len(growth)
        years = surv["survey_year"].dropna() if "survey_year" in surv else pd.Series(dtype=float)
        data = {
            "total_observations": len(surv) + n_growth,
            "survival_observations": len(surv),
            "growth_observations": n_growth,
            "total_studies": int(surv["study"].nunique()),
            "total_regions": int(surv["region"].nunique()),
            "total_sites": int((surv["region"].astype(str) + "|" + surv["location"].astype(str)).nunique())
            if "location" in surv else 0,
            "year_range": [int(years.min()), int(years.max())] if len(years) else None,
            "mean_survival": float(pd.to_numeric(surv["survived"], errors="coerce").mean()),
            "mean_growth": None if not n_growth
            else float(pd.to_numeric(growth["growth_cm2_yr"], errors="coerce").mean()),
            "data_type_breakdown": surv["data_type"].value_counts().sort_index().to_dict(),
            "region_breakdown": surv["region"].value_counts().to_dict(),
        }
        return QueryResult(data, {"total_records": len(surv),
                                  "using_mock_data": self.repository.using_mock_data})
