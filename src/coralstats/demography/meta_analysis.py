"""Random-effects meta-analysis of study-level proportions.

Each study contributes one proportion (e.g. annual survival). Proportions
are pooled on the logit scale with the DerSimonian–Laird estimator of the
between-study variance τ² and back-transformed for reporting.

Provides:
- Heterogeneity: Cochran's Q, its p-value, I², τ², and a labelled
  interpretation driven by configurable thresholds
- Pooled estimate with CI and a prediction interval that includes τ²
- Egger's regression test for small-study effects (needs >= 3 studies)
- Leave-one-out sensitivity and fragment-status strata
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Sequence
import logging

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import expit

from coralstats.contracts import assert_meta_analysis
from coralstats.errors import InsufficientData, InvalidParameter

__all__ = [
    'StudyEffect',
    'Heterogeneity',
    'PublicationBias',
    'StratumResult',
    'LeaveOneOutResult',
    'MetaAnalysisResult',
    'study_effects_from_observations',
    'analyze',
    'interpret_i_squared',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudyEffect:
    """One study's proportion and its logit-scale effect."""
    study: str
    n: int
    events: int
    proportion: float
    effect: float       # logit(proportion), continuity-corrected
    variance: float
    fragment_status: Optional[str] = None
    weight: float = 0.0  # normalized random-effects weight
    ci_lower: Optional[float] = None
    ci_upper: Optional[float] = None

    @property
    def se(self) -> float:
        return float(np.sqrt(self.variance))


@dataclass(frozen=True)
class Heterogeneity:
    i_squared: float
    tau_squared: float
    tau: float
    q: float
    q_df: int
    q_pvalue: Optional[float]
    interpretation: str
    thresholds: dict


@dataclass(frozen=True)
class PublicationBias:
    """Egger's regression of effect/se on 1/se."""
    intercept: float
    intercept_se: float
    t_statistic: float
    p_value: float
    significant: bool


@dataclass(frozen=True)
class StratumResult:
    fragment_status: str
    k: int
    n: int
    pooled_estimate: float
    ci_lower: float
    ci_upper: float
    i_squared: float
    tau_squared: float


@dataclass(frozen=True)
class LeaveOneOutResult:
    excluded_study: str
    pooled_estimate: float
    ci_lower: float
    ci_upper: float
    i_squared: float
    change: float


@dataclass(frozen=True)
class MetaAnalysisResult:
    """Pooled random-effects summary.

    Estimates are on the proportion scale. ``per_study_effects`` is
    ordered by descending weight and the weights sum to 1.
    """
    pooled_estimate: float
    ci_lower: float
    ci_upper: float
    pi_lower: float
    pi_upper: float
    k: int
    total_n: int
    heterogeneity: Heterogeneity
    publication_bias: Optional[PublicationBias]
    per_study_effects: tuple
    stratified: dict = field(default_factory=dict)
    leave_one_out: tuple = ()


def interpret_i_squared(i_squared: float, thresholds) -> str:
    """Label I² as low / moderate / substantial / considerable."""
    if i_squared > thresholds.considerable:
        return "considerable"
    if i_squared > thresholds.substantial:
        return "substantial"
    if i_squared > thresholds.moderate:
        return "moderate"
    return "low"


def _study_effect(study, n: int, events: int, correction: float,
                  fragment_status: Optional[str] = None) -> StudyEffect:
    if 0 < events < n:
        e, m = float(events), float(n)
    else:
        e, m = events + correction, n + 2 * correction
    return StudyEffect(
        study=str(study),
        n=int(n),
        events=int(events),
        proportion=events / n,
        effect=float(np.log(e / (m - e))),
        variance=float(1.0 / e + 1.0 / (m - e)),
        fragment_status=fragment_status,
    )


def study_effects_from_observations(
    observations: pd.DataFrame,
    outcome: str = "survived",
    study_col: str = "study",
    continuity_correction: float = 0.5,
) -> list:
    """Per-study event counts turned into logit-scale effects.

    Rows with a missing study or outcome are dropped. A study whose rows
    are all ``fragment`` or all ``colony`` takes that status; otherwise it
    is ``mixed``.
    """
    if study_col not in observations.columns or outcome not in observations.columns:
        raise InvalidParameter(f"Columns '{study_col}' and '{outcome}' are required",
                               parameter="outcome", value=outcome)
    df = observations.copy()
    df[outcome] = pd.to_numeric(df[outcome], errors="coerce")
    df = df.dropna(subset=[study_col, outcome])

    effects = []
    for study, group in df.groupby(study_col, sort=True):
        statuses = set(group["fragment_status"].dropna()) if "fragment_status" in group else set()
        status = statuses.pop() if len(statuses) == 1 else ("mixed" if statuses else None)
        effects.append(_study_effect(study, len(group), int(group[outcome].sum()),
                                     continuity_correction, status))
    return effects


def _pool(effects: Sequence[StudyEffect], z: float):
    """DerSimonian–Laird pooling on the logit scale.

    Returns (mu, se_mu, tau2, q, df, re_weights).
    """
    y = np.array([e.effect for e in effects])
    v = np.array([e.variance for e in effects])
    w = 1.0 / v
    k = len(effects)
    mu_fixed = np.sum(w * y) / np.sum(w)
    q = float(np.sum(w * (y - mu_fixed) ** 2))
    df = k - 1
    if df > 0:
        c = np.sum(w) - np.sum(w ** 2) / np.sum(w)
        tau2 = max(0.0, (q - df) / c) if c > 0 else 0.0
    else:
        tau2 = 0.0
    w_re = 1.0 / (v + tau2)
    mu = float(np.sum(w_re * y) / np.sum(w_re))
    se_mu = float(np.sqrt(1.0 / np.sum(w_re)))
    return mu, se_mu, tau2, q, df, w_re


def _i_squared(q: float, df: int) -> float:
    if q <= df or q <= 0:
        return 0.0
    return float(max(0.0, (q - df) / q) * 100.0)


def egger_test(effects: Sequence[StudyEffect], alpha: float = 0.05,
               min_studies: int = 3) -> Optional[PublicationBias]:
    """Egger's test, or None with fewer than ``min_studies`` studies.

    Also None when the precisions are all equal or the fit is exact, where
    the intercept's standard error is undefined.
    """
    if len(effects) < max(3, min_studies):
        return None
    se = np.array([e.se for e in effects])
    precision = 1.0 / se
    standardized = np.array([e.effect for e in effects]) / se
    if np.ptp(precision) == 0:
        return None
    fit = stats.linregress(precision, standardized)
    if not np.isfinite(fit.intercept_stderr) or fit.intercept_stderr == 0:
        return None
    t_stat = fit.intercept / fit.intercept_stderr
    p_value = float(2 * stats.t.sf(abs(t_stat), len(effects) - 2))
    return PublicationBias(
        intercept=float(fit.intercept),
        intercept_se=float(fit.intercept_stderr),
        t_statistic=float(t_stat),
        p_value=p_value,
        significant=p_value < alpha,
    )


def _summary(effects: Sequence[StudyEffect], z: float):
    mu, se_mu, tau2, q, df, w_re = _pool(effects, z)
    return {
        "estimate": float(expit(mu)),
        "ci_lower": float(expit(mu - z * se_mu)),
        "ci_upper": float(expit(mu + z * se_mu)),
        "mu": mu,
        "se_mu": se_mu,
        "tau2": tau2,
        "q": q,
        "df": df,
        "i2": _i_squared(q, df),
        "weights": w_re / np.sum(w_re),
    }


def analyze(per_study_effects: Sequence[StudyEffect], config) -> MetaAnalysisResult:
    """Pool study effects with DerSimonian–Laird random effects.

    Parameters
    ----------
    per_study_effects : sequence of StudyEffect
        One entry per study (see ``study_effects_from_observations``).
    config : InternalMetaAnalysisConfig
        z value, Egger settings and I² interpretation thresholds.

    Returns
    -------
    MetaAnalysisResult

    Raises
    ------
    InsufficientData
        If no study is supplied.

    Examples
    --------
    >>> effects = [_study_effect(s, 100, e, 0.5) for s, e in
    ...            [("a", 86), ("b", 57), ("c", 81), ("d", 65)]]
    >>> result = analyze(effects, config.meta_analysis)
    >>> result.heterogeneity.interpretation
    'considerable'
    """
    effects = list(per_study_effects)
    k = len(effects)
    if k == 0:
        raise InsufficientData("No studies available for meta-analysis", n=0, minimum_required=1)

    z = config.z_value
    pooled = _summary(effects, z)

    if k >= 3:
        t_crit = stats.t.ppf(stats.norm.cdf(z), k - 2)
    else:
        t_crit = z
    pi_half = t_crit * np.sqrt(pooled["tau2"] + pooled["se_mu"] ** 2)

    thresholds = config.i2_thresholds
    heterogeneity = Heterogeneity(
        i_squared=pooled["i2"],
        tau_squared=float(pooled["tau2"]),
        tau=float(np.sqrt(pooled["tau2"])),
        q=pooled["q"],
        q_df=pooled["df"],
        q_pvalue=float(stats.chi2.sf(pooled["q"], pooled["df"])) if pooled["df"] > 0 else None,
        interpretation=interpret_i_squared(pooled["i2"], thresholds),
        thresholds=thresholds.model_dump(),
    )

    weighted = []
    for effect, weight in zip(effects, pooled["weights"]):
        half = z * effect.se
        weighted.append(replace(
            effect,
            weight=float(weight),
            ci_lower=float(expit(effect.effect - half)),
            ci_upper=float(expit(effect.effect + half)),
        ))
    weighted.sort(key=lambda e: (-e.weight, e.study))

    stratified = {}
    statuses = sorted({e.fragment_status for e in effects if e.fragment_status})
    for status in statuses:
        subset = [e for e in effects if e.fragment_status == status]
        sub = _summary(subset, z)
        stratified[status] = StratumResult(
            fragment_status=status,
            k=len(subset),
            n=sum(e.n for e in subset),
            pooled_estimate=sub["estimate"],
            ci_lower=sub["ci_lower"],
            ci_upper=sub["ci_upper"],
            i_squared=sub["i2"],
            tau_squared=float(sub["tau2"]),
        )

    leave_one_out = []
    if k >= 2:
        for i, excluded in enumerate(effects):
            sub = _summary(effects[:i] + effects[i + 1:], z)
            leave_one_out.append(LeaveOneOutResult(
                excluded_study=excluded.study,
                pooled_estimate=sub["estimate"],
                ci_lower=sub["ci_lower"],
                ci_upper=sub["ci_upper"],
                i_squared=sub["i2"],
                change=sub["estimate"] - pooled["estimate"],
            ))

    result = MetaAnalysisResult(
        pooled_estimate=pooled["estimate"],
        ci_lower=pooled["ci_lower"],
        ci_upper=pooled["ci_upper"],
        pi_lower=float(expit(pooled["mu"] - pi_half)),
        pi_upper=float(expit(pooled["mu"] + pi_half)),
        k=k,
        total_n=sum(e.n for e in effects),
        heterogeneity=heterogeneity,
        publication_bias=egger_test(effects, config.egger_alpha, config.egger_min_studies),
        per_study_effects=tuple(weighted),
        stratified=stratified,
        leave_one_out=tuple(leave_one_out),
    )
    assert_meta_analysis(result)
    logger.debug("Pooled %d studies: estimate=%.3f, I²=%.1f%%", k, result.pooled_estimate,
                 heterogeneity.i_squared)
    return result
