"""Logistic regression of a binary outcome on log(size).

Fits ``outcome ~ log(size_cm2)`` as a Binomial GLM (logit link) with
statsmodels and evaluates the fitted probability, with a delta-method
Wald band, over an evenly spaced size grid. Used for size-dependent
survival and for the probability of positive growth.
"""

from dataclasses import dataclass
from typing import Literal, Optional
import logging
import warnings

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from coralstats.contracts import require
from coralstats.errors import InsufficientData, ModelFittingFailed

__all__ = ['CurvePoint', 'SurvivalModelFit', 'fit_logistic', 'fit', 'size_at_probability']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurvePoint:
    size: float
    probability: float
    ci_lower: float
    ci_upper: float


@dataclass(frozen=True)
class SurvivalModelFit:
    """Result of a logistic fit on log(size).

    Attributes
    ----------
    coefficients : dict
        ``{"intercept": {...}, "log_size": {...}}`` with estimate, se,
        z and p_value.
    pseudo_r_squared : float
        McFadden ``1 - deviance/null_deviance``, validated to lie in [0, 1].
    prediction_curve : tuple of CurvePoint
        Ordered by size.
    """
    outcome: str
    coefficients: dict
    deviance: float
    null_deviance: float
    pseudo_r_squared: float
    aic: float
    n: int
    n_events: int
    size_range: tuple
    prediction_curve: tuple

    @property
    def deviance_explained_pct(self) -> float:
        return round(self.pseudo_r_squared * 100.0, 1)


def _prepare(observations: pd.DataFrame, outcome: str, min_n: int) -> pd.DataFrame:
    df = observations[["size_cm2", outcome]].copy()
    df["size_cm2"] = pd.to_numeric(df["size_cm2"], errors="coerce")
    df[outcome] = pd.to_numeric(df[outcome], errors="coerce")
    df = df.dropna()
    # log-transform precondition
    df = df[df["size_cm2"] > 0]
    if len(df) < min_n:
        raise InsufficientData(
            f"Not enough data for model fitting (minimum {min_n} records required)",
            n=len(df), minimum_required=min_n,
        )
    return df


def fit_logistic(
    observations: pd.DataFrame,
    outcome: str,
    min_n: int = 30,
    n_points: int = 100,
    z: float = 1.96,
    max_iter: int = 100,
    grid: Literal["linear", "log"] = "linear",
) -> SurvivalModelFit:
    """Fit ``outcome ~ log(size_cm2)`` and build the prediction curve.

    Parameters
    ----------
    observations : pd.DataFrame
        Must contain ``size_cm2`` and ``outcome`` (0/1).
    outcome : str
        Binary outcome column.
    min_n : int
        Minimum rows left after dropping missing values and sizes <= 0.
    n_points : int
        Number of prediction points spanning the observed size range.
    z : float
        Normal quantile for the prediction band.
    grid : {"linear", "log"}
        Spacing of the prediction sizes.

    Returns
    -------
    SurvivalModelFit

    Raises
    ------
    InsufficientData
        Fewer than ``min_n`` usable rows.
    ModelFittingFailed
        Non-convergence, perfect separation, no outcome variation, or a
        deviance larger than the null deviance.
    """
    df = _prepare(observations, outcome, min_n)
    y = df[outcome].to_numpy(dtype=float)
    if not np.isin(y, (0.0, 1.0)).all():
        raise ModelFittingFailed(f"Outcome '{outcome}' must be 0/1",
                                 details={"outcome": outcome})
    if y.min() == y.max():
        raise ModelFittingFailed(
            "GLM model fitting failed: outcome has no variation",
            details={"outcome": outcome, "n": len(y), "value": float(y[0])},
        )

    log_size = np.log(df["size_cm2"].to_numpy(dtype=float))
    X = sm.add_constant(log_size, has_constant="add")

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            res = sm.GLM(y, X, family=sm.families.Binomial()).fit(maxiter=max_iter)
        except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as e:
            raise ModelFittingFailed("GLM model fitting failed",
                                     details={"error_message": str(e)})

    problems = [str(w.message) for w in caught
                if issubclass(w.category, (ConvergenceWarning, PerfectSeparationWarning))]
    converged = getattr(res, "converged", True)
    if problems or not converged:
        raise ModelFittingFailed(
            "GLM model fitting did not converge",
            details={"error_message": "; ".join(problems) or "IRLS did not converge",
                     "max_iter": max_iter},
        )

    params = np.asarray(res.params, dtype=float)
    bse = np.asarray(res.bse, dtype=float)
    if not (np.all(np.isfinite(params)) and np.all(np.isfinite(bse))):
        raise ModelFittingFailed("GLM produced non-finite coefficients",
                                 details={"params": params.tolist()})

    deviance = float(res.deviance)
    null_deviance = float(res.null_deviance)
    if null_deviance <= 0 or deviance > null_deviance + 1e-9:
        raise ModelFittingFailed(
            "Fitted deviance exceeds null deviance",
            details={"deviance": deviance, "null_deviance": null_deviance},
        )
    r_squared = min(1.0, max(0.0, 1.0 - deviance / null_deviance))

    sizes = df["size_cm2"].to_numpy(dtype=float)
    lo, hi = float(sizes.min()), float(sizes.max())
    if grid == "log":
        grid_sizes = np.exp(np.linspace(np.log(lo), np.log(hi), n_points))
    else:
        grid_sizes = np.linspace(lo, hi, n_points)
    curve = predict_curve(params, np.asarray(res.cov_params()), grid_sizes, z)

    z_values = np.asarray(res.tvalues, dtype=float)
    p_values = np.asarray(res.pvalues, dtype=float)
    coefficients = {
        name: {"estimate": float(params[i]), "se": float(bse[i]),
               "z": float(z_values[i]), "p_value": float(p_values[i])}
        for i, name in enumerate(("intercept", "log_size"))
    }

    logger.debug("Fitted %s ~ log(size): n=%d, R²=%.3f", outcome, len(y), r_squared)
    return SurvivalModelFit(
        outcome=outcome,
        coefficients=coefficients,
        deviance=deviance,
        null_deviance=null_deviance,
        pseudo_r_squared=r_squared,
        aic=float(res.aic),
        n=int(len(y)),
        n_events=int(y.sum()),
        size_range=(lo, hi),
        prediction_curve=curve,
    )


def predict_curve(params: np.ndarray, cov: np.ndarray, sizes: np.ndarray, z: float) -> tuple:
    """Fitted probabilities with delta-method Wald band clipped to [0, 1]."""
    X = np.column_stack([np.ones_like(sizes), np.log(sizes)])
    eta = X @ params
    se_eta = np.sqrt(np.einsum("ij,jk,ik->i", X, cov, X))
    p = 1.0 / (1.0 + np.exp(-eta))
    se_p = p * (1.0 - p) * se_eta
    lower = np.clip(p - z * se_p, 0.0, 1.0)
    upper = np.clip(p + z * se_p, 0.0, 1.0)
    require(np.all(np.isfinite(p)), "Prediction curve contract violated: non-finite probability")
    return tuple(CurvePoint(float(s), float(pi), float(l), float(u))
                 for s, pi, l, u in zip(sizes, p, lower, upper))


def fit(observations: pd.DataFrame, min_n: int = 30, **kwargs) -> SurvivalModelFit:
    """Survival model: ``survived ~ log(size_cm2)``."""
    return fit_logistic(observations, "survived", min_n=min_n, **kwargs)


def size_at_probability(model_fit: SurvivalModelFit, target: float) -> Optional[float]:
    """Curve size whose probability is closest to ``target``."""
    if not model_fit.prediction_curve:
        return None
    best = min(model_fit.prediction_curve, key=lambda pt: abs(pt.probability - target))
    return best.size
