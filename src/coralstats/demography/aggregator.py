"""Per-group counts, rates and Wald confidence intervals.

Groups observations by any combination of columns (study, fragment status,
size class, data type, ...) and summarizes either a binary outcome
(survival) or a continuous one (growth rate).

Missing-row policy: rows whose outcome or any grouping key is missing are
dropped before grouping. Empty groups are never emitted.

Binary outcomes use the normal-approximation (Wald) interval
``p ± z·sqrt(p(1-p)/n)`` clipped to [0, 1]. Near 0 or 1 this interval can
collapse to zero width; that is a known limitation of the estimator and is
kept as is.
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from coralstats.contracts import assert_group_summaries
from coralstats.errors import InvalidParameter

__all__ = ['GroupSummary', 'aggregate', 'wald_interval']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupSummary:
    """Summary of one group.

    ``rate`` is the mean outcome (a proportion for binary outcomes).
    ``se``/``ci_*`` are None for continuous groups with fewer than 2 rows.
    ``stats`` holds auxiliary values (event counts, size and year ranges,
    quartiles for continuous outcomes).
    """
    group_key: dict
    n: int
    rate: float
    se: Optional[float]
    ci_lower: Optional[float]
    ci_upper: Optional[float]
    stats: dict = field(default_factory=dict)

    def to_record(self) -> dict:
        """Flat dict: group key columns first, then the summary fields."""
        record = dict(self.group_key)
        record.update(n=self.n, rate=self.rate, se=self.se,
                      ci_lower=self.ci_lower, ci_upper=self.ci_upper)
        record.update(self.stats)
        return record


def wald_interval(p: float, n: int, z: float = 1.96) -> tuple:
    """Wald SE and CI for a proportion, CI clipped to [0, 1]."""
    se = float(np.sqrt(p * (1.0 - p) / n))
    return se, max(0.0, p - z * se), min(1.0, p + z * se)


def _auxiliary(group: pd.DataFrame) -> dict:
    stats = {}
    if "size_cm2" in group.columns:
        sizes = group["size_cm2"].dropna()
        if len(sizes):
            stats.update(
                size_min=float(sizes.min()),
                size_max=float(sizes.max()),
                size_median=float(sizes.median()),
                size_mean=float(sizes.mean()),
            )
    if "survey_year" in group.columns:
        years = group["survey_year"].dropna()
        if len(years):
            stats.update(year_min=int(years.min()), year_max=int(years.max()))
    return stats


def _summarize_binary(values: np.ndarray, z: float) -> tuple:
    n = len(values)
    events = int(values.sum())
    p = events / n
    se, lo, hi = wald_interval(p, n, z)
    return p, se, lo, hi, {"n_events": events}


def _summarize_continuous(values: np.ndarray, z: float) -> tuple:
    n = len(values)
    mean = float(values.mean())
    stats = {
        "sd": float(values.std(ddof=1)) if n > 1 else None,
        "median": float(np.median(values)),
        "q25": float(np.percentile(values, 25)),
        "q75": float(np.percentile(values, 75)),
        "pct_positive": float((values > 0).mean() * 100.0),
        "pct_negative": float((values < 0).mean() * 100.0),
    }
    if n < 2:
        return mean, None, None, None, stats
    se = stats["sd"] / np.sqrt(n)
    return mean, float(se), mean - z * se, mean + z * se, stats


def aggregate(
    observations: pd.DataFrame,
    group_by: Sequence[str],
    outcome: str,
    kind: Literal["binary", "continuous"] = "binary",
    sort: Literal["n", "key"] = "n",
    z: float = 1.96,
) -> list:
    """Summarize ``outcome`` per group.

    Parameters
    ----------
    observations : pd.DataFrame
        Rows to summarize (not modified).
    group_by : sequence of str
        Grouping columns. Ordered categoricals keep their category order.
    outcome : str
        Outcome column; 0/1 for ``kind="binary"``.
    kind : {"binary", "continuous"}
        Proportion with clipped Wald CI, or mean with sample SE.
    sort : {"n", "key"}
        ``"n"``: descending n, ties broken by key (forest plots).
        ``"key"``: natural key order (size tables).
    z : float
        Normal quantile for the interval.

    Returns
    -------
    list of GroupSummary

    Raises
    ------
    InvalidParameter
        If a column is missing or a binary outcome holds values other than 0/1.
    """
    group_by = list(group_by)
    missing = [c for c in group_by + [outcome] if c not in observations.columns]
    if missing:
        raise InvalidParameter(f"Unknown column(s): {', '.join(missing)}",
                               parameter="group_by", value=missing)
    if kind not in ("binary", "continuous"):
        raise InvalidParameter(f"Unknown outcome kind '{kind}'", parameter="kind", value=kind)

    df = observations.copy()
    df[outcome] = pd.to_numeric(df[outcome], errors="coerce")
    before = len(df)
    df = df.dropna(subset=group_by + [outcome])
    if len(df) < before:
        logger.debug("Dropped %d rows with missing %s or group key", before - len(df), outcome)

    if kind == "binary" and not df[outcome].isin([0, 1]).all():
        raise InvalidParameter(f"Binary outcome '{outcome}' must be 0/1",
                               parameter="outcome", value=outcome)

    summarize = _summarize_binary if kind == "binary" else _summarize_continuous
    summaries = []
    if len(df):
        grouped = df.groupby(group_by, observed=True, sort=True)
        for key, group in grouped:
            if not isinstance(key, tuple):
                key = (key,)
            values = group[outcome].to_numpy(dtype=float)
            if len(values) == 0:
                continue
            rate, se, lo, hi, stats = summarize(values, z)
            stats.update(_auxiliary(group))
            group_key = {col: (k.item() if hasattr(k, "item") else k) for col, k in zip(group_by, key)}
            summaries.append(GroupSummary(group_key, len(values), float(rate), se, lo, hi, stats))

    # groupby(sort=True) already yields natural key order
    if sort == "n":
        summaries = sorted(summaries, key=lambda s: -s.n)

    assert_group_summaries(summaries, proportion=(kind == "binary"))
    return summaries
