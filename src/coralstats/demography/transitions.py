"""Size-class transition counts from survival, growth and fragmentation data.

The counts are the sufficient statistics of the matrix model and the unit
that the bootstrap resamples:

- survival: per source class, colonies observed and colonies surviving
- fates: per source class, surviving colonies ending in each class, with
  ``final_size = max(min_final_size, size + growth)``
- fragmentation: per source class, colonies observed and colonies that
  produced a recruited fragment (optional)
"""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np
import pandas as pd

from coralstats.demography.size_classes import SizeClassifier
from coralstats.errors import InsufficientData

__all__ = ['TransitionCounts', 'count_transitions', 'transition_probabilities', 'fate_counts']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionCounts:
    """Per-class counts; row = destination class, column = source class.

    Attributes
    ----------
    labels : tuple of str
    fates : np.ndarray, shape (k, k)
        ``fates[i, j]`` surviving colonies that moved from class j to class i.
    survival_n, survival_events : np.ndarray, shape (k,)
    fragmentation_n, fragmentation_events : np.ndarray or None
    """
    labels: tuple
    fates: np.ndarray
    survival_n: np.ndarray
    survival_events: np.ndarray
    fragmentation_n: Optional[np.ndarray] = None
    fragmentation_events: Optional[np.ndarray] = None

    @property
    def n_classes(self) -> int:
        return len(self.labels)

    @property
    def has_fragmentation(self) -> bool:
        return self.fragmentation_n is not None

    def survival_rates(self) -> np.ndarray:
        n = self.survival_n.astype(float)
        return np.divide(self.survival_events, n, out=np.zeros_like(n), where=n > 0)

    def fate_probabilities(self) -> np.ndarray:
        """Column-normalized fates; columns without data are all zero."""
        totals = self.fates.sum(axis=0).astype(float)
        return np.divide(self.fates, totals, out=np.zeros(self.fates.shape), where=totals > 0)

    def fragmentation_rates(self) -> np.ndarray:
        if not self.has_fragmentation:
            return np.zeros(self.n_classes)
        n = self.fragmentation_n.astype(float)
        return np.divide(self.fragmentation_events, n, out=np.zeros_like(n), where=n > 0)


def _classified_growth(growth: pd.DataFrame, classifier: SizeClassifier,
                       min_final_size: float) -> pd.DataFrame:
    df = growth[["size_cm2", "growth_cm2_yr"]].apply(pd.to_numeric, errors="coerce").dropna()
    df = df[df["size_cm2"] > 0]
    final_size = np.maximum(min_final_size, df["size_cm2"] + df["growth_cm2_yr"])
    df = df.assign(
        initial_class=classifier.classify_series(df["size_cm2"]),
        final_class=classifier.classify_series(final_size),
    )
    return df.dropna(subset=["initial_class", "final_class"])


def fate_counts(growth: pd.DataFrame, classifier: SizeClassifier,
                min_final_size: float = 1.0) -> np.ndarray:
    """k×k fate counts (destination row, source column) from growth records."""
    df = _classified_growth(growth, classifier, min_final_size)
    k = classifier.n_classes
    fates = np.zeros((k, k), dtype=int)
    np.add.at(fates, (df["final_class"].cat.codes.to_numpy(),
                      df["initial_class"].cat.codes.to_numpy()), 1)
    return fates


def transition_probabilities(growth: pd.DataFrame, classifier: SizeClassifier,
                             min_final_size: float = 1.0, min_n: int = 20) -> pd.DataFrame:
    """Row-normalized initial→final class probabilities.

    One row per initial class with at least one record; one column per
    final class (missing combinations are 0).

    Raises
    ------
    InsufficientData
        Fewer than ``min_n`` growth records.
    """
    if len(growth) < min_n:
        raise InsufficientData(
            f"Not enough data to compute transition matrix (minimum {min_n} records required)",
            n=len(growth), minimum_required=min_n,
        )
    fates = fate_counts(growth, classifier, min_final_size)
    by_source = fates.T.astype(float)
    totals = by_source.sum(axis=1)
    probs = np.divide(by_source, totals[:, None], out=np.zeros_like(by_source),
                      where=totals[:, None] > 0)
    table = pd.DataFrame(probs, columns=list(classifier.labels))
    table.insert(0, "initial_class", list(classifier.labels))
    table.insert(1, "n", totals.astype(int))
    return table[totals > 0].reset_index(drop=True)


def count_transitions(
    survival: pd.DataFrame,
    growth: pd.DataFrame,
    classifier: SizeClassifier,
    fragmentation: Optional[pd.DataFrame] = None,
    min_final_size: float = 1.0,
) -> TransitionCounts:
    """Aggregate observation tables into TransitionCounts.

    Rows with missing size or outcome, or size <= 0, are dropped from each
    table independently.
    """
    k = classifier.n_classes

    surv = survival[["size_cm2", "survived"]].apply(pd.to_numeric, errors="coerce").dropna()
    surv = surv[surv["size_cm2"] > 0]
    codes = np.asarray(classifier.classify_series(surv["size_cm2"]).codes)
    keep = codes >= 0
    survival_n = np.bincount(codes[keep], minlength=k)
    survival_events = np.bincount(codes[keep], weights=surv["survived"].to_numpy()[keep],
                                  minlength=k).round().astype(int)

    fates = fate_counts(growth, classifier, min_final_size)

    fragmentation_n = fragmentation_events = None
    if fragmentation is not None and len(fragmentation):
        frag = fragmentation[["size_cm2", "recruited"]].apply(pd.to_numeric, errors="coerce").dropna()
        frag = frag[frag["size_cm2"] > 0]
        fcodes = np.asarray(classifier.classify_series(frag["size_cm2"]).codes)
        fkeep = fcodes >= 0
        fragmentation_n = np.bincount(fcodes[fkeep], minlength=k)
        fragmentation_events = np.bincount(
            fcodes[fkeep], weights=(frag["recruited"].to_numpy()[fkeep] > 0), minlength=k
        ).round().astype(int)

    logger.debug("Transition counts: survival n=%s, fates=%d, fragmentation=%s",
                 survival_n.tolist(), int(fates.sum()),
                 None if fragmentation_n is None else fragmentation_n.tolist())
    return TransitionCounts(
        labels=tuple(classifier.labels),
        fates=fates,
        survival_n=survival_n,
        survival_events=survival_events,
        fragmentation_n=fragmentation_n,
        fragmentation_events=fragmentation_events,
    )
