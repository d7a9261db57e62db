"""Size-class assignment from configurable breakpoints.

Intervals are closed on the right, ``(b[i], b[i+1]]``, and the first class
also includes ``b[0]``. Sizes below ``b[0]`` fall into the first class; the
caller decides whether to flag them. The last class is open-ended: sizes
above a finite last breakpoint fall into it.
"""

from dataclasses import dataclass
from functools import total_ordering
from typing import Optional, Sequence
import math

import numpy as np
import pandas as pd

from coralstats.errors import InvalidBreakpoints

__all__ = ['SizeClass', 'SizeClassifier', 'classify', 'validate_breakpoints']


@total_ordering
@dataclass(frozen=True)
class SizeClass:
    """One ordered size bucket (``SC1`` is the smallest)."""
    index: int
    label: str
    lower: float
    upper: float

    def __lt__(self, other):
        if not isinstance(other, SizeClass):
            return NotImplemented
        return self.index < other.index

    def __str__(self):
        return self.label


def validate_breakpoints(breakpoints: Sequence[float]) -> tuple:
    """Return breakpoints as a float tuple or raise InvalidBreakpoints."""
    try:
        values = tuple(float(b) for b in breakpoints)
    except (TypeError, ValueError):
        raise InvalidBreakpoints("Breakpoints must be numeric", breakpoints=list(breakpoints))
    if len(values) < 2:
        raise InvalidBreakpoints(
            f"At least 2 breakpoints are required, got {len(values)}", breakpoints=list(values)
        )
    if any(math.isnan(b) for b in values):
        raise InvalidBreakpoints("Breakpoints must not contain NaN", breakpoints=list(values))
    if any(lo >= hi for lo, hi in zip(values, values[1:])):
        raise InvalidBreakpoints(
            "Breakpoints must be strictly ascending", breakpoints=list(values)
        )
    return values


class SizeClassifier:
    """Maps continuous sizes (cm²) to ordered size classes.

    Parameters
    ----------
    breakpoints : sequence of float
        Strictly ascending, at least 2 values; the last may be ``inf``.
    labels : sequence of str, optional
        One label per class. Defaults to ``SC1..SCk``.

    Raises
    ------
    InvalidBreakpoints
        If the breakpoints are not strictly ascending or fewer than 2.

    Examples
    --------
    >>> clf = SizeClassifier([0, 25, 100, 500, 2000, float("inf")])
    >>> clf.classify(2500).label
    'SC5'
    >>> clf.classify(0).label
    'SC1'
    """

    def __init__(self, breakpoints: Sequence[float], labels: Optional[Sequence[str]] = None):
        self.breakpoints = validate_breakpoints(breakpoints)
        n_classes = len(self.breakpoints) - 1
        if labels is None:
            labels = [f"SC{i}" for i in range(1, n_classes + 1)]
        labels = tuple(str(label) for label in labels)
        if len(labels) != n_classes:
            raise InvalidBreakpoints(
                f"{n_classes} size classes need {n_classes} labels, got {len(labels)}",
                breakpoints=list(self.breakpoints),
            )
        self.labels = labels
        self.classes = tuple(
            SizeClass(i, label, self.breakpoints[i], self.breakpoints[i + 1])
            for i, label in enumerate(labels)
        )

    @property
    def n_classes(self) -> int:
        return len(self.classes)

    def _indices(self, sizes: np.ndarray) -> np.ndarray:
        """Class index per size; -1 for NaN."""
        idx = np.searchsorted(np.asarray(self.breakpoints), sizes, side="left") - 1
        idx = np.clip(idx, 0, self.n_classes - 1)
        idx[np.isnan(sizes)] = -1
        return idx

    def classify(self, size: float) -> Optional[SizeClass]:
        """Class of a single size, or None when the size is NaN."""
        idx = self._indices(np.array([float(size)]))[0]
        if idx < 0:
            return None
        return self.classes[idx]

    def classify_series(self, sizes) -> pd.Categorical:
        """Vectorized classification into an ordered categorical.

        Missing sizes become NaN.
        """
        values = np.asarray(pd.to_numeric(pd.Series(sizes), errors="coerce"), dtype=float)
        idx = self._indices(values)
        return pd.Categorical.from_codes(idx, categories=list(self.labels), ordered=True)

    def class_index(self, label: str) -> int:
        return self.labels.index(label)

    @classmethod
    def from_config(cls, config) -> "SizeClassifier":
        """Build from an ``InternalSizeClassConfig``."""
        return cls(config.breakpoints, config.labels)


def classify(size: float, breakpoints: Sequence[float],
             labels: Optional[Sequence[str]] = None) -> Optional[SizeClass]:
    """Classify one size against ``breakpoints``.

    Raises
    ------
    InvalidBreakpoints
        If ``breakpoints`` is not strictly ascending or has fewer than 2 values.
    """
    return SizeClassifier(breakpoints, labels).classify(size)
