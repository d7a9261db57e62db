"""Restoration scenarios: matrix perturbation and path to stability.

A management action is modelled as a proportional change to one or more
matrix cells: stasis and growth cells are increased, shrinkage cells are
decreased. λ is recomputed with every other cell held fixed.

The path to stability is the smallest uniform improvement (in %) that
lifts λ to a target. Because λ of a non-negative matrix never decreases
when cells increase, the search is a bisection between 0 and the largest
improvement that keeps every cell and every column's survival at or
below 1. A target beyond that bound is reported as Unreachable.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging

import numpy as np

from coralstats.demography.population_matrix import (
    TransitionMatrix,
    dominant_eigenvalue,
    solve,
    transition_type,
)
from coralstats.errors import InvalidParameter, Unreachable

__all__ = [
    'PerturbationResult',
    'Scenario',
    'SCENARIOS',
    'perturb',
    'individual_perturbations',
    'scenario_cells',
    'apply_improvement',
    'max_feasible_improvement',
    'path_to_stability',
    'feasibility_label',
    'restoration_action',
]

logger = logging.getLogger(__name__)

RESTORATION_ACTIONS = {
    ("SC5", "SC5"): "Protect large adult colonies from physical damage, disease",
    ("SC4", "SC4"): "Protect small adult colonies, reduce stressors",
    ("SC4", "SC5"): "Reduce competition, improve conditions for colony growth",
    ("SC3", "SC4"): "Reduce competition for medium colonies",
    ("SC3", "SC3"): "Protect juvenile habitat, manage predation",
    ("SC1", "SC2"): "Fragment/outplant nursery-reared corals at larger sizes",
    ("SC2", "SC3"): "Reduce competition for small colonies, improve habitat",
    ("SC2", "SC2"): "Protect small juvenile habitat, reduce predation",
    ("SC1", "SC1"): "Improve recruit survival, reduce early mortality",
    ("SC3", "SC5"): "Improve growth conditions for large juveniles",
    ("SC5", "SC3"): "Reduce fragmentation/storm damage to large adults",
    ("SC5", "SC2"): "Reduce severe fragmentation of large adults",
    ("SC4", "SC3"): "Reduce partial mortality in small adults",
    ("SC4", "SC2"): "Reduce severe shrinkage of small adults",
}


def restoration_action(source: str, destination: str) -> str:
    return RESTORATION_ACTIONS.get(
        (source, destination), f"Improve {source} to {destination} transition"
    )


@dataclass(frozen=True)
class PerturbationResult:
    baseline_lambda: float
    new_lambda: float
    delta_lambda: float
    pct_change: float
    matrix: TransitionMatrix


def perturb(matrix: TransitionMatrix, target_cells: Sequence[tuple],
            new_values: Sequence[float], eigen_tolerance: float = 1e-8) -> PerturbationResult:
    """Replace ``target_cells`` (row = destination, col = source) and recompute λ.

    Raises
    ------
    InvalidParameter
        Cell outside the matrix, value outside [0, 1], or a source class
        whose survival would exceed 1.
    InvalidMatrix
        The perturbed matrix has no valid dominant eigenvalue.
    """
    baseline = dominant_eigenvalue(matrix.values, eigen_tolerance)
    perturbed = matrix.with_cells(list(target_cells), list(new_values))
    new_lambda = dominant_eigenvalue(perturbed.values, eigen_tolerance)
    delta = new_lambda - baseline
    return PerturbationResult(baseline, new_lambda, delta, delta / baseline * 100.0, perturbed)


@dataclass(frozen=True)
class Scenario:
    scenario_id: str
    name: str
    description: str
    mode: str  # "increase", "decrease" or "mixed"


SCENARIOS = {
    "protect_adults": Scenario("protect_adults", "Protect Adults",
                               "Improve survival of SC4 and SC5 adults", "increase"),
    "enhance_growth": Scenario("enhance_growth", "Enhance Growth",
                               "Improve all upward growth transitions", "increase"),
    "outplanting": Scenario("outplanting", "Outplanting",
                            "Improve early life stage survival and growth (SC1, SC2)", "increase"),
    "reduce_shrinkage": Scenario("reduce_shrinkage", "Reduce Fragmentation/Shrinkage",
                                 "Reduce all shrinkage/fragmentation transitions", "decrease"),
    "full": Scenario("full", "Full Restoration",
                     "All transitions improved simultaneously", "mixed"),
}


def scenario_cells(matrix: TransitionMatrix, scenario_id: str) -> list:
    """Non-zero cells a named scenario acts on."""
    if scenario_id not in SCENARIOS:
        raise InvalidParameter(
            f"Invalid scenario. Must be one of: {', '.join(SCENARIOS)}",
            parameter="scenario", value=scenario_id,
        )
    a = matrix.values
    k = matrix.n_classes
    nonzero = [(i, j) for j in range(k) for i in range(k) if a[i, j] > 0]
    if scenario_id == "protect_adults":
        wanted = {(k - 2, k - 2), (k - 1, k - 1)} if k >= 2 else {(0, 0)}
        return [c for c in nonzero if c in wanted]
    if scenario_id == "outplanting":
        wanted = {(0, 0), (1, 0), (1, 1)}
        return [c for c in nonzero if c in wanted]
    if scenario_id == "enhance_growth":
        return [(i, j) for i, j in nonzero if i > j]
    if scenario_id == "reduce_shrinkage":
        return [(i, j) for i, j in nonzero if i < j]
    return nonzero


def _directions(cells: Sequence[tuple], mode: str) -> np.ndarray:
    """+1 where the cell is increased, -1 where it is decreased."""
    if mode == "increase":
        return np.ones(len(cells))
    if mode == "decrease":
        return -np.ones(len(cells))
    return np.array([-1.0 if transition_type(i, j) == "shrinkage" else 1.0 for i, j in cells])


def apply_improvement(matrix: TransitionMatrix, cells: Sequence[tuple], pct: float,
                      mode: str = "increase", cap: bool = True) -> TransitionMatrix:
    """Scale ``cells`` by ``1 ± pct/100`` according to ``mode``.

    With ``cap`` the results are clipped into [0, 1]. Column survival is
    not clipped: beyond ``max_feasible_improvement`` the edit raises
    InvalidParameter.
    """
    if not cells:
        return matrix
    a = matrix.values
    signs = _directions(cells, mode)
    values = [a[i, j] * (1.0 + s * pct / 100.0) for (i, j), s in zip(cells, signs)]
    if cap:
        values = [min(1.0, max(0.0, v)) for v in values]
    return matrix.with_cells(list(cells), values)


def max_feasible_improvement(matrix: TransitionMatrix, cells: Sequence[tuple],
                             mode: str = "increase") -> float:
    """Largest improvement (%) keeping cells and survival column sums within 1."""
    if not cells:
        return 0.0
    a = matrix.values
    u = matrix.survival_part
    signs = _directions(cells, mode)
    bound = np.inf if np.any(signs > 0) else 100.0
    for (i, j), s in zip(cells, signs):
        if s > 0 and a[i, j] > 0:
            bound = min(bound, (1.0 / a[i, j] - 1.0) * 100.0)
        elif s < 0:
            bound = min(bound, 100.0)
    for j in set(j for _, j in cells):
        up = sum(u[i, jj] for (i, jj), s in zip(cells, signs) if jj == j and s > 0)
        down = sum(u[i, jj] for (i, jj), s in zip(cells, signs) if jj == j and s < 0)
        net = up - down
        if net > 0:
            slack = 1.0 - u[:, j].sum()
            bound = min(bound, max(0.0, slack) / net * 100.0)
    return float(bound)


def feasibility_label(pct: Optional[float], feasible_pct: float = 10.0,
                      moderate_pct: float = 25.0) -> str:
    if pct is None:
        return "unreachable"
    if pct <= feasible_pct:
        return "feasible"
    if pct <= moderate_pct:
        return "moderate"
    return "difficult"


def significant_cells(matrix: TransitionMatrix, threshold_pct: float,
                      elasticity: Optional[np.ndarray] = None) -> list:
    """Cells whose elasticity is at least ``threshold_pct`` percent."""
    if elasticity is None:
        elasticity = solve(matrix).elasticity
    k = matrix.n_classes
    return [(i, j) for j in range(k) for i in range(k)
            if elasticity[i, j] >= threshold_pct and matrix.values[i, j] > 0]


def path_to_stability(
    matrix: TransitionMatrix,
    target_lambda: float = 1.0,
    cells: Optional[Sequence[tuple]] = None,
    mode: str = "increase",
    significant_pct: float = 0.5,
    tolerance: float = 1e-4,
    max_iterations: int = 60,
    eigen_tolerance: float = 1e-8,
) -> float:
    """Smallest uniform improvement (%) that brings λ to ``target_lambda``.

    Parameters
    ----------
    matrix : TransitionMatrix
    target_lambda : float
    cells : sequence of (row, col), optional
        Cells to improve; defaults to every cell with elasticity >=
        ``significant_pct``.
    mode : {"increase", "decrease", "mixed"}
        Direction of the change (see ``apply_improvement``).

    Returns
    -------
    float
        0.0 when λ already meets the target.

    Raises
    ------
    Unreachable
        If the target cannot be met without a cell or a column's survival
        exceeding 1.

    Examples
    --------
    >>> path_to_stability(TransitionMatrix.from_array([[0.5, 0.5], [0.5, 0.5]]))
    0.0
    """
    baseline = dominant_eigenvalue(matrix.values, eigen_tolerance)
    if baseline >= target_lambda - tolerance:
        return 0.0

    if cells is None:
        cells = significant_cells(matrix, significant_pct)
    cells = list(cells)
    bound = max_feasible_improvement(matrix, cells, mode)

    def lam_at(pct: float) -> float:
        return dominant_eigenvalue(apply_improvement(matrix, cells, pct, mode).values,
                                   eigen_tolerance)

    lam_bound = lam_at(bound) if cells and bound > 0 else baseline
    if lam_bound < target_lambda - tolerance:
        raise Unreachable(
            f"λ = {target_lambda} cannot be reached without transition probabilities above 1",
            details={
                "target_lambda": target_lambda,
                "baseline_lambda": baseline,
                "max_feasible_pct": bound,
                "lambda_at_bound": lam_bound,
                "n_cells": len(cells),
            },
        )

    lo, hi = 0.0, bound
    for _ in range(max_iterations):
        mid = (lo + hi) / 2.0
        lam = lam_at(mid)
        if abs(lam - target_lambda) < tolerance:
            return mid
        if lam < target_lambda:
            lo = mid
        else:
            hi = mid
    logger.debug("Bisection stopped after %d iterations at %.4f%%", max_iterations, hi)
    return hi


def individual_perturbations(matrix: TransitionMatrix, elasticity: np.ndarray,
                             improvement_pct: float, eigen_tolerance: float = 1e-8) -> list:
    """One perturbation per non-zero cell, sorted by descending Δλ.

    Shrinkage cells are reduced, stasis and growth cells increased (capped
    at 1). Cells whose value would not change are skipped.
    """
    a = matrix.values
    labels = matrix.labels
    baseline = dominant_eigenvalue(a, eigen_tolerance)
    results = []
    for j in range(matrix.n_classes):
        for i in range(matrix.n_classes):
            value = a[i, j]
            if value == 0:
                continue
            kind = transition_type(i, j)
            if kind == "shrinkage":
                new_value = max(0.0, value * (1 - improvement_pct / 100.0))
            else:
                new_value = min(1.0, value * (1 + improvement_pct / 100.0))
            if abs(new_value - value) < 1e-10:
                continue
            try:
                candidate = matrix.with_cells([(i, j)], [new_value])
            except InvalidParameter:
                # source class survival would exceed 1
                continue
            new_lambda = dominant_eigenvalue(candidate.values, eigen_tolerance)
            delta = new_lambda - baseline
            source, destination = labels[j], labels[i]
            results.append({
                "from_class": source,
                "to_class": destination,
                "baseline_value": float(value),
                "perturbed_value": float(new_value),
                "baseline_lambda": baseline,
                "new_lambda": new_lambda,
                "delta_lambda": delta,
                "pct_lambda_change": delta / baseline * 100.0,
                "elasticity_pct": float(elasticity[i, j]),
                "restoration_action": restoration_action(source, destination),
                "transition_type": kind,
            })
    results.sort(key=lambda r: -r["delta_lambda"])
    return results
