"""Population matrix contracts.

Enforces structural guarantees of projection matrices and their
elasticity decomposition.
"""

import numpy as np
from coralstats.contracts.base import require


def assert_projection_matrix(survival_part: np.ndarray, fragmentation_part: np.ndarray,
                             atol: float = 1e-9) -> None:
    """Enforce the TransitionMatrix contract.

    Parameters
    ----------
    survival_part : np.ndarray
        Survival-growth part; its column sums are survival probabilities.
    fragmentation_part : np.ndarray
        Fragmentation (reproduction) part, same shape.

    Raises
    ------
    ContractViolation
        If either part is not square, not finite, has cells outside [0, 1],
        or a column's survival-conditioned fates exceed 1.
    """
    require(
        survival_part.ndim == 2 and survival_part.shape[0] == survival_part.shape[1],
        f"Matrix contract violated: shape {survival_part.shape} is not square"
    )
    require(
        fragmentation_part.shape == survival_part.shape,
        f"Matrix contract violated: fragmentation part {fragmentation_part.shape} "
        f"vs {survival_part.shape}"
    )
    for name, part in (("survival", survival_part), ("fragmentation", fragmentation_part)):
        require(np.all(np.isfinite(part)), f"Matrix contract violated: non-finite {name} cells")
        require(
            np.all(part >= -atol) and np.all(part <= 1.0 + atol),
            f"Matrix contract violated: {name} cells outside [0, 1]"
        )
    column_sums = survival_part.sum(axis=0)
    require(
        np.all(column_sums <= 1.0 + atol),
        f"Matrix contract violated: survival column sums {np.round(column_sums, 6).tolist()} exceed 1"
    )


def assert_elasticity_total(elasticity_pct: np.ndarray, tolerance_pct: float) -> None:
    """Enforce that elasticities (in %) sum to 100 within tolerance."""
    total = float(np.sum(elasticity_pct))
    require(
        abs(total - 100.0) <= tolerance_pct,
        f"Elasticity contract violated: cells sum to {total:.4f}%, expected 100 ± {tolerance_pct}"
    )
