"""Meta-analysis contract."""

import math
from coralstats.contracts.base import require


def assert_meta_analysis(result) -> None:
    """Enforce the MetaAnalysisResult contract.

    Raises
    ------
    ContractViolation
        If I² leaves [0, 100], τ² is negative, or weights do not sum to 1.
    """
    het = result.heterogeneity
    require(0.0 <= het.i_squared <= 100.0,
            f"Meta-analysis contract violated: I² = {het.i_squared}")
    require(het.tau_squared >= 0.0,
            f"Meta-analysis contract violated: tau² = {het.tau_squared}")
    total = sum(effect.weight for effect in result.per_study_effects)
    require(
        math.isclose(total, 1.0, abs_tol=1e-9),
        f"Meta-analysis contract violated: weights sum to {total}"
    )
