"""Engine contracts: fail-fast enforcement of stage invariants.

Contracts fail immediately and loudly when a computation stage does not
produce its promised invariants.

Key principle:
- Pydantic validates config correctness
- Query parsing validates client input (typed CoralStatsError)
- Contracts validate engine correctness
"""

from coralstats.contracts.failure import ContractViolation
from coralstats.contracts.base import require
from coralstats.contracts.summaries import assert_group_summaries
from coralstats.contracts.matrix import assert_projection_matrix, assert_elasticity_total
from coralstats.contracts.meta import assert_meta_analysis
from coralstats.contracts.invariants import ENGINE_INVARIANTS

__all__ = [
    "ContractViolation",
    "require",
    "assert_group_summaries",
    "assert_projection_matrix",
    "assert_elasticity_total",
    "assert_meta_analysis",
    "ENGINE_INVARIANTS",
]
