"""Group summary contract.

Enforces the guarantee that aggregated proportions are well-formed.
"""

from coralstats.contracts.base import require


def assert_group_summaries(summaries, proportion: bool) -> None:
    """Enforce the GroupAggregator output contract.

    Parameters
    ----------
    summaries : sequence of GroupSummary
        Output from ``aggregate()``.
    proportion : bool
        True when the outcome is binary and CI bounds must nest in [0, 1].

    Raises
    ------
    ContractViolation
        If a group is empty or a proportion interval is malformed.
    """
    for summary in summaries:
        require(
            summary.n > 0,
            f"Group summary contract violated: empty group {summary.group_key}"
        )
        if not proportion:
            continue
        require(
            0.0 <= summary.ci_lower <= summary.rate <= summary.ci_upper <= 1.0,
            f"Group summary contract violated: interval "
            f"[{summary.ci_lower}, {summary.ci_upper}] around {summary.rate} "
            f"for {summary.group_key}"
        )
