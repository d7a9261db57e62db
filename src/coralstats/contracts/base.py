"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
"""

from coralstats.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce a stage contract.

    Called at stage boundaries to verify the preceding stage produced the
    guaranteed invariants. Fail-fast: no recovery, no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ContractViolation is raised.

    message : str
        Error message explaining the contract violation (for debugging).

    Raises
    ------
    ContractViolation
        If condition is False.

    Examples
    --------
    >>> require(matrix.shape[0] == matrix.shape[1], "Matrix contract: not square")
    """
    if not condition:
        raise ContractViolation(message)
