"""Centralized failure policy for contract violations.

Contracts fail fast, loud, and once. All violations raise the same
exception type, allowing callers to handle engine bugs uniformly.
"""


class ContractViolation(RuntimeError):
    """Raised when a computation stage breaks an invariant it promised.

    This indicates a bug in engine logic, not bad user input or an
    underpowered dataset.

    Key distinction:
    - CoralStatsError: user input, empty or underpowered data, numerical failure
    - ContractViolation: engine bug (programmer error)
    """
    pass
