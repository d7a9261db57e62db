"""Typed failures for the demographic engine and its query layer.

Every failure a caller can act on carries a machine-readable ``code``, a
human-readable ``message`` and structured ``details`` (parameter name and
value, thresholds, counts) sufficient to reproduce the failing call.

Key distinction:
- CoralStatsError: bad input, empty/underpowered data, numerical failure
- ContractViolation (in ``coralstats.contracts``): engine bug
"""

from typing import Any, Optional

__all__ = [
    "CoralStatsError",
    "DataUnavailable",
    "InvalidParameter",
    "InvalidRange",
    "InvalidBreakpoints",
    "NoDataFound",
    "InsufficientData",
    "ModelFittingFailed",
    "InvalidMatrix",
    "Unreachable",
]


class CoralStatsError(Exception):
    """Base class for all recoverable, reportable failures."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class DataUnavailable(CoralStatsError):
    """The dataset required by a query was never loaded."""

    code = "DATA_UNAVAILABLE"
    status_code = 500


class InvalidParameter(CoralStatsError, ValueError):
    """A client-supplied parameter is malformed or out of bounds."""

    code = "INVALID_PARAMETER"
    status_code = 400

    def __init__(self, message: str, parameter: Optional[str] = None,
                 value: Any = None, details: Optional[dict[str, Any]] = None):
        merged = {}
        if parameter is not None:
            merged["parameter"] = parameter
            merged["value"] = value
        merged.update(details or {})
        super().__init__(message, merged)
        self.parameter = parameter
        self.value = value


class InvalidRange(CoralStatsError, ValueError):
    """A (min, max) pair where min > max."""

    code = "INVALID_RANGE"
    status_code = 400


class InvalidBreakpoints(InvalidParameter):
    """Size-class breakpoints are not a strictly ascending sequence of >= 2 values."""

    def __init__(self, message: str, breakpoints: Any = None):
        super().__init__(message, parameter="breaks", value=breakpoints)


class NoDataFound(CoralStatsError):
    """Valid request whose filters match zero rows."""

    code = "NO_DATA_FOUND"
    status_code = 404


class InsufficientData(CoralStatsError):
    """Valid request with too few rows for a reliable estimate."""

    code = "INSUFFICIENT_DATA"
    status_code = 400

    def __init__(self, message: str, n: int, minimum_required: int,
                 details: Optional[dict[str, Any]] = None):
        merged = {"n": int(n), "minimum_required": int(minimum_required)}
        merged.update(details or {})
        super().__init__(message, merged)
        self.n = int(n)
        self.minimum_required = int(minimum_required)


class ModelFittingFailed(CoralStatsError):
    """Numerical non-convergence or a degenerate fit."""

    code = "MODEL_FITTING_FAILED"
    status_code = 500


class InvalidMatrix(CoralStatsError):
    """Projection matrix without a real, positive dominant eigenvalue."""

    code = "INVALID_MATRIX"
    status_code = 500


class Unreachable(CoralStatsError):
    """Target growth rate cannot be reached without invalid probabilities."""

    code = "UNREACHABLE"
    status_code = 422
