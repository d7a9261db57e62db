"""Response envelopes and JSON conversion.

Success: ``{"error": false, "data": ..., "meta": {...}}``
Failure: ``{"error": true, "code": ..., "message": ..., "details": {...}}``
"""

import dataclasses
import math

import numpy as np
import pandas as pd

from coralstats.errors import CoralStatsError

__all__ = ['success', 'failure', 'internal_failure', 'to_jsonable']


def to_jsonable(obj):
    """Recursively convert results into JSON-safe values.

    Dataclasses become dicts, numpy scalars and arrays become Python
    values and lists, DataFrames become record lists, and NaN or ±inf
    become None.
    """
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name.rstrip("_"): to_jsonable(getattr(obj, f.name))
                for f in dataclasses.fields(obj)}
    if isinstance(obj, pd.DataFrame):
        return [to_jsonable(r) for r in obj.to_dict(orient="records")]
    if isinstance(obj, pd.Series):
        return to_jsonable(obj.tolist())
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_jsonable(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return to_jsonable(obj.tolist())
    if isinstance(obj, np.generic):
        return to_jsonable(obj.item())
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if obj is pd.NA or obj is pd.NaT:
        return None
    return obj


def success(data, meta=None) -> dict:
    return {"error": False, "data": to_jsonable(data), "meta": to_jsonable(meta or {})}


def failure(err: CoralStatsError) -> dict:
    return {"error": True, "code": err.code, "message": err.message,
            "details": to_jsonable(err.details)}


def internal_failure(message: str = "Internal server error") -> dict:
    """Failure envelope for errors outside the CoralStatsError taxonomy."""
    return {"error": True, "code": "INTERNAL_ERROR", "message": message, "details": {}}
