"""Query-parameter parsing with typed validation errors.

Every parser either returns a typed value or raises a CoralStatsError
naming the offending parameter. Empty strings mean "not supplied".
Invalid items are rejected, never silently dropped.
"""

import math
import re
from typing import Optional, Sequence

from coralstats.demography.size_classes import validate_breakpoints
from coralstats.errors import InvalidParameter, InvalidRange

__all__ = [
    'sanitize_string',
    'parse_csv_list',
    'parse_number',
    'parse_range',
    'parse_fragment',
    'parse_breaks',
]

_UNSAFE = re.compile(r"[<>\"'`\\]")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_string(value, max_length: int = 1000) -> Optional[str]:
    """Strip markup-sensitive and control characters, cap length, trim."""
    if value is None:
        return None
    text = str(value)[:max_length]
    text = _UNSAFE.sub("", text)
    text = _CONTROL.sub("", text)
    return text.strip()


def parse_csv_list(value, parameter: str, allowed: Optional[Sequence[str]] = None,
                   max_items: int = 100) -> Optional[list]:
    """Comma-separated list, or None when empty.

    Raises
    ------
    InvalidParameter
        Too many items or an item outside ``allowed``.
    """
    text = sanitize_string(value, max_length=5000)
    if not text:
        return None
    items = [item.strip() for item in text.split(",") if item.strip()]
    if not items:
        return None
    if len(items) > max_items:
        raise InvalidParameter(f"Parameter '{parameter}' accepts at most {max_items} items",
                               parameter=parameter, value=value)
    if allowed is not None:
        invalid = [item for item in items if item not in allowed]
        if invalid:
            raise InvalidParameter(
                f"Invalid value(s) for '{parameter}': {', '.join(invalid)}",
                parameter=parameter, value=value, details={"allowed": list(allowed)},
            )
    return items


def parse_number(value, parameter: str, minimum: Optional[float] = None,
                 maximum: Optional[float] = None, default: Optional[float] = None) -> Optional[float]:
    """Finite number within [minimum, maximum]; ``default`` when empty."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"Parameter '{parameter}' must be a valid number",
                               parameter=parameter, value=value)
    if math.isnan(number) or math.isinf(number):
        raise InvalidParameter(f"Parameter '{parameter}' must be a valid number",
                               parameter=parameter, value=value)
    if minimum is not None and number < minimum:
        raise InvalidParameter(f"Parameter '{parameter}' must be >= {minimum:g}",
                               parameter=parameter, value=value)
    if maximum is not None and number > maximum:
        raise InvalidParameter(f"Parameter '{parameter}' must be <= {maximum:g}",
                               parameter=parameter, value=value)
    return number


def parse_range(low, high, low_name: str, high_name: str,
                minimum: Optional[float] = None, maximum: Optional[float] = None,
                defaults: tuple = (None, None)) -> Optional[tuple]:
    """(low, high) pair; None when neither bound is given.

    A missing bound falls back to ``defaults`` and then to ±inf.

    Raises
    ------
    InvalidRange
        If low > high.
    """
    lo = parse_number(low, low_name, minimum, maximum, defaults[0])
    hi = parse_number(high, high_name, minimum, maximum, defaults[1])
    if lo is None and hi is None:
        return None
    lo = -math.inf if lo is None else lo
    hi = math.inf if hi is None else hi
    if lo > hi:
        raise InvalidRange(
            f"{low_name} cannot be greater than {high_name}",
            details={low_name: lo, high_name: hi},
        )
    return lo, hi


def parse_fragment(value, parameter: str = "fragment") -> Optional[str]:
    """``Y``/``N``/``all``/empty to ``fragment``/``colony``/None."""
    text = sanitize_string(value) or ""
    if text in ("", "all"):
        return None
    mapping = {"Y": "fragment", "N": "colony"}
    if text not in mapping:
        raise InvalidParameter(
            f"{parameter} must be 'Y', 'N', 'all', or empty",
            parameter=parameter, value=value, details={"allowed": ["Y", "N", "all"]},
        )
    return mapping[text]


def parse_breaks(value) -> Optional[tuple]:
    """Comma-separated breakpoints (``Inf`` allowed); None when empty.

    Raises
    ------
    InvalidBreakpoints
        Non-numeric, fewer than 2 or not strictly ascending.
    """
    text = sanitize_string(value)
    if not text:
        return None
    tokens = [t.strip() for t in text.split(",") if t.strip()]
    try:
        numbers = [float(t) for t in tokens]
    except ValueError:
        raise InvalidParameter("breaks must be comma-separated numbers",
                               parameter="breaks", value=value)
    return validate_breakpoints(numbers)
