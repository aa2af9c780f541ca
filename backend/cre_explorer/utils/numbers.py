"""Lenient parsing and guarded arithmetic for query params and raw records."""

import math
from typing import Any, Optional


def round_half_up(value: float, ndigits: int = 0) -> float:
    """
    Round .5 away from negative infinity, the way the frontend rounds.

    Python's round() is banker's rounding, which would turn a 58.5
    opportunity score into 58.
    """
    factor = 10 ** ndigits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if ndigits == 0 else rounded


def parse_float(value: Any) -> Optional[float]:
    """Float from a query-string or typed value; None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_int(value: Any) -> Optional[int]:
    """Integer variant of parse_float; fractional input is truncated."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    result = parse_float(value)
    return int(result) if result is not None else None


def safe_divide(numerator: Optional[float], denominator: Optional[float], default=None):
    """numerator / denominator, or default when either side is missing or the divisor is not positive."""
    if numerator is None or denominator is None or denominator <= 0:
        return default
    return numerator / denominator


def mean(values: list[float], default: float = 0) -> float:
    return sum(values) / len(values) if values else default


def median(values: list[float]) -> Optional[float]:
    """Middle value; average of the two middle values for even counts."""
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2
