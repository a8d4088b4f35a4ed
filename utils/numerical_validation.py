"""
Numerical validation helpers for prices, ratios and P&L figures.

Ensures that values flowing into risk arithmetic are finite before they
are compared, persisted or logged.
"""

import math
from typing import Any, Union

Numeric = Union[float, int]


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are neither NaN nor infinite. Bools are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def require_finite(value: Numeric, name: str) -> float:
    """
    Return ``value`` as float or raise.

    Used from pydantic validators so that a NaN price fails contract
    construction instead of slipping into a comparison that is always False.

    Raises:
        ValueError: If the value is not a finite number
    """
    if not is_finite_number(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return float(value)


def percent_of(part: Numeric, whole: Numeric) -> float | None:
    """``part`` as a percentage of ``whole``, or None when ``whole`` is not positive."""
    if not is_finite_number(whole) or whole <= 0 or not is_finite_number(part):
        return None
    return float(part) / float(whole) * 100.0
