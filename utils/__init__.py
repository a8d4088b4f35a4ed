"""
Utility modules for the trade decision pipeline.

Public API:
    - is_finite_number: NaN/Inf-safe numeric check
    - require_finite: Raise on NaN/Inf (for contract validators)
    - percent_of: Safe percentage helper
"""

from utils.numerical_validation import is_finite_number, percent_of, require_finite

__all__ = [
    "is_finite_number",
    "percent_of",
    "require_finite",
]
