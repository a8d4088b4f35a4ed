"""
Decision Engine: ordered pure checks producing a sealed DecisionResult.
"""

from .checks import (
    DecisionCheck,
    PortfolioConstraints,
    RiskRules,
    SetupQuality,
    Validator,
    Violation,
    default_checks,
)
from .core import DecisionEngine
from .types import CheckOutcome, DecisionResult

__all__ = [
    "CheckOutcome",
    "DecisionCheck",
    "DecisionEngine",
    "DecisionResult",
    "PortfolioConstraints",
    "RiskRules",
    "SetupQuality",
    "Validator",
    "Violation",
    "default_checks",
]
