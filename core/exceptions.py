"""
Exception hierarchy for the trade decision pipeline.

Policy rejections are NOT exceptions: a failing risk or quality rule is a
normal negative DecisionResult. Exceptions are reserved for structural
problems and illegal state changes, which are always fatal to the call.
"""

from typing import Optional


class TradingError(Exception):
    """Base class for all pipeline errors."""


class InvalidStateError(TradingError):
    """Raised when a lifecycle state label is not recognised."""


class InvalidTransitionError(TradingError):
    """
    Raised on an illegal lifecycle transition attempt.

    The lifecycle the transition was attempted on is left unchanged.
    """

    def __init__(self, from_state: str, to_state: str, message: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message or f"Cannot transition from {from_state} to {to_state}"
        )


class ConcurrentModificationError(TradingError):
    """Raised when an optimistic version check loses to a concurrent writer."""

    def __init__(self, recommendation_id: str, expected_version: int, actual_version: Optional[int]):
        self.recommendation_id = recommendation_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Recommendation {recommendation_id} changed concurrently: "
            f"expected version {expected_version}, found {actual_version}"
        )


class RecommendationNotFoundError(TradingError):
    """Raised when a recommendation id is unknown to the store."""


class DuplicateRecommendationError(TradingError):
    """Raised when registering a recommendation id that already exists."""


class MalformedDecisionError(TradingError):
    """Raised when a decision result fails structural or digest verification."""
