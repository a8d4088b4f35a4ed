"""
Configuration constants for the trade decision pipeline.

This module defines the closed vocabularies used throughout the application:
- Trade bias, setup status and sizing hints carried by the data contracts
- Lifecycle states of a recommendation
- Advisory levels and operating modes consumed by the Executor
- Reason codes reported by checks and gates

Every enum subclasses ``str`` so values serialize cleanly into audit
payloads and structured logs.

Example:
    >>> from config.constants import Bias, LifecycleState
    >>> Bias("long") is Bias.LONG
    True
    >>> LifecycleState.PROPOSED.value
    'PROPOSED'
"""

from enum import Enum
from typing import Final


class Bias(str, Enum):
    """Proposed trade direction."""

    LONG = "long"
    SHORT = "short"
    AVOID = "avoid"


class SetupStatus(str, Enum):
    """Whether observed conditions currently support acting on an intent."""

    READY = "READY"
    WATCHING = "WATCHING"
    NOT_READY = "NOT_READY"


class SizingHint(str, Enum):
    """Qualitative sizing hint. Never a quantity."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


SIZING_HINT_MULTIPLIERS: Final[dict[SizingHint, float]] = {
    SizingHint.SMALL: 0.5,
    SizingHint.MEDIUM: 1.0,
    SizingHint.LARGE: 1.5,
}


class LifecycleState(str, Enum):
    """
    States of the trade lifecycle finite-state machine.

    PROPOSED is the initial state. EXITED, CANCELLED and INVALIDATED are
    absorbing.
    """

    PROPOSED = "PROPOSED"
    APPROVED = "APPROVED"
    QUEUED = "QUEUED"
    ENTERED = "ENTERED"
    MANAGING = "MANAGING"
    EXITED = "EXITED"
    CANCELLED = "CANCELLED"
    INVALIDATED = "INVALIDATED"


TERMINAL_STATES: Final[frozenset[LifecycleState]] = frozenset(
    {LifecycleState.EXITED, LifecycleState.CANCELLED, LifecycleState.INVALIDATED}
)

ACTIVE_STATES: Final[frozenset[LifecycleState]] = frozenset(
    {
        LifecycleState.APPROVED,
        LifecycleState.QUEUED,
        LifecycleState.ENTERED,
        LifecycleState.MANAGING,
    }
)

# Cancellation and invalidation are only reachable before ENTERED.
# Once a position exists the only way out is MANAGING -> EXITED.
TRANSITIONS: Final[dict[LifecycleState, frozenset[LifecycleState]]] = {
    LifecycleState.PROPOSED: frozenset(
        {LifecycleState.APPROVED, LifecycleState.CANCELLED, LifecycleState.INVALIDATED}
    ),
    LifecycleState.APPROVED: frozenset(
        {LifecycleState.QUEUED, LifecycleState.CANCELLED, LifecycleState.INVALIDATED}
    ),
    LifecycleState.QUEUED: frozenset(
        {LifecycleState.ENTERED, LifecycleState.CANCELLED, LifecycleState.INVALIDATED}
    ),
    LifecycleState.ENTERED: frozenset({LifecycleState.MANAGING}),
    LifecycleState.MANAGING: frozenset({LifecycleState.EXITED}),
    LifecycleState.EXITED: frozenset(),
    LifecycleState.CANCELLED: frozenset(),
    LifecycleState.INVALIDATED: frozenset(),
}


class AdvisoryLevel(str, Enum):
    """
    Advisory Review output levels.

    Attributes:
        INFO: Informational note, no action needed
        WARNING: Warning, trade may still proceed
        BLOCK_FOR_AUTOMATION: Forces manual confirmation for this one
            recommendation. Never revokes approval.
    """

    INFO = "info"
    WARNING = "warning"
    BLOCK_FOR_AUTOMATION = "block_for_automation"


class OperatingMode(str, Enum):
    """Executor operating modes."""

    ADVISORY = "advisory"  # never executes, only logs/notifies
    SEMI_AUTOMATED = "semi_automated"  # requires explicit confirmation
    FULLY_AUTOMATED = "fully_automated"  # submits immediately


class MarketRegime(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    VOLATILE = "volatile"


class SessionPhase(str, Enum):
    PRE_MARKET = "pre_market"
    MARKET_HOURS = "market_hours"
    POST_MARKET = "post_market"
    AFTER_HOURS = "after_hours"


class CheckName(str, Enum):
    """Names of the Decision Engine checks, in evaluation order."""

    VALIDATOR = "validator"
    RISK_RULES = "risk_rules"
    SETUP_QUALITY = "setup_quality"
    PORTFOLIO_CONSTRAINTS = "portfolio_constraints"


DEFAULT_CHECK_ORDER: Final[tuple[CheckName, ...]] = (
    CheckName.VALIDATOR,
    CheckName.RISK_RULES,
    CheckName.SETUP_QUALITY,
    CheckName.PORTFOLIO_CONSTRAINTS,
)


class GateName(str, Enum):
    """Executor gates, in evaluation order."""

    DECISION_ENGINE = "decision_engine"
    KILL_SWITCH = "kill_switch"
    MODE = "mode"
    LIFECYCLE = "lifecycle"


class ExecutionStatus(str, Enum):
    SUBMITTED = "submitted"
    PENDING_CONFIRMATION = "pending_confirmation"
    ADVISORY_ONLY = "advisory_only"
    REJECTED = "rejected"
    SUBMISSION_FAILED = "submission_failed"


class AuditEventType(str, Enum):
    DECISION = "decision"
    EXECUTION = "execution"
    TRANSITION = "transition"


class Reason:
    """
    Machine-readable reason codes.

    Check and gate outcomes always carry one of these plus the offending
    values in their details.
    """

    # Passing outcomes
    VALID_STRUCTURE = "valid_structure"
    RISK_RULES_PASSED = "risk_rules_passed"
    SETUP_QUALITY_ACCEPTABLE = "setup_quality_acceptable"
    PORTFOLIO_CONSTRAINTS_SATISFIED = "portfolio_constraints_satisfied"
    NO_PORTFOLIO_CONSTRAINTS = "no_portfolio_constraints"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    ALL_CHECKS_PASSED = "all_checks_passed"
    DECISION_ENGINE_DISABLED = "decision_engine_disabled"

    # Validator
    MALFORMED_RECOMMENDATION = "malformed_recommendation"
    MALFORMED_SYSTEM_CONTEXT = "malformed_system_context"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_BIAS = "invalid_bias"
    TRADE_MARKED_AVOID = "trade_marked_avoid"
    STOP_ON_WRONG_SIDE = "stop_on_wrong_side"
    TARGET_ON_WRONG_SIDE = "target_on_wrong_side"
    NO_TARGETS = "no_targets"
    RISK_REWARD_BELOW_MINIMUM = "risk_reward_below_minimum"
    CONFIDENCE_BELOW_MINIMUM = "confidence_below_minimum"

    # RiskRules
    PER_TRADE_RISK_EXCEEDED = "per_trade_risk_exceeded"
    DAILY_RISK_EXCEEDED = "daily_risk_exceeded"
    DRAWDOWN_LIMIT_REACHED = "drawdown_limit_reached"
    CONSECUTIVE_LOSS_LIMIT_REACHED = "consecutive_loss_limit_reached"
    VOLATILITY_TOO_HIGH = "volatility_too_high"

    # SetupQuality
    TREND_NOT_ALIGNED = "trend_not_aligned"
    MOMENTUM_DIVERGING = "momentum_diverging"
    SETUP_NOT_READY = "setup_not_ready"

    # PortfolioConstraints
    MAX_POSITIONS_PER_SYMBOL_EXCEEDED = "max_positions_per_symbol_exceeded"
    INSUFFICIENT_CAPITAL = "insufficient_capital"

    # Executor gates
    MALFORMED_DECISION_RESULT = "malformed_decision_result"
    DECISION_NOT_APPROVED = "decision_not_approved"
    KILL_SWITCH_ACTIVE = "kill_switch_active"
    KILL_SWITCH_CLEAR = "kill_switch_clear"
    ADVISORY_MODE = "advisory_mode"
    CONFIRMATION_REQUIRED = "confirmation_required"
    MODE_ALLOWS_EXECUTION = "mode_allows_execution"
    LIFECYCLE_STATE_NOT_APPROVED = "lifecycle_state_not_approved"
    LIFECYCLE_APPROVED = "lifecycle_approved"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_FAILED = "execution_failed"
    SUBMITTED = "submitted"


BULLISH_TREND_TAGS: Final[frozenset[str]] = frozenset(
    {"bullish", "ema_bullish", "supertrend_bullish"}
)
BEARISH_TREND_TAGS: Final[frozenset[str]] = frozenset(
    {"bearish", "ema_bearish", "supertrend_bearish"}
)
BULLISH_MOMENTUM_TAGS: Final[frozenset[str]] = frozenset({"rsi_bullish", "macd_bullish"})
BEARISH_MOMENTUM_TAGS: Final[frozenset[str]] = frozenset({"rsi_bearish", "macd_bearish"})

# Advisory Review output keys and levels that amount to an approve/reject
# verdict. Output carrying any of these is discarded.
FORBIDDEN_ADVISORY_KEYS: Final[frozenset[str]] = frozenset(
    {"approved", "rejected", "approve", "reject", "decision", "verdict"}
)
FORBIDDEN_ADVISORY_LEVELS: Final[frozenset[str]] = frozenset(
    {"approve", "approved", "reject", "rejected", "accept", "deny"}
)

MAX_CONFIDENCE_SCORE: Final[float] = 100.0
