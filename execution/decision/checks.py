"""
Decision Engine checks.

Each check is an independent pure unit with one shape:

    evaluate(recommendation, context) -> CheckOutcome

Checks gather every violation they find in a fixed order and report the
first one as their reason. They never touch storage, network or clocks,
and never recompute indicators: SetupQuality and the volatility rule read
values already present in TradeFacts.

Usage:
    >>> from execution.decision.checks import default_checks
    >>> outcomes = [check.evaluate(rec, ctx) for check in default_checks(settings.decision_engine)]
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from config.constants import Bias, CheckName, Reason, SetupStatus
from config.settings import DecisionEngineConfig
from core.domain.context import SystemContext
from core.domain.recommendation import TradeRecommendation
from utils.numerical_validation import is_finite_number, percent_of

from .types import CheckOutcome

logger = logging.getLogger(__name__)

# Ratios and percentages are rounded to this many places before comparison.
# A value exactly on a cap passes.
PCT_PRECISION = 6


@dataclass
class Violation:
    reason: str
    message: str
    values: dict[str, Any] = field(default_factory=dict)


class DecisionCheck(ABC):
    """
    Base class for all checks.

    Attributes:
        name: Name recorded in the decision path
        mandatory: Mandatory checks always run their rules. Non-mandatory
            checks pass when their collaborator data is unavailable.
    """

    name: str = "check"
    mandatory: bool = False
    pass_reason: str = Reason.VALID_STRUCTURE

    @abstractmethod
    def violations(
        self, recommendation: TradeRecommendation, context: Optional[SystemContext]
    ) -> list[Violation]:
        """Return every violation found, in rule order."""

    def passing_details(
        self, recommendation: TradeRecommendation, context: Optional[SystemContext]
    ) -> dict[str, Any]:
        return {}

    def evaluate(
        self, recommendation: TradeRecommendation, context: Optional[SystemContext]
    ) -> CheckOutcome:
        found = self.violations(recommendation, context)
        if not found:
            return CheckOutcome(
                check=self.name,
                passed=True,
                reason=self.pass_reason,
                details=self.passing_details(recommendation, context),
            )

        first = found[0]
        details = dict(first.values)
        details["violations"] = [
            {"reason": v.reason, "message": v.message, **v.values} for v in found
        ]
        return CheckOutcome(
            check=self.name,
            passed=False,
            reason=first.reason,
            message=first.message,
            details=details,
        )


class Validator(DecisionCheck):
    """Structural and numeric sanity of the recommendation and context."""

    name = CheckName.VALIDATOR.value
    mandatory = True
    pass_reason = Reason.VALID_STRUCTURE

    def __init__(self, config: DecisionEngineConfig):
        self.min_risk_reward = config.min_risk_reward
        self.min_confidence = config.min_confidence

    def violations(self, recommendation: Any, context: Any) -> list[Violation]:
        found: list[Violation] = []

        if not isinstance(recommendation, TradeRecommendation):
            return [
                Violation(
                    Reason.MALFORMED_RECOMMENDATION,
                    f"Expected TradeRecommendation, got {type(recommendation).__name__}",
                    {"received_type": type(recommendation).__name__},
                )
            ]
        if context is not None and not isinstance(context, SystemContext):
            found.append(
                Violation(
                    Reason.MALFORMED_SYSTEM_CONTEXT,
                    f"Expected SystemContext, got {type(context).__name__}",
                    {"received_type": type(context).__name__},
                )
            )

        entry = recommendation.entry_price
        stop = recommendation.stop_loss
        for field_name, value in (("entry_price", entry), ("stop_loss", stop)):
            if value is None or not is_finite_number(value) or value <= 0:
                found.append(
                    Violation(
                        Reason.MISSING_REQUIRED_FIELD,
                        f"Missing {field_name}",
                        {"field": field_name, "value": value},
                    )
                )
        if recommendation.quantity <= 0:
            found.append(
                Violation(
                    Reason.MISSING_REQUIRED_FIELD,
                    "Missing quantity",
                    {"field": "quantity", "value": recommendation.quantity},
                )
            )

        if entry is not None and stop is not None:
            if recommendation.bias == Bias.LONG and stop >= entry:
                found.append(
                    Violation(
                        Reason.STOP_ON_WRONG_SIDE,
                        "Stop loss must be below entry price for long trades",
                        {"entry_price": entry, "stop_loss": stop, "bias": Bias.LONG.value},
                    )
                )
            if recommendation.bias == Bias.SHORT and stop <= entry:
                found.append(
                    Violation(
                        Reason.STOP_ON_WRONG_SIDE,
                        "Stop loss must be above entry price for short trades",
                        {"entry_price": entry, "stop_loss": stop, "bias": Bias.SHORT.value},
                    )
                )

        target = recommendation.targets[0].price if recommendation.targets else None
        if entry is not None and target is not None:
            if recommendation.bias == Bias.LONG and target <= entry:
                found.append(
                    Violation(
                        Reason.TARGET_ON_WRONG_SIDE,
                        "Target must be above entry price for long trades",
                        {"entry_price": entry, "target": target, "bias": Bias.LONG.value},
                    )
                )
            if recommendation.bias == Bias.SHORT and target >= entry:
                found.append(
                    Violation(
                        Reason.TARGET_ON_WRONG_SIDE,
                        "Target must be below entry price for short trades",
                        {"entry_price": entry, "target": target, "bias": Bias.SHORT.value},
                    )
                )

        risk_reward = round(recommendation.risk_reward, PCT_PRECISION)
        if risk_reward < self.min_risk_reward:
            found.append(
                Violation(
                    Reason.RISK_REWARD_BELOW_MINIMUM,
                    f"Risk-reward ratio too low: {risk_reward:.2f} < {self.min_risk_reward}",
                    {"risk_reward": risk_reward, "min_risk_reward": self.min_risk_reward},
                )
            )

        if recommendation.confidence_score < self.min_confidence:
            found.append(
                Violation(
                    Reason.CONFIDENCE_BELOW_MINIMUM,
                    f"Confidence score too low: {recommendation.confidence_score:.1f} < {self.min_confidence}",
                    {
                        "confidence_score": recommendation.confidence_score,
                        "min_confidence": self.min_confidence,
                    },
                )
            )

        if recommendation.bias == Bias.AVOID:
            found.append(
                Violation(
                    Reason.TRADE_MARKED_AVOID,
                    "Trade marked as avoid",
                    {"bias": Bias.AVOID.value},
                )
            )
        elif recommendation.bias not in (Bias.LONG, Bias.SHORT):
            found.append(
                Violation(
                    Reason.INVALID_BIAS,
                    f"Invalid bias: {recommendation.bias} (must be long or short)",
                    {"bias": str(recommendation.bias)},
                )
            )

        if not recommendation.targets:
            found.append(Violation(Reason.NO_TARGETS, "No target prices specified"))

        return found

    def passing_details(self, recommendation, context):
        return {
            "risk_reward": round(recommendation.risk_reward, PCT_PRECISION),
            "confidence_score": recommendation.confidence_score,
        }


class RiskRules(DecisionCheck):
    """
    Per-trade and daily risk ceilings, drawdown and losing-streak halts,
    and the volatility cap.

    Context-dependent rules pass through when no context is supplied. The
    percentage rules also need equity and pass through without it.
    """

    name = CheckName.RISK_RULES.value
    mandatory = True
    pass_reason = Reason.RISK_RULES_PASSED

    def __init__(self, config: DecisionEngineConfig):
        self.max_daily_risk_pct = config.max_daily_risk_pct
        self.max_volatility_pct = config.max_volatility_pct
        self.max_drawdown_pct = config.max_drawdown_pct
        self.max_consecutive_losses = config.max_consecutive_losses

    @staticmethod
    def trade_risk_pct(
        recommendation: TradeRecommendation, context: Optional[SystemContext]
    ) -> Optional[float]:
        if context is None:
            return None
        pct = percent_of(recommendation.risk_amount, context.resolved_equity)
        return None if pct is None else round(pct, PCT_PRECISION)

    @staticmethod
    def atr_pct(recommendation: TradeRecommendation) -> Optional[float]:
        facts = recommendation.facts
        atr = facts.indicator("atr", section="daily")
        latest_close = facts.indicator("latest_close", section="daily") or recommendation.entry_price
        if not is_finite_number(atr) or not is_finite_number(latest_close):
            return None
        pct = percent_of(atr, latest_close)
        return None if pct is None else round(pct, PCT_PRECISION)

    def violations(self, recommendation, context) -> list[Violation]:
        found: list[Violation] = []

        trade_pct = self.trade_risk_pct(recommendation, context)
        if trade_pct is not None:
            if trade_pct > self.max_daily_risk_pct:
                found.append(
                    Violation(
                        Reason.PER_TRADE_RISK_EXCEEDED,
                        f"Per-trade risk {trade_pct:.2f}% exceeds daily limit {self.max_daily_risk_pct}%",
                        {"trade_risk_pct": trade_pct, "max_daily_risk_pct": self.max_daily_risk_pct},
                    )
                )
            total_pct = round(trade_pct + context.daily_risk_used_pct, PCT_PRECISION)
            if total_pct > self.max_daily_risk_pct:
                found.append(
                    Violation(
                        Reason.DAILY_RISK_EXCEEDED,
                        f"Daily risk limit exceeded: {total_pct:.2f}% > {self.max_daily_risk_pct}%",
                        {
                            "trade_risk_pct": trade_pct,
                            "daily_risk_used_pct": context.daily_risk_used_pct,
                            "total_daily_risk_pct": total_pct,
                            "max_daily_risk_pct": self.max_daily_risk_pct,
                        },
                    )
                )

        if context is not None:
            if context.significant_drawdown(self.max_drawdown_pct):
                found.append(
                    Violation(
                        Reason.DRAWDOWN_LIMIT_REACHED,
                        f"Significant drawdown detected: {context.drawdown_pct:.2f}%",
                        {"drawdown_pct": context.drawdown_pct, "max_drawdown_pct": self.max_drawdown_pct},
                    )
                )
            if context.consecutive_losses >= self.max_consecutive_losses:
                found.append(
                    Violation(
                        Reason.CONSECUTIVE_LOSS_LIMIT_REACHED,
                        f"Too many consecutive losses: {context.consecutive_losses}",
                        {
                            "consecutive_losses": context.consecutive_losses,
                            "max_consecutive_losses": self.max_consecutive_losses,
                        },
                    )
                )

        atr_pct = self.atr_pct(recommendation)
        if atr_pct is not None and atr_pct > self.max_volatility_pct:
            found.append(
                Violation(
                    Reason.VOLATILITY_TOO_HIGH,
                    f"Volatility too high: ATR {atr_pct:.2f}% > {self.max_volatility_pct}%",
                    {"atr_pct": atr_pct, "max_volatility_pct": self.max_volatility_pct},
                )
            )

        return found

    def passing_details(self, recommendation, context):
        details: dict[str, Any] = {
            "trade_risk_pct": self.trade_risk_pct(recommendation, context),
            "atr_pct": self.atr_pct(recommendation),
        }
        if context is None:
            details["context"] = Reason.COLLABORATOR_UNAVAILABLE
        return details


class SetupQuality(DecisionCheck):
    """Re-validates that the setup has not gone stale since detection."""

    name = CheckName.SETUP_QUALITY.value
    pass_reason = Reason.SETUP_QUALITY_ACCEPTABLE

    def __init__(self, config: Optional[DecisionEngineConfig] = None):
        self.config = config

    def violations(self, recommendation, context) -> list[Violation]:
        found: list[Violation] = []
        facts = recommendation.facts
        bias = recommendation.bias

        if bias == Bias.LONG and not facts.bullish:
            found.append(
                Violation(
                    Reason.TREND_NOT_ALIGNED,
                    "Long trade requires bullish trend",
                    {"bias": bias.value, "trend_tags": list(facts.trend_tags)},
                )
            )
        if bias == Bias.SHORT and not facts.bearish:
            found.append(
                Violation(
                    Reason.TREND_NOT_ALIGNED,
                    "Short trade requires bearish trend",
                    {"bias": bias.value, "trend_tags": list(facts.trend_tags)},
                )
            )

        if bias == Bias.LONG and facts.momentum_bearish and not facts.momentum_bullish:
            found.append(
                Violation(
                    Reason.MOMENTUM_DIVERGING,
                    "Momentum diverging - bearish signals for long trade",
                    {"bias": bias.value, "momentum_tags": list(facts.momentum_tags)},
                )
            )
        if bias == Bias.SHORT and facts.momentum_bullish and not facts.momentum_bearish:
            found.append(
                Violation(
                    Reason.MOMENTUM_DIVERGING,
                    "Momentum diverging - bullish signals for short trade",
                    {"bias": bias.value, "momentum_tags": list(facts.momentum_tags)},
                )
            )

        if facts.setup_status == SetupStatus.NOT_READY:
            found.append(
                Violation(
                    Reason.SETUP_NOT_READY,
                    "Setup status is NOT_READY",
                    {"setup_status": SetupStatus.NOT_READY.value},
                )
            )

        return found


class PortfolioConstraints(DecisionCheck):
    """Per-symbol position cap and capital availability."""

    name = CheckName.PORTFOLIO_CONSTRAINTS.value
    pass_reason = Reason.PORTFOLIO_CONSTRAINTS_SATISFIED

    def __init__(self, config: DecisionEngineConfig):
        self.max_positions_per_symbol = config.max_positions_per_symbol

    def evaluate(self, recommendation, context) -> CheckOutcome:
        if context is None or context.portfolio is None:
            return CheckOutcome(
                check=self.name,
                passed=True,
                reason=Reason.NO_PORTFOLIO_CONSTRAINTS,
                details={"portfolio": Reason.COLLABORATOR_UNAVAILABLE},
            )
        return super().evaluate(recommendation, context)

    def violations(self, recommendation, context) -> list[Violation]:
        found: list[Violation] = []
        portfolio = context.portfolio

        open_count = portfolio.positions_for(recommendation.symbol)
        if open_count >= self.max_positions_per_symbol:
            found.append(
                Violation(
                    Reason.MAX_POSITIONS_PER_SYMBOL_EXCEEDED,
                    f"Max positions per symbol exceeded: {open_count}/{self.max_positions_per_symbol}",
                    {
                        "symbol": recommendation.symbol,
                        "open_positions": open_count,
                        "max_positions_per_symbol": self.max_positions_per_symbol,
                    },
                )
            )

        required = recommendation.required_capital
        if required > portfolio.available_capital:
            found.append(
                Violation(
                    Reason.INSUFFICIENT_CAPITAL,
                    f"Insufficient capital: {required:.2f} required, "
                    f"{portfolio.available_capital:.2f} available",
                    {"required_capital": required, "available_capital": portfolio.available_capital},
                )
            )

        return found

    def passing_details(self, recommendation, context):
        return {
            "open_positions": context.portfolio.positions_for(recommendation.symbol),
            "required_capital": recommendation.required_capital,
            "available_capital": context.portfolio.available_capital,
        }


def default_checks(config: DecisionEngineConfig) -> list[DecisionCheck]:
    """The four built-in checks in evaluation order."""
    return [
        Validator(config),
        RiskRules(config),
        SetupQuality(config),
        PortfolioConstraints(config),
    ]
