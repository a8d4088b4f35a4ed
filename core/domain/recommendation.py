"""
TradeRecommendation: the single source of truth handed to the Decision Engine.

Built deterministically from exactly one TradeFacts and one TradeIntent.
Instances are frozen. A lifecycle change produces a new revision through
``with_lifecycle()``; nothing is ever mutated in place.
"""
import logging
import math
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from pydantic import Field, field_validator

from config.constants import (
    MAX_CONFIDENCE_SCORE,
    SIZING_HINT_MULTIPLIERS,
    Bias,
    LifecycleState,
)
from core.domain.base import DomainEntity, digest_of, ensure_aware
from core.domain.facts import TradeFacts
from core.domain.intent import TargetLevel, TradeIntent

if TYPE_CHECKING:
    from core.domain.lifecycle import TradeLifecycle

logger = logging.getLogger(__name__)


def recommendation_id_for(facts: TradeFacts, intent: TradeIntent) -> str:
    """Stable id derived from the content of facts and intent."""
    digest = digest_of({"facts": facts.to_dict(), "intent": intent.to_dict()})
    return f"rec_{digest[:20]}"


def resolve_quantity(
    intent: TradeIntent,
    equity: Optional[float],
    risk_per_trade_pct: Optional[float],
) -> int:
    """
    Size a position from equity and a per-trade risk budget.

    quantity = floor(equity * pct / 100 * sizing multiplier / risk per unit)

    Returns 0 when any input is missing or the stop distance is zero.
    """
    risk_per_unit = intent.risk_per_unit
    if not equity or not risk_per_trade_pct or risk_per_unit <= 0:
        return 0
    budget = equity * risk_per_trade_pct / 100.0
    budget *= SIZING_HINT_MULTIPLIERS[intent.sizing_hint]
    return max(int(math.floor(budget / risk_per_unit)), 0)


def default_reasoning(facts: TradeFacts, intent: TradeIntent) -> tuple[str, ...]:
    lines = [f"{intent.bias.value} bias on {facts.symbol} ({facts.timeframe})"]
    if facts.setup_status is not None:
        lines.append(f"setup status {facts.setup_status.value}")
    if facts.trend_tags:
        lines.append(f"trend: {', '.join(facts.trend_tags)}")
    if facts.momentum_tags:
        lines.append(f"momentum: {', '.join(facts.momentum_tags)}")
    lines.append(f"screener score {facts.screener_score:.1f}")
    if intent.strategy_key:
        lines.append(f"strategy {intent.strategy_key}")
    return tuple(lines)


class TradeRecommendation(DomainEntity):
    recommendation_id: str = Field(..., min_length=1)
    facts: TradeFacts
    intent: TradeIntent

    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    targets: tuple[TargetLevel, ...] = ()
    risk_reward: float = 0.0
    risk_per_unit: float = Field(default=0.0, ge=0.0)
    risk_amount: float = Field(default=0.0, ge=0.0)
    confidence_score: float = Field(default=0.0, ge=0.0, le=MAX_CONFIDENCE_SCORE)
    quantity: int = Field(default=0, ge=0)

    invalidation_conditions: tuple[str, ...] = ()
    entry_conditions: dict[str, Any] = Field(default_factory=dict)
    reasoning: tuple[str, ...] = ()

    lifecycle_state: LifecycleState = LifecycleState.PROPOSED
    lifecycle_version: int = Field(default=0, ge=0)
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @classmethod
    def build(
        cls,
        facts: TradeFacts,
        intent: TradeIntent,
        *,
        quantity: Optional[int] = None,
        equity: Optional[float] = None,
        risk_per_trade_pct: Optional[float] = None,
        risk_amount: Optional[float] = None,
        confidence_score: Optional[float] = None,
        invalidation_conditions: tuple[str, ...] = (),
        entry_conditions: Optional[dict[str, Any]] = None,
        reasoning: Optional[tuple[str, ...]] = None,
        recommendation_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "TradeRecommendation":
        """
        Derive every computed field from facts and intent.

        Args:
            facts: Observed state
            intent: Proposed action
            quantity: Explicit quantity. When omitted it is resolved from
                ``equity`` and ``risk_per_trade_pct``.
            risk_amount: Explicit monetary risk. Defaults to
                risk per unit x quantity.
            confidence_score: Defaults to the facts' screener score.
            recommendation_id: Defaults to a digest of facts and intent.
            created_at: Defaults to the facts' detection time.

        Returns:
            A PROPOSED recommendation at lifecycle version 0.
        """
        risk_per_unit = intent.risk_per_unit
        if intent.primary_target is not None and risk_per_unit > 0:
            risk_reward = intent.reward_per_unit / risk_per_unit
        else:
            risk_reward = intent.expected_risk_reward

        if quantity is None:
            quantity = resolve_quantity(intent, equity, risk_per_trade_pct)

        if risk_amount is None:
            risk_amount = risk_per_unit * quantity

        recommendation = cls(
            recommendation_id=recommendation_id or recommendation_id_for(facts, intent),
            facts=facts,
            intent=intent,
            entry_price=intent.proposed_entry,
            stop_loss=intent.proposed_stop,
            targets=intent.targets,
            risk_reward=risk_reward,
            risk_per_unit=risk_per_unit,
            risk_amount=risk_amount,
            confidence_score=(
                facts.screener_score if confidence_score is None else confidence_score
            ),
            quantity=quantity,
            invalidation_conditions=tuple(invalidation_conditions),
            entry_conditions=dict(entry_conditions or {}),
            reasoning=tuple(reasoning) if reasoning else default_reasoning(facts, intent),
            created_at=created_at or facts.detected_at,
        )
        logger.debug(
            f"Built recommendation {recommendation.recommendation_id} for {facts.symbol}: "
            f"rr={risk_reward:.2f} qty={quantity} risk={risk_amount:.2f}"
        )
        return recommendation

    @property
    def symbol(self) -> str:
        return self.facts.symbol

    @property
    def bias(self) -> Bias:
        return self.intent.bias

    @property
    def required_capital(self) -> float:
        if self.entry_price is None:
            return 0.0
        return self.entry_price * self.quantity

    def with_lifecycle(self, lifecycle: "TradeLifecycle") -> "TradeRecommendation":
        """Return a new revision reflecting ``lifecycle``'s state and version."""
        if lifecycle.recommendation_id != self.recommendation_id:
            raise ValueError(
                f"Lifecycle {lifecycle.recommendation_id} does not belong to "
                f"recommendation {self.recommendation_id}"
            )
        return self.model_copy(
            update={
                "lifecycle_state": lifecycle.state,
                "lifecycle_version": lifecycle.version,
            }
        )
