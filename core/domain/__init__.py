"""
Immutable domain contracts.

Public API:
    - TradeFacts, TradeIntent, TargetLevel: upstream inputs
    - TradeRecommendation: the single source of truth for a proposed trade
    - SystemContext, PortfolioSnapshot: externally supplied risk state
    - TradeLifecycle, TransitionRecord: versioned lifecycle snapshots
"""

from core.domain.context import PortfolioSnapshot, SystemContext
from core.domain.facts import TradeFacts
from core.domain.intent import TargetLevel, TradeIntent
from core.domain.lifecycle import TradeLifecycle, TransitionRecord, parse_state
from core.domain.recommendation import TradeRecommendation

__all__ = [
    "PortfolioSnapshot",
    "SystemContext",
    "TargetLevel",
    "TradeFacts",
    "TradeIntent",
    "TradeLifecycle",
    "TradeRecommendation",
    "TransitionRecord",
    "parse_state",
]
