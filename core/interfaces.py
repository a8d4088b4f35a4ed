"""
Interfaces for the external collaborators of the decision pipeline.
"""
from typing import Any, Optional, Protocol

from core.domain.context import SystemContext
from core.domain.lifecycle import TradeLifecycle, TransitionRecord
from core.domain.recommendation import TradeRecommendation


class IContextProvider(Protocol):
    """Supplies one coherent SystemContext snapshot per call."""
    async def snapshot(self) -> Optional[SystemContext]:
        ...


class IAdvisoryReviewer(Protocol):
    """
    Scoring subsystem consulted after full approval.

    May be sync or async. Output is raw (mapping, JSON string or fenced
    JSON) and is sanitized before use.
    """
    def review(self, recommendation: TradeRecommendation, context: Optional[SystemContext]) -> Any:
        ...


class IExecutionVenue(Protocol):
    """Broker or simulated ledger that accepts submission requests."""
    async def submit(self, recommendation: TradeRecommendation) -> dict[str, Any]:
        ...


class ILifecycleListener(Protocol):
    """Notification/persistence collaborator receiving transition events."""
    async def on_transition(self, lifecycle: TradeLifecycle, record: TransitionRecord) -> None:
        ...
