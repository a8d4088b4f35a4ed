"""
SystemContext adapter.

Takes exactly one snapshot from the portfolio/ledger collaborator per
evaluation. A missing or failing collaborator yields ``None`` and the
dependent checks pass through. ``context_from_ledger`` derives a snapshot
from raw ledger rows for collaborators that do not compute one themselves.
"""

import inspect
import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import Field

from config.constants import MarketRegime, SessionPhase
from config.logging_config import LogCategory
from config.settings import SessionConfig
from core.domain.base import DomainEntity, ensure_aware, now_utc
from core.domain.context import PortfolioSnapshot, SystemContext
from core.interfaces import IContextProvider
from utils.numerical_validation import percent_of

logger = logging.getLogger(__name__)


class ClosedTrade(DomainEntity):
    symbol: str
    realized_pnl: float
    closed_at: datetime


class OpenPosition(DomainEntity):
    symbol: str
    entry_price: float = Field(..., gt=0)
    quantity: int = Field(..., ge=0)
    stop_loss: Optional[float] = Field(default=None, gt=0)
    risk_amount: Optional[float] = Field(default=None, ge=0)
    opened_at: datetime

    @property
    def risk(self) -> float:
        if self.risk_amount is not None:
            return self.risk_amount
        if self.stop_loss is None:
            return 0.0
        return abs(self.entry_price - self.stop_loss) * self.quantity

    @property
    def exposure(self) -> float:
        return self.entry_price * self.quantity


def session_phase(at: datetime, session: Optional[SessionConfig] = None) -> SessionPhase:
    """Exchange session phase at ``at``. Weekends are always after hours."""
    session = session or SessionConfig()
    local = ensure_aware(at).astimezone(session.zone())
    if local.weekday() >= 5:
        return SessionPhase.AFTER_HOURS

    now = local.time()
    if session.pre_market_start <= now < session.market_open:
        return SessionPhase.PRE_MARKET
    if session.market_open <= now <= session.market_close:
        return SessionPhase.MARKET_HOURS
    if session.market_close < now < session.post_market_end:
        return SessionPhase.POST_MARKET
    return SessionPhase.AFTER_HOURS


def market_regime(week_pnl: float, drawdown_pct: float) -> MarketRegime:
    """Coarse regime from recent P&L and drawdown."""
    if drawdown_pct > 15.0:
        return MarketRegime.VOLATILE
    if week_pnl > 0 and drawdown_pct < 5.0:
        return MarketRegime.BULLISH
    if week_pnl < 0 and drawdown_pct > 10.0:
        return MarketRegime.BEARISH
    return MarketRegime.NEUTRAL


def consecutive_losses(closed: Iterable[ClosedTrade]) -> int:
    """Length of the losing run ending at the most recent close."""
    streak = 0
    for trade in sorted(closed, key=lambda t: ensure_aware(t.closed_at), reverse=True):
        if trade.realized_pnl < 0:
            streak += 1
        else:
            break
    return streak


def context_from_ledger(
    closed_trades: Iterable[ClosedTrade],
    open_positions: Iterable[OpenPosition],
    equity: Optional[float],
    peak_equity: Optional[float] = None,
    available_capital: Optional[float] = None,
    now: Optional[datetime] = None,
    session: Optional[SessionConfig] = None,
    regime: Optional[MarketRegime] = None,
) -> SystemContext:
    """
    Derive a SystemContext from ledger rows.

    Day and week boundaries are taken in the exchange timezone.

    Args:
        closed_trades: Realized trades
        open_positions: Currently open positions
        equity: Current account equity
        peak_equity: Most recent equity peak for drawdown
        available_capital: Free capital; defaults to equity minus exposure
        now: Capture time (defaults to the current time)
        session: Exchange session hours
        regime: Explicit regime; derived heuristically when omitted
    """
    session = session or SessionConfig()
    captured_at = ensure_aware(now or now_utc())
    tz = session.zone()
    today = captured_at.astimezone(tz).date()
    week_start = today - timedelta(days=today.weekday())

    closed = list(closed_trades)
    positions = list(open_positions)

    def local_date(ts: datetime):
        return ensure_aware(ts).astimezone(tz).date()

    closed_today = [t for t in closed if local_date(t.closed_at) == today]
    today_pnl = sum(t.realized_pnl for t in closed_today)
    week_pnl = sum(t.realized_pnl for t in closed if week_start <= local_date(t.closed_at) <= today)

    drawdown = 0.0
    if equity and peak_equity and peak_equity > equity:
        drawdown = (peak_equity - equity) / peak_equity * 100.0

    risk_today = sum(p.risk for p in positions if local_date(p.opened_at) == today)
    daily_risk_used = percent_of(risk_today, equity) or 0.0

    exposure = sum(p.exposure for p in positions)
    if available_capital is None:
        available_capital = max((equity or 0.0) - exposure, 0.0)

    portfolio = PortfolioSnapshot(
        open_positions=dict(Counter(p.symbol for p in positions)),
        available_capital=available_capital,
        total_equity=equity if equity and equity > 0 else None,
    )

    return SystemContext(
        market_regime=regime or market_regime(week_pnl, drawdown),
        today_pnl=today_pnl,
        week_pnl=week_pnl,
        drawdown_pct=drawdown,
        trades_today=len(closed_today),
        consecutive_losses=consecutive_losses(closed_today),
        session_phase=session_phase(captured_at, session),
        equity=equity if equity and equity > 0 else None,
        daily_risk_used_pct=daily_risk_used,
        portfolio=portfolio,
        captured_at=captured_at,
    )


class SystemContextAdapter:
    """
    Wraps the context collaborator.

    ``snapshot()`` never raises for collaborator failures. A mapping that
    does not validate is passed through unchanged so the Validator can
    reject it as a malformed context.
    """

    def __init__(self, provider: Optional[IContextProvider] = None):
        self.provider = provider

    async def snapshot(self) -> Any:
        if self.provider is None:
            logger.debug(f"{LogCategory.CONTEXT} No context provider configured")
            return None
        try:
            raw = self.provider.snapshot()
            if inspect.isawaitable(raw):
                raw = await raw
        except Exception as e:
            logger.warning(
                f"{LogCategory.CONTEXT} Context provider {type(self.provider).__name__} failed: {e}"
            )
            return None

        if raw is None:
            logger.warning(
                f"{LogCategory.CONTEXT} Context provider {type(self.provider).__name__} returned no snapshot"
            )
            return None
        if isinstance(raw, Mapping):
            try:
                return SystemContext.model_validate(raw)
            except ValueError as e:
                logger.warning(f"{LogCategory.CONTEXT} Malformed context snapshot: {e}")
                return raw
        return raw
