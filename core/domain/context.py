"""
SystemContext: read-only, point-in-time risk state supplied from outside.

The Decision Engine never owns or persists this. The supplying
collaborator returns one coherent snapshot per evaluation.
"""
from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from config.constants import MarketRegime, SessionPhase
from core.domain.base import DomainEntity, ensure_aware, now_utc


class PortfolioSnapshot(DomainEntity):
    """Open exposure and capital as seen by the portfolio collaborator."""
    open_positions: dict[str, int] = Field(default_factory=dict)
    available_capital: float = Field(default=0.0, ge=0.0)
    total_equity: Optional[float] = Field(default=None, gt=0)

    def positions_for(self, symbol: str) -> int:
        return self.open_positions.get(symbol, 0)

    @property
    def open_positions_count(self) -> int:
        return sum(self.open_positions.values())


class SystemContext(DomainEntity):
    """
    Aggregate risk state at ``captured_at``.

    Attributes:
        market_regime: Coarse regime tag
        today_pnl: Realized P&L for the current day
        week_pnl: Realized P&L for the current week
        drawdown_pct: Decline from the most recent equity peak, in percent
        trades_today: Trades closed today
        consecutive_losses: Current losing streak, most recent first
        session_phase: Exchange session phase at capture time
        equity: Account equity used for risk percentages
        daily_risk_used_pct: Risk already committed today, % of equity
        portfolio: Optional portfolio snapshot for exposure checks

    The risk fields have no defaults and unknown keys are rejected: a
    snapshot with a missing or misspelled field fails validation instead
    of reading as zero drawdown or zero risk used.
    """
    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    market_regime: MarketRegime
    today_pnl: float
    week_pnl: float = 0.0
    drawdown_pct: float = Field(..., ge=0.0)
    trades_today: int = Field(..., ge=0)
    consecutive_losses: int = Field(..., ge=0)
    session_phase: SessionPhase
    equity: Optional[float] = Field(default=None, gt=0)
    daily_risk_used_pct: float = Field(..., ge=0.0)
    portfolio: Optional[PortfolioSnapshot] = None
    captured_at: datetime = Field(default_factory=now_utc)

    @field_validator("captured_at")
    @classmethod
    def aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @classmethod
    def empty(cls, captured_at: Optional[datetime] = None) -> "SystemContext":
        """Neutral context with no equity and no portfolio."""
        return cls(
            market_regime=MarketRegime.NEUTRAL,
            today_pnl=0.0,
            drawdown_pct=0.0,
            trades_today=0,
            consecutive_losses=0,
            session_phase=SessionPhase.AFTER_HOURS,
            daily_risk_used_pct=0.0,
            captured_at=captured_at or now_utc(),
        )

    @property
    def resolved_equity(self) -> Optional[float]:
        """Equity from the context, else from the portfolio snapshot."""
        if self.equity is not None:
            return self.equity
        if self.portfolio is not None:
            return self.portfolio.total_equity
        return None

    @property
    def losing_day(self) -> bool:
        return self.today_pnl < 0

    @property
    def in_drawdown(self) -> bool:
        return self.drawdown_pct > 0.0

    def significant_drawdown(self, threshold: float = 10.0) -> bool:
        return self.drawdown_pct >= threshold
