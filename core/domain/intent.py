"""
TradeIntent: the proposed directional action.

Carries entry, stop and targets but never a quantity or an order type.
Both are execution-level concerns and are rejected as extra fields.
"""
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from config.constants import Bias, SizingHint
from core.domain.base import DomainEntity


class TargetLevel(DomainEntity):
    """One target price with the probability of reaching it."""
    price: float = Field(..., gt=0)
    probability: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def from_pair(cls, data: Any) -> Any:
        # Upstream producers send targets as [price, probability] pairs.
        if isinstance(data, (list, tuple)):
            if len(data) == 1:
                return {"price": data[0]}
            if len(data) == 2:
                return {"price": data[0], "probability": data[1]}
            raise ValueError(f"target must be (price, probability), got {data!r}")
        return data


class TradeIntent(DomainEntity):
    bias: Bias
    proposed_entry: Optional[float] = Field(default=None, gt=0)
    proposed_stop: Optional[float] = Field(default=None, gt=0)
    targets: tuple[TargetLevel, ...] = ()
    expected_risk_reward: float = Field(default=0.0, ge=0.0)
    sizing_hint: SizingHint = SizingHint.MEDIUM
    strategy_key: Optional[str] = None

    @field_validator("bias", mode="before")
    @classmethod
    def lower_bias(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @property
    def is_long(self) -> bool:
        return self.bias == Bias.LONG

    @property
    def is_short(self) -> bool:
        return self.bias == Bias.SHORT

    @property
    def is_avoid(self) -> bool:
        return self.bias == Bias.AVOID

    @property
    def primary_target(self) -> Optional[TargetLevel]:
        return self.targets[0] if self.targets else None

    @property
    def risk_per_unit(self) -> float:
        """|entry - stop|, or 0.0 while either price is missing."""
        if self.proposed_entry is None or self.proposed_stop is None:
            return 0.0
        return abs(self.proposed_entry - self.proposed_stop)

    @property
    def reward_per_unit(self) -> float:
        """
        Signed move from entry to the primary target in the trade's favour.

        Long: target - entry. Short: entry - target. Negative when the
        target sits on the wrong side of entry.
        """
        target = self.primary_target
        if target is None or self.proposed_entry is None:
            return 0.0
        if self.is_short:
            return self.proposed_entry - target.price
        return target.price - self.proposed_entry
