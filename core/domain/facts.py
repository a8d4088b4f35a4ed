"""
TradeFacts: immutable snapshot of observed market state.

Pure observation. No price targets, no sizing and no risk numbers live
here; those belong to TradeIntent and TradeRecommendation.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from config.constants import (
    BEARISH_MOMENTUM_TAGS,
    BEARISH_TREND_TAGS,
    BULLISH_MOMENTUM_TAGS,
    BULLISH_TREND_TAGS,
    MAX_CONFIDENCE_SCORE,
    SetupStatus,
)
from core.domain.base import DomainEntity, ensure_aware, now_utc
from utils.numerical_validation import require_finite


def _check_indicator_values(value: Any, path: str) -> None:
    if isinstance(value, dict):
        for key, inner in value.items():
            _check_indicator_values(inner, f"{path}.{key}")
    elif isinstance(value, float):
        require_finite(value, path)


class TradeFacts(DomainEntity):
    """
    What was observed about an instrument at detection time.

    Tag collections are normalised to sorted, de-duplicated tuples so that
    two snapshots with the same tags serialize identically.
    """
    symbol: str = Field(..., min_length=1)
    instrument_id: str = Field(..., min_length=1)
    timeframe: str = Field(..., min_length=1)
    indicators: dict[str, Any] = Field(default_factory=dict)
    trend_tags: tuple[str, ...] = ()
    momentum_tags: tuple[str, ...] = ()
    screener_score: float = Field(default=0.0, ge=0.0, le=MAX_CONFIDENCE_SCORE)
    setup_status: Optional[SetupStatus] = None
    detected_at: datetime = Field(default_factory=now_utc)

    @field_validator("instrument_id", mode="before")
    @classmethod
    def numeric_instrument_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("trend_tags", "momentum_tags", mode="before")
    @classmethod
    def normalise_tags(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            return tuple(sorted({str(tag).lower() for tag in v}))
        return v

    @field_validator("indicators")
    @classmethod
    def indicators_finite(cls, v: dict[str, Any]) -> dict[str, Any]:
        _check_indicator_values(v, "indicators")
        return v

    @field_validator("detected_at")
    @classmethod
    def aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @property
    def bullish(self) -> bool:
        return any(tag in BULLISH_TREND_TAGS for tag in self.trend_tags)

    @property
    def bearish(self) -> bool:
        return any(tag in BEARISH_TREND_TAGS for tag in self.trend_tags)

    @property
    def momentum_bullish(self) -> bool:
        return any(tag in BULLISH_MOMENTUM_TAGS for tag in self.momentum_tags)

    @property
    def momentum_bearish(self) -> bool:
        return any(tag in BEARISH_MOMENTUM_TAGS for tag in self.momentum_tags)

    @property
    def ready(self) -> bool:
        return self.setup_status == SetupStatus.READY

    def indicator(self, name: str, section: Optional[str] = None) -> Any:
        """
        Look up an indicator value, optionally inside a nested section.

        Falls back to the top level when the section is missing or does
        not carry the value.
        """
        if section is not None:
            nested = self.indicators.get(section)
            if isinstance(nested, dict) and nested.get(name) is not None:
                return nested[name]
        return self.indicators.get(name)
