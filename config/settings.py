"""
Configuration management using Pydantic v2.

This module provides type-safe configuration for the trade decision
pipeline. Configuration is loaded from environment variables and an
optional ``.env`` file and validated on initialization.

Environment variables use double underscore for nesting:
    DECISION_ENGINE__MIN_RISK_REWARD=2.1
    DECISION_ENGINE__RISK_PER_TRADE_PCT=0.5
    ADVISORY__ENABLED=true
    EXECUTION__MODE=semi_automated
    EXECUTION__KILL_SWITCH_ENABLED=true

Example:
    >>> from config.settings import load_settings
    >>> settings = load_settings()
    >>> print(settings.decision_engine.min_risk_reward)
"""

import logging
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import OperatingMode

logger = logging.getLogger(__name__)


class DecisionEngineConfig(BaseModel):
    """Thresholds for the deterministic checks.

    Attributes:
        enabled: Feature flag. When off the engine short-circuits to an
            approval the Executor refuses unless explicitly allowed.
        min_risk_reward: Minimum reward:risk for the Validator
        min_confidence: Minimum confidence score (0-100) for the Validator
        max_daily_risk_pct: Daily risk ceiling as % of equity (RiskRules)
        max_volatility_pct: ATR as % of price cap (RiskRules)
        max_positions_per_symbol: Concurrent positions per symbol
        max_drawdown_pct: Drawdown from equity peak that halts new risk
        max_consecutive_losses: Losing streak that halts new risk
        risk_per_trade_pct: Equity % risked per trade when the caller
            gives no quantity. Must not exceed the daily ceiling.
    """

    enabled: bool = Field(default=True, description="Decision Engine feature flag")
    min_risk_reward: float = Field(default=2.0, description="Minimum reward:risk", gt=0)
    min_confidence: float = Field(
        default=60.0, description="Minimum confidence score", ge=0.0, le=100.0
    )
    max_daily_risk_pct: float = Field(
        default=2.0, description="Daily risk ceiling (% of equity)", gt=0, le=100.0
    )
    max_volatility_pct: float = Field(
        default=8.0, description="ATR % of price cap", gt=0, le=100.0
    )
    max_positions_per_symbol: int = Field(
        default=1, description="Max concurrent positions per symbol", ge=1
    )
    max_drawdown_pct: float = Field(
        default=15.0, description="Drawdown halt threshold (%)", gt=0, le=100.0
    )
    max_consecutive_losses: int = Field(
        default=3, description="Consecutive losses halt threshold", ge=1
    )
    risk_per_trade_pct: float = Field(
        default=1.0, description="Per-trade risk for sizing (% of equity)", gt=0, le=100.0
    )

    @model_validator(mode="after")
    def validate_trade_risk(self) -> "DecisionEngineConfig":
        """A single sized trade must fit inside the daily risk ceiling."""
        if self.risk_per_trade_pct > self.max_daily_risk_pct:
            raise ValueError(
                f"risk_per_trade_pct ({self.risk_per_trade_pct}) exceeds "
                f"max_daily_risk_pct ({self.max_daily_risk_pct})"
            )
        return self


class AdvisoryConfig(BaseModel):
    """Advisory Review boundary configuration.

    Attributes:
        enabled: Run the optional review after full approval
        timeout_seconds: Hard bound on the review call
        max_confidence_adjustment: Symmetric clamp for the adjustment
    """

    enabled: bool = Field(default=False, description="Enable advisory review")
    timeout_seconds: float = Field(
        default=3.0, description="Advisory review timeout", gt=0, le=30.0
    )
    max_confidence_adjustment: int = Field(
        default=10, description="Clamp for confidence adjustment", ge=0, le=50
    )


class ExecutionConfig(BaseModel):
    """Executor defaults.

    The kill switch and mode here are only defaults. Each Executor call
    receives an explicit ExecutionControls value built from them (or from
    an operator override).

    Attributes:
        mode: Default operating mode
        kill_switch_enabled: If True, blocks ALL submissions
        submission_timeout_seconds: Bound on the execution venue call
        allow_disabled_engine: Accept results from a disabled engine
    """

    mode: OperatingMode = Field(default=OperatingMode.ADVISORY, description="Operating mode")
    kill_switch_enabled: bool = Field(
        default=False, description="Emergency halt - blocks ALL submissions"
    )
    submission_timeout_seconds: float = Field(
        default=10.0, description="Execution venue timeout", gt=0, le=120.0
    )
    allow_disabled_engine: bool = Field(
        default=False, description="Execute results produced with the engine disabled"
    )


class SessionConfig(BaseModel):
    """Exchange session hours used to derive the session phase."""

    timezone: str = Field(default="Asia/Kolkata", description="Exchange timezone")
    pre_market_start: time = Field(default=time(9, 0))
    market_open: time = Field(default=time(9, 15))
    market_close: time = Field(default=time(15, 30))
    post_market_end: time = Field(default=time(16, 0))

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v: str) -> str:
        """Reject unknown IANA zone names early."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_session_order(self) -> "SessionConfig":
        """Ensure session boundaries are in ascending order."""
        if not (
            self.pre_market_start
            <= self.market_open
            < self.market_close
            <= self.post_market_end
        ):
            raise ValueError(
                "Session times must satisfy: pre_market_start <= market_open < "
                f"market_close <= post_market_end. Got: {self.pre_market_start} <= "
                f"{self.market_open} < {self.market_close} <= {self.post_market_end}"
            )
        return self

    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class StorageConfig(BaseModel):
    """Paths for the SQLite-backed stores, and how long CLI log files are kept."""

    audit_db_path: str = Field(default="data_cache/audit_log.db")
    recommendation_db_path: str = Field(default="data_cache/recommendations.db")
    log_retention_days: int = Field(default=7, description="Days to keep log files", ge=1)


class Settings(BaseSettings):
    """
    Main application settings loaded from environment variables.

    Configuration is automatically loaded from .env file and environment
    variables. Use double underscore for nested configuration:
        DECISION_ENGINE__MAX_DAILY_RISK_PCT=1.5
        EXECUTION__MODE=fully_automated

    Attributes:
        decision_engine: Check thresholds
        advisory: Advisory Review boundary
        execution: Executor defaults (mode, kill switch, timeouts)
        session: Exchange session hours
        storage: SQLite paths
        environment: Deployment environment (development/production)
    """

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")

    decision_engine: DecisionEngineConfig = Field(default_factory=DecisionEngineConfig)
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    environment: str = Field(default="development", description="Deployment environment")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


def load_settings() -> Settings:
    """
    Load and validate settings from environment variables and .env file.

    Returns:
        Validated Settings instance

    Raises:
        ValidationError: If configuration is invalid
    """
    try:
        settings = Settings()
        logger.info(f"Settings loaded successfully. Environment: {settings.environment}")
        logger.debug(
            f"Execution defaults: mode={settings.execution.mode.value}, "
            f"kill_switch={settings.execution.kill_switch_enabled}"
        )
        return settings
    except Exception as e:
        logger.error(f"Failed to load settings: {e}")
        raise
