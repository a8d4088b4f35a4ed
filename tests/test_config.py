"""
Unit tests for config module.

Tests settings defaults, environment overrides and validation.
"""

from datetime import time

import pytest
from pydantic import ValidationError

from config.constants import DEFAULT_CHECK_ORDER, TRANSITIONS, CheckName, LifecycleState, OperatingMode
from config.settings import (
    AdvisoryConfig,
    DecisionEngineConfig,
    ExecutionConfig,
    SessionConfig,
    Settings,
    load_settings,
)


class TestConstants:
    """Tests for config constants."""

    def test_check_order(self):
        assert DEFAULT_CHECK_ORDER == (
            CheckName.VALIDATOR,
            CheckName.RISK_RULES,
            CheckName.SETUP_QUALITY,
            CheckName.PORTFOLIO_CONSTRAINTS,
        )

    def test_every_state_has_transitions_entry(self):
        assert set(TRANSITIONS) == set(LifecycleState)
        for terminal in (LifecycleState.EXITED, LifecycleState.CANCELLED, LifecycleState.INVALIDATED):
            assert not TRANSITIONS[terminal]


class TestDefaults:
    def test_decision_engine_defaults(self):
        cfg = DecisionEngineConfig()
        assert cfg.enabled is True
        assert cfg.min_risk_reward == 2.0
        assert cfg.min_confidence == 60.0
        assert cfg.max_daily_risk_pct == 2.0
        assert cfg.max_positions_per_symbol == 1
        assert cfg.risk_per_trade_pct == 1.0

    def test_execution_defaults_are_safe(self):
        """Out of the box nothing is submitted without an explicit mode change."""
        cfg = ExecutionConfig()
        assert cfg.mode == OperatingMode.ADVISORY
        assert cfg.kill_switch_enabled is False
        assert cfg.allow_disabled_engine is False

    def test_advisory_off_by_default(self):
        assert AdvisoryConfig().enabled is False


class TestValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("min_risk_reward", 0),
            ("min_confidence", 101),
            ("max_daily_risk_pct", -1),
            ("max_positions_per_symbol", 0),
            ("risk_per_trade_pct", 0),
        ],
    )
    def test_invalid_thresholds(self, field, value):
        with pytest.raises(ValidationError):
            DecisionEngineConfig(**{field: value})

    def test_trade_risk_within_daily_ceiling(self):
        with pytest.raises(ValidationError, match="risk_per_trade_pct"):
            DecisionEngineConfig(risk_per_trade_pct=1.5, max_daily_risk_pct=1.0)
        assert DecisionEngineConfig(risk_per_trade_pct=1.0, max_daily_risk_pct=1.0).risk_per_trade_pct == 1.0

    def test_submission_timeout_bounds(self):
        with pytest.raises(ValidationError):
            ExecutionConfig(submission_timeout_seconds=0)
        with pytest.raises(ValidationError):
            ExecutionConfig(submission_timeout_seconds=500)

    def test_session_order(self):
        with pytest.raises(ValidationError, match="Session times"):
            SessionConfig(market_open=time(16, 0), market_close=time(9, 0))

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            SessionConfig(timezone="Mars/Olympus_Mons")


class TestEnvironment:
    def test_nested_override(self, monkeypatch):
        monkeypatch.setenv("DECISION_ENGINE__MIN_RISK_REWARD", "2.5")
        monkeypatch.setenv("EXECUTION__MODE", "semi_automated")
        monkeypatch.setenv("EXECUTION__KILL_SWITCH_ENABLED", "true")
        settings = Settings(_env_file=None)
        assert settings.decision_engine.min_risk_reward == 2.5
        assert settings.execution.mode == OperatingMode.SEMI_AUTOMATED
        assert settings.execution.kill_switch_enabled is True

    def test_invalid_env_value_rejected(self, monkeypatch):
        monkeypatch.setenv("EXECUTION__MODE", "yolo")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_load_settings(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("ENVIRONMENT", "production")
        settings = load_settings()
        assert settings.is_production()
