"""
Tests for structured execution events and logging configuration.
"""

import json
import logging
import os
import time

import pytest

from config.logging_config import JsonFormatter, TokenSanitizer, cleanup_logs, setup_logging
from observability.execution_logging import execution_logger
from utils.numerical_validation import is_finite_number, percent_of, require_finite


def events(caplog):
    prefix = "EXECUTION_EVENT: "
    return [
        json.loads(r.getMessage()[len(prefix):])
        for r in caplog.records
        if r.getMessage().startswith(prefix)
    ]


class TestExecutionLogger:
    def test_decision_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="execution.lifecycle"):
            execution_logger.log_decision("rec-1", False, "daily_risk_exceeded", "risk_rules")
        (event,) = events(caplog)
        assert event["event_type"] == "decision"
        assert event["recommendation_id"] == "rec-1"
        assert event["success"] is False
        assert event["details"] == {"reason": "daily_risk_exceeded", "failed_check": "risk_rules"}

    def test_transition_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="execution.lifecycle"):
            execution_logger.log_transition("rec-1", "APPROVED", "QUEUED", "executor_submitted", 2)
        (event,) = events(caplog)
        assert event["details"]["to"] == "QUEUED"
        assert event["details"]["version"] == 2

    def test_submission_failure_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="execution.lifecycle"):
            execution_logger.log_submission_failure("rec-1", "venue timed out")
        (event,) = events(caplog)
        assert event["error"] == "venue timed out"
        assert event["details"] == {}


class TestLoggingConfig:
    def make_record(self, msg, **extra):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, None, None)
        record.__dict__.update(extra)
        return record

    def test_sanitizer_masks_secrets(self):
        record = self.make_record('{"broker_token": "abc123", "symbol": "TCS"}', api_key="xyz")
        assert TokenSanitizer().filter(record)
        assert "abc123" not in record.msg
        assert '"symbol": "TCS"' in record.msg
        assert record.api_key == "***"

    def test_json_formatter_merges_extra(self):
        record = self.make_record("gate failed", gate="kill_switch")
        data = json.loads(JsonFormatter().format(record))
        assert data["message"] == "gate failed"
        assert data["gate"] == "kill_switch"
        assert data["level"] == "INFO"

    def test_setup_logging_with_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            log_file = setup_logging(level="DEBUG", log_file=tmp_path / "logs" / "run.log")
            logging.getLogger("tests").info("hello")
            for handler in root.handlers:
                handler.flush()
            lines = log_file.read_text().splitlines()
            assert json.loads(lines[-1])["message"] == "hello"
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved_handlers
            root.setLevel(saved_level)

    def test_cleanup_logs(self, tmp_path):
        old = tmp_path / "old.log"
        new = tmp_path / "new.log"
        old.write_text("x")
        new.write_text("y")
        stale = time.time() - 10 * 86400
        os.utime(old, (stale, stale))
        assert cleanup_logs(tmp_path, retention_days=7) == 1
        assert not old.exists()
        assert new.exists()
        assert cleanup_logs(tmp_path / "missing") == 0


class TestNumericalValidation:
    @pytest.mark.parametrize("value", [0, 1.5, -3])
    def test_finite(self, value):
        assert is_finite_number(value)
        assert require_finite(value, "x") == float(value)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), True, "1.0", None])
    def test_not_finite(self, value):
        assert not is_finite_number(value)
        with pytest.raises(ValueError, match="x must be a finite number"):
            require_finite(value, "x")

    def test_percent_of(self):
        assert percent_of(50, 1000) == 5.0
        assert percent_of(50, 0) is None
        assert percent_of(float("nan"), 1000) is None
