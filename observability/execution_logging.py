"""
Execution Logging - Structured events for the decision and lifecycle pipeline.

One ``EXECUTION_EVENT: {json}`` line per decision, gate rejection,
submission, submission failure and lifecycle transition.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("execution.lifecycle")


class ExecutionLogger:
    """
    Handles structured logging for decision and execution events.
    """

    def log_event(
        self,
        event_type: str,
        recommendation_id: str,
        success: bool,
        details: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        """Log a structured execution event."""
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "recommendation_id": recommendation_id,
            "success": success,
            "error": error,
            "details": details or {},
        }
        logger.info(f"EXECUTION_EVENT: {json.dumps(event, default=str)}")

    def log_decision(self, recommendation_id: str, approved: bool, reason: str, failed_check: Optional[str]):
        self.log_event(
            "decision",
            recommendation_id,
            approved,
            {"reason": reason, "failed_check": failed_check},
        )

    def log_gate_rejection(self, recommendation_id: str, gate: str, reason: str, status: str):
        self.log_event(
            "gate_rejection",
            recommendation_id,
            False,
            {"gate": gate, "status": status},
            error=reason,
        )

    def log_submission(self, recommendation_id: str, mode: str, dry_run: bool, venue_response: Optional[dict] = None):
        self.log_event(
            "submission",
            recommendation_id,
            True,
            {"mode": mode, "dry_run": dry_run, "venue_response": venue_response or {}},
        )

    def log_submission_failure(self, recommendation_id: str, error: str, details: Optional[dict] = None):
        self.log_event(
            "submission_failure",
            recommendation_id,
            False,
            error=error,
            details=details,
        )

    def log_transition(self, recommendation_id: str, from_state: str, to_state: str, cause: str, version: int):
        self.log_event(
            "transition",
            recommendation_id,
            True,
            {"from": from_state, "to": to_state, "cause": cause, "version": version},
        )


execution_logger = ExecutionLogger()
