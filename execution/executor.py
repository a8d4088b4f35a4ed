"""
Executor - the only component allowed to request an order submission.

Four ordered gates, all of which must pass:
1. Decision Engine: a well-formed, untampered, approved DecisionResult
2. Kill switch: if active nothing executes
3. Mode: advisory never executes; semi-automated needs confirmation;
   block_for_automation downgrades fully-automated to semi-automated
4. Lifecycle: the stored state must be exactly APPROVED

Gate 4, the venue call and the APPROVED -> QUEUED transition run under the
recommendation's lock with a version check, so concurrent calls for the
same id cannot both submit.
"""

import asyncio
import inspect
import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.constants import (
    ExecutionStatus,
    GateName,
    LifecycleState,
    OperatingMode,
    Reason,
)
from config.logging_config import LogCategory
from config.settings import Settings
from core.domain.base import DomainEntity
from core.domain.recommendation import TradeRecommendation
from core.exceptions import ConcurrentModificationError
from core.interfaces import IExecutionVenue
from execution.decision.types import DecisionResult
from execution.lifecycle_manager import LifecycleManager
from observability.execution_logging import execution_logger

logger = logging.getLogger(__name__)


class ExecutionControls(BaseModel):
    """
    Operator controls passed explicitly into every Executor call.

    Attributes:
        kill_switch_active: If True, blocks ALL submissions
        mode: Operating mode for this call
    """
    model_config = ConfigDict(frozen=True)

    kill_switch_active: bool = False
    mode: OperatingMode = OperatingMode.ADVISORY

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutionControls":
        return cls(
            kill_switch_active=settings.execution.kill_switch_enabled,
            mode=settings.execution.mode,
        )


class GateOutcome(DomainEntity):
    gate: GateName
    passed: bool
    reason: str
    details: dict[str, Any] = Field(default_factory=dict)


class ExecutionOutcome(DomainEntity):
    """
    Result of one Executor call.

    Attributes:
        status: submitted, pending_confirmation, advisory_only, rejected
            or submission_failed
        submitted: True only when the venue accepted (or dry-run admitted)
            the submission and the lifecycle moved to QUEUED
        gate: First failing gate, if any
        reason: Reason code of the failing gate or of the submission
        gates: Gate outcomes in evaluation order
        effective_mode: Mode after any advisory downgrade
    """
    recommendation_id: str
    status: ExecutionStatus
    submitted: bool = False
    gate: Optional[GateName] = None
    reason: str
    gates: tuple[GateOutcome, ...] = ()
    effective_mode: Optional[OperatingMode] = None
    dry_run: bool = False
    confirmed: bool = False
    venue_response: dict[str, Any] = Field(default_factory=dict)
    recommendation: Optional[TradeRecommendation] = None


_GATE_STATUS = {
    Reason.ADVISORY_MODE: ExecutionStatus.ADVISORY_ONLY,
    Reason.CONFIRMATION_REQUIRED: ExecutionStatus.PENDING_CONFIRMATION,
}


class Executor:
    """
    Execution gatekeeper.

    Gate failures are normal outcomes, never exceptions: nothing is
    submitted, the lifecycle is unchanged, and the reason is returned,
    logged and audited.
    """

    def __init__(
        self,
        manager: LifecycleManager,
        venue: Optional[IExecutionVenue] = None,
        settings: Optional[Settings] = None,
    ):
        self.manager = manager
        self.venue = venue
        self.settings = settings or Settings()
        self.config = self.settings.execution

    def default_controls(self) -> ExecutionControls:
        return ExecutionControls.from_settings(self.settings)

    def _decision_gate(self, recommendation_id: str, decision: Any) -> tuple[GateOutcome, Optional[DecisionResult]]:
        if isinstance(decision, Mapping):
            try:
                decision = DecisionResult.model_validate(decision)
            except ValidationError as e:
                return (
                    GateOutcome(
                        gate=GateName.DECISION_ENGINE,
                        passed=False,
                        reason=Reason.MALFORMED_DECISION_RESULT,
                        details={"errors": [err["msg"] for err in e.errors()]},
                    ),
                    None,
                )
        if not isinstance(decision, DecisionResult):
            return (
                GateOutcome(
                    gate=GateName.DECISION_ENGINE,
                    passed=False,
                    reason=Reason.MALFORMED_DECISION_RESULT,
                    details={"received_type": type(decision).__name__},
                ),
                None,
            )

        problems = decision.structural_problems()
        if decision.recommendation_id != recommendation_id:
            problems.append(f"decision belongs to {decision.recommendation_id}")
        if problems:
            return (
                GateOutcome(
                    gate=GateName.DECISION_ENGINE,
                    passed=False,
                    reason=Reason.MALFORMED_DECISION_RESULT,
                    details={"problems": problems},
                ),
                decision,
            )

        if not decision.engine_enabled and not self.config.allow_disabled_engine:
            return (
                GateOutcome(
                    gate=GateName.DECISION_ENGINE,
                    passed=False,
                    reason=Reason.DECISION_ENGINE_DISABLED,
                ),
                decision,
            )

        if not decision.approved:
            return (
                GateOutcome(
                    gate=GateName.DECISION_ENGINE,
                    passed=False,
                    reason=Reason.DECISION_NOT_APPROVED,
                    details={"decision_reason": decision.reason, "failed_check": decision.failed_check},
                ),
                decision,
            )

        return (
            GateOutcome(gate=GateName.DECISION_ENGINE, passed=True, reason=Reason.ALL_CHECKS_PASSED),
            decision,
        )

    @staticmethod
    def _kill_switch_gate(controls: ExecutionControls) -> GateOutcome:
        if controls.kill_switch_active:
            return GateOutcome(gate=GateName.KILL_SWITCH, passed=False, reason=Reason.KILL_SWITCH_ACTIVE)
        return GateOutcome(gate=GateName.KILL_SWITCH, passed=True, reason=Reason.KILL_SWITCH_CLEAR)

    @staticmethod
    def effective_mode(controls: ExecutionControls, decision: DecisionResult) -> OperatingMode:
        if controls.mode == OperatingMode.FULLY_AUTOMATED and decision.blocks_automation:
            return OperatingMode.SEMI_AUTOMATED
        return controls.mode

    @staticmethod
    def _mode_gate(mode: OperatingMode, requested: OperatingMode, confirmed: bool) -> GateOutcome:
        details = {"mode": mode.value, "requested_mode": requested.value, "confirmed": confirmed}
        if mode == OperatingMode.ADVISORY:
            return GateOutcome(gate=GateName.MODE, passed=False, reason=Reason.ADVISORY_MODE, details=details)
        if mode == OperatingMode.SEMI_AUTOMATED and not confirmed:
            return GateOutcome(
                gate=GateName.MODE, passed=False, reason=Reason.CONFIRMATION_REQUIRED, details=details
            )
        return GateOutcome(gate=GateName.MODE, passed=True, reason=Reason.MODE_ALLOWS_EXECUTION, details=details)

    async def _call_venue(self, recommendation: TradeRecommendation) -> dict[str, Any]:
        if self.venue is None:
            raise RuntimeError("No execution venue configured")
        response = self.venue.submit(recommendation)
        if inspect.isawaitable(response):
            response = await response
        return dict(response or {})

    async def execute(
        self,
        recommendation: TradeRecommendation,
        decision: Any,
        controls: Optional[ExecutionControls] = None,
        confirmed: bool = False,
        dry_run: bool = False,
    ) -> ExecutionOutcome:
        """
        Run the four gates and, if all pass, submit and move APPROVED -> QUEUED.

        Args:
            recommendation: The recommendation to execute
            decision: The DecisionResult produced by the Decision Engine
            controls: Kill switch and mode for this call (defaults from settings)
            confirmed: Explicit operator confirmation for semi-automated mode
            dry_run: Run gates and the transition without calling the venue

        Returns:
            ExecutionOutcome. Gate failures are returned, never raised.
        """
        controls = controls or self.default_controls()
        recommendation_id = recommendation.recommendation_id
        gates: list[GateOutcome] = []

        decision_gate, parsed = self._decision_gate(recommendation_id, decision)
        gates.append(decision_gate)
        if not decision_gate.passed:
            return await self._reject(recommendation_id, gates, controls, None, dry_run, confirmed)

        kill_gate = self._kill_switch_gate(controls)
        gates.append(kill_gate)
        if not kill_gate.passed:
            logger.warning(f"{LogCategory.SAFETY} Kill switch active; {recommendation_id} not executed")
            return await self._reject(recommendation_id, gates, controls, None, dry_run, confirmed)

        mode = self.effective_mode(controls, parsed)
        if mode != controls.mode:
            logger.warning(
                f"{LogCategory.SAFETY} Advisory review blocked automation for {recommendation_id}; "
                f"{controls.mode.value} downgraded to {mode.value}"
            )
        mode_gate = self._mode_gate(mode, controls.mode, confirmed)
        gates.append(mode_gate)
        if not mode_gate.passed:
            return await self._reject(recommendation_id, gates, controls, mode, dry_run, confirmed)

        async with self.manager.lock_for(recommendation_id):
            record = await self.manager.get(recommendation_id)
            if record.state != LifecycleState.APPROVED:
                gates.append(
                    GateOutcome(
                        gate=GateName.LIFECYCLE,
                        passed=False,
                        reason=Reason.LIFECYCLE_STATE_NOT_APPROVED,
                        details={"state": record.state.value, "version": record.version},
                    )
                )
                if record.lifecycle.is_terminal:
                    self.manager.discard_lock(recommendation_id)
                return await self._reject(
                    recommendation_id, gates, controls, mode, dry_run, confirmed, record.recommendation
                )
            gates.append(
                GateOutcome(
                    gate=GateName.LIFECYCLE,
                    passed=True,
                    reason=Reason.LIFECYCLE_APPROVED,
                    details={"version": record.version},
                )
            )

            venue_response: dict[str, Any] = {}
            if not dry_run:
                try:
                    venue_response = await asyncio.wait_for(
                        self._call_venue(record.recommendation),
                        timeout=self.config.submission_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    return await self._submission_failed(
                        recommendation_id, gates, controls, mode, confirmed, Reason.EXECUTION_TIMEOUT,
                        f"venue timed out after {self.config.submission_timeout_seconds}s",
                        record.recommendation,
                    )
                except Exception as e:
                    return await self._submission_failed(
                        recommendation_id, gates, controls, mode, confirmed, Reason.EXECUTION_FAILED,
                        str(e), record.recommendation,
                    )

            try:
                queued = await self.manager.queue_locked(recommendation_id, record.version)
            except ConcurrentModificationError as e:
                logger.error(
                    f"{LogCategory.EXECUTION} {recommendation_id} changed during submission: {e}"
                )
                raise

        execution_logger.log_submission(recommendation_id, mode.value, dry_run, venue_response)
        logger.info(
            f"{LogCategory.EXECUTION} {recommendation_id} submitted "
            f"(mode={mode.value}, dry_run={dry_run}); lifecycle now {queued.state.value}"
        )
        outcome = ExecutionOutcome(
            recommendation_id=recommendation_id,
            status=ExecutionStatus.SUBMITTED,
            submitted=True,
            reason=Reason.SUBMITTED,
            gates=tuple(gates),
            effective_mode=mode,
            dry_run=dry_run,
            confirmed=confirmed,
            venue_response=venue_response,
            recommendation=queued.recommendation,
        )
        await self._audit(outcome, controls, transition=(LifecycleState.APPROVED, LifecycleState.QUEUED))
        return outcome

    async def _reject(
        self,
        recommendation_id: str,
        gates: list[GateOutcome],
        controls: ExecutionControls,
        mode: Optional[OperatingMode],
        dry_run: bool,
        confirmed: bool,
        recommendation: Optional[TradeRecommendation] = None,
    ) -> ExecutionOutcome:
        failed = gates[-1]
        status = _GATE_STATUS.get(failed.reason, ExecutionStatus.REJECTED)
        outcome = ExecutionOutcome(
            recommendation_id=recommendation_id,
            status=status,
            gate=failed.gate,
            reason=failed.reason,
            gates=tuple(gates),
            effective_mode=mode,
            dry_run=dry_run,
            confirmed=confirmed,
            recommendation=recommendation,
        )
        logger.info(
            f"{LogCategory.EXECUTION} {recommendation_id} stopped at {failed.gate.value} gate: "
            f"{failed.reason} (status={status.value})"
        )
        execution_logger.log_gate_rejection(recommendation_id, failed.gate.value, failed.reason, status.value)
        await self._audit(outcome, controls)
        return outcome

    async def _submission_failed(
        self,
        recommendation_id: str,
        gates: list[GateOutcome],
        controls: ExecutionControls,
        mode: OperatingMode,
        confirmed: bool,
        reason: str,
        error: str,
        recommendation: TradeRecommendation,
    ) -> ExecutionOutcome:
        logger.warning(
            f"{LogCategory.EXECUTION} Submission of {recommendation_id} failed ({reason}): {error}. "
            "Lifecycle left at APPROVED; retry allowed"
        )
        execution_logger.log_submission_failure(recommendation_id, error, {"reason": reason})
        outcome = ExecutionOutcome(
            recommendation_id=recommendation_id,
            status=ExecutionStatus.SUBMISSION_FAILED,
            reason=reason,
            gates=tuple(gates),
            effective_mode=mode,
            confirmed=confirmed,
            venue_response={"error": error},
            recommendation=recommendation,
        )
        await self._audit(outcome, controls)
        return outcome

    async def _audit(
        self,
        outcome: ExecutionOutcome,
        controls: ExecutionControls,
        transition: Optional[tuple[LifecycleState, LifecycleState]] = None,
    ) -> None:
        audit_log = self.manager.audit_log
        if audit_log is None:
            return
        payload = {
            "status": outcome.status.value,
            "submitted": outcome.submitted,
            "reason": outcome.reason,
            "failed_gate": outcome.gate.value if outcome.gate else None,
            "gates": [gate.to_dict() for gate in outcome.gates],
            "effective_mode": outcome.effective_mode.value if outcome.effective_mode else None,
            "controls": controls.model_dump(mode="json"),
            "confirmed": outcome.confirmed,
            "dry_run": outcome.dry_run,
            "venue_response": outcome.venue_response,
            "transition": (
                {"from": transition[0].value, "to": transition[1].value} if transition else None
            ),
        }
        try:
            await audit_log.record_execution_async(outcome.recommendation_id, payload)
        except Exception as e:
            logger.error(
                f"{LogCategory.AUDIT} Failed to audit execution of {outcome.recommendation_id}: {e}",
                exc_info=True,
            )
