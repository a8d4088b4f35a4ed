"""
Decision Pipeline Orchestrator.

Wires one pass of the pipeline:
1. SystemContext snapshot (exactly one per pass)
2. TradeRecommendation built from TradeFacts + TradeIntent
3. Lifecycle registration (PROPOSED)
4. Decision Engine + optional Advisory Review
5. Audit of the decision
6. PROPOSED -> APPROVED on approval
7. Executor gates, submission and APPROVED -> QUEUED
"""

import logging
from enum import Enum
from typing import Any, Optional

from config.constants import LifecycleState
from config.logging_config import LogCategory
from config.settings import Settings
from core.domain.base import DomainEntity
from core.domain.context import SystemContext
from core.domain.facts import TradeFacts
from core.domain.intent import TradeIntent
from core.domain.recommendation import TradeRecommendation
from core.exceptions import DuplicateRecommendationError
from execution.context import SystemContextAdapter
from execution.decision.core import DecisionEngine
from execution.decision.types import DecisionResult
from execution.executor import ExecutionControls, ExecutionOutcome, Executor
from execution.lifecycle_manager import LifecycleManager

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    DECISION = "decision"
    EXECUTION = "execution"


class OrchestrationResult(DomainEntity):
    stage: PipelineStage
    recommendation: TradeRecommendation
    decision: DecisionResult
    execution: Optional[ExecutionOutcome] = None

    @property
    def submitted(self) -> bool:
        return self.execution is not None and self.execution.submitted


class Orchestrator:
    """
    Coordinator for Facts + Intent -> decision -> execution request.
    """

    def __init__(
        self,
        engine: DecisionEngine,
        manager: LifecycleManager,
        executor: Executor,
        context_adapter: Optional[SystemContextAdapter] = None,
        settings: Optional[Settings] = None,
    ):
        self.engine = engine
        self.manager = manager
        self.executor = executor
        self.context_adapter = context_adapter or SystemContextAdapter()
        self.settings = settings or engine.settings

    async def _register(self, recommendation: TradeRecommendation) -> TradeRecommendation:
        try:
            record = await self.manager.register(recommendation)
        except DuplicateRecommendationError:
            record = await self.manager.get(recommendation.recommendation_id)
            logger.info(
                f"{LogCategory.LIFECYCLE} {recommendation.recommendation_id} already registered "
                f"in {record.state.value}; reusing stored revision"
            )
        return record.recommendation

    async def _audit_decision(
        self, recommendation: TradeRecommendation, decision: DecisionResult, context: Any
    ) -> None:
        audit_log = self.manager.audit_log
        if audit_log is None:
            return
        snapshot = context if isinstance(context, SystemContext) else None
        try:
            await audit_log.record_decision_async(recommendation, decision, snapshot)
        except Exception as e:
            logger.error(
                f"{LogCategory.AUDIT} Failed to audit decision for {recommendation.recommendation_id}: {e}",
                exc_info=True,
            )

    async def process(
        self,
        facts: TradeFacts,
        intent: TradeIntent,
        controls: Optional[ExecutionControls] = None,
        confirmed: bool = False,
        dry_run: bool = False,
        **build_options: Any,
    ) -> OrchestrationResult:
        """
        Run one recommendation through the whole pipeline.

        Args:
            facts: Observed state from the screening subsystem
            intent: Proposed action from the screening subsystem
            controls: Kill switch and mode for the Executor
            confirmed: Operator confirmation for semi-automated mode
            dry_run: Run the Executor without calling the venue
            **build_options: Passed to TradeRecommendation.build
                (quantity, risk_per_trade_pct, confidence_score, ...). Without
                a quantity, size from context equity at the configured
                ``decision_engine.risk_per_trade_pct``.
        """
        context = await self.context_adapter.snapshot()
        if build_options.get("equity") is None and isinstance(context, SystemContext):
            build_options["equity"] = context.resolved_equity
        if build_options.get("quantity") is None and build_options.get("risk_per_trade_pct") is None:
            build_options["risk_per_trade_pct"] = self.settings.decision_engine.risk_per_trade_pct

        recommendation = TradeRecommendation.build(facts, intent, **build_options)
        recommendation = await self._register(recommendation)
        recommendation_id = recommendation.recommendation_id

        decision = await self.engine.decide(recommendation, context)
        await self._audit_decision(recommendation, decision, context)
        await self.manager.store.set_decision_async(recommendation_id, decision)

        if not decision.approved:
            logger.info(f"{LogCategory.DECISION} {recommendation_id} stopped at decision: {decision.reason}")
            return OrchestrationResult(
                stage=PipelineStage.DECISION,
                recommendation=recommendation,
                decision=decision,
            )

        record = await self.manager.get(recommendation_id)
        if record.state == LifecycleState.PROPOSED:
            record = await self.manager.approve(recommendation_id, decision)

        execution = await self.executor.execute(
            record.recommendation, decision, controls, confirmed=confirmed, dry_run=dry_run
        )
        return OrchestrationResult(
            stage=PipelineStage.EXECUTION,
            recommendation=execution.recommendation or record.recommendation,
            decision=decision,
            execution=execution,
        )

    async def confirm(
        self,
        recommendation_id: str,
        controls: Optional[ExecutionControls] = None,
        dry_run: bool = False,
    ) -> ExecutionOutcome:
        """Re-run the Executor with operator confirmation using the stored decision."""
        record = await self.manager.get(recommendation_id)
        logger.info(f"{LogCategory.EXECUTION} Operator confirmation received for {recommendation_id}")
        return await self.executor.execute(
            record.recommendation, record.decision, controls, confirmed=True, dry_run=dry_run
        )
