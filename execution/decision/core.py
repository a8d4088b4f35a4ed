import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from config.constants import MAX_CONFIDENCE_SCORE, Reason
from config.logging_config import LogCategory
from config.settings import Settings
from core.domain.base import now_utc
from core.domain.context import SystemContext
from core.domain.recommendation import TradeRecommendation
from execution.advisory import AdvisoryReviewService
from observability.execution_logging import execution_logger

from .checks import DecisionCheck, default_checks
from .types import CheckOutcome, DecisionResult

logger = logging.getLogger(__name__)


class DecisionEngine:
    """
    Deterministic gate deciding whether a recommendation may proceed.

    Decision Hierarchy (STRICTLY ENFORCED):
    1. **Validator**: structure, stop side, reward:risk, confidence, bias, targets.
    2. **RiskRules**: per-trade and daily risk, drawdown, losing streak, volatility.
    3. **SetupQuality**: trend and momentum still agree with the bias.
    4. **PortfolioConstraints**: per-symbol cap and capital (passes without a portfolio).
    5. Any extra checks, in registration order.

    The first failing check ends evaluation. ``evaluate()`` is pure: the
    same recommendation and context always produce the same result.
    ``decide()`` adds the optional Advisory Review after full approval.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        checks: Optional[Sequence[DecisionCheck]] = None,
        advisory: Optional[AdvisoryReviewService] = None,
    ):
        self.settings = settings or Settings()
        self.config = self.settings.decision_engine
        self.checks: list[DecisionCheck] = default_checks(self.config) + list(checks or [])
        self.advisory = advisory or AdvisoryReviewService(None, self.settings.advisory)

    @staticmethod
    def _coerce(model: type, value: Any) -> Any:
        """Validate mappings into ``model``. Anything unusable is returned as-is for the Validator to reject."""
        if isinstance(value, Mapping):
            try:
                return model.model_validate(value)
            except ValidationError as e:
                logger.warning(
                    f"{LogCategory.DECISION} Malformed {model.__name__}: {e.error_count()} validation error(s)"
                )
        return value

    @staticmethod
    def _evaluated_at(recommendation: Any, context: Any) -> datetime:
        if isinstance(context, SystemContext):
            return context.captured_at
        if isinstance(recommendation, TradeRecommendation):
            return recommendation.created_at
        return now_utc()

    def _run_check(self, check: DecisionCheck, recommendation: Any, context: Any) -> CheckOutcome:
        if check.mandatory:
            return check.evaluate(recommendation, context)
        try:
            return check.evaluate(recommendation, context)
        except Exception as e:
            logger.warning(f"{LogCategory.DECISION} Check {check.name} unavailable, passing by default: {e}")
            return CheckOutcome(
                check=check.name,
                passed=True,
                reason=Reason.COLLABORATOR_UNAVAILABLE,
                message=str(e),
            )

    def evaluate(
        self,
        recommendation: TradeRecommendation,
        context: Optional[SystemContext] = None,
    ) -> DecisionResult:
        """
        Run every check in order, stopping at the first failure.

        Args:
            recommendation: The recommendation to judge
            context: Point-in-time risk state, or None when unavailable

        Returns:
            A sealed DecisionResult
        """
        recommendation = self._coerce(TradeRecommendation, recommendation)
        context = self._coerce(SystemContext, context)
        recommendation_id = getattr(recommendation, "recommendation_id", None) or "unknown"
        evaluated_at = self._evaluated_at(recommendation, context)

        if not self.config.enabled:
            logger.warning(f"{LogCategory.DECISION} Decision Engine disabled; {recommendation_id} not checked")
            return DecisionResult.seal(
                recommendation_id=recommendation_id,
                approved=True,
                reason=Reason.DECISION_ENGINE_DISABLED,
                decision_path=(
                    CheckOutcome(
                        check="disabled",
                        passed=True,
                        reason=Reason.DECISION_ENGINE_DISABLED,
                        message="Decision Engine disabled (feature flag)",
                    ),
                ),
                engine_enabled=False,
                evaluated_at=evaluated_at,
            )

        path: list[CheckOutcome] = []
        for check in self.checks:
            outcome = self._run_check(check, recommendation, context)
            path.append(outcome)
            if not outcome.passed:
                result = DecisionResult.seal(
                    recommendation_id=recommendation_id,
                    approved=False,
                    reason=outcome.reason,
                    decision_path=tuple(path),
                    evaluated_at=evaluated_at,
                )
                logger.info(
                    f"{LogCategory.DECISION} {recommendation_id} rejected by {outcome.check}: "
                    f"{outcome.reason} ({outcome.message})"
                )
                execution_logger.log_decision(recommendation_id, False, outcome.reason, outcome.check)
                return result

        result = DecisionResult.seal(
            recommendation_id=recommendation_id,
            approved=True,
            reason=Reason.ALL_CHECKS_PASSED,
            decision_path=tuple(path),
            evaluated_at=evaluated_at,
        )
        logger.info(f"{LogCategory.DECISION} {recommendation_id} approved ({len(path)} checks passed)")
        execution_logger.log_decision(recommendation_id, True, result.reason, None)
        return result

    async def decide(
        self,
        recommendation: TradeRecommendation,
        context: Optional[SystemContext] = None,
    ) -> DecisionResult:
        """
        Evaluate, then attach the Advisory Review if the result is approved.

        The review only annotates: ``approved`` and ``decision_path`` are
        carried over unchanged.
        """
        recommendation = self._coerce(TradeRecommendation, recommendation)
        context = self._coerce(SystemContext, context)
        result = self.evaluate(recommendation, context)
        if not result.approved or not result.engine_enabled or not self.advisory.enabled:
            return result

        contract = await self.advisory.review(recommendation, context)
        adjusted = recommendation.confidence_score + contract.confidence_adjustment
        adjusted = max(0.0, min(MAX_CONFIDENCE_SCORE, adjusted))
        return result.with_advisory(contract, adjusted)

    @property
    def check_names(self) -> list[str]:
        return [check.name for check in self.checks]
