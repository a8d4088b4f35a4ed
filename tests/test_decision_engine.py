"""
Tests for DecisionEngine ordering, short-circuiting, sealing and the
Advisory Review attachment.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from config.constants import AdvisoryLevel, CheckName, Reason
from config.settings import AdvisoryConfig, DecisionEngineConfig, Settings
from execution.advisory import AdvisoryReviewService
from execution.decision import DecisionEngine
from execution.decision.checks import DecisionCheck, Violation
from factories import CAPTURED_AT, DETECTED_AT, make_context, make_facts, make_intent, make_portfolio, make_recommendation

ALL_CHECKS = [name.value for name in CheckName]


class AlwaysFails(DecisionCheck):
    name = "earnings_blackout"
    pass_reason = "outside_blackout"

    def violations(self, recommendation, context):
        return [Violation("earnings_blackout", "Earnings within 2 days", {"days": 2})]


class Explodes(DecisionCheck):
    name = "sector_exposure"

    def violations(self, recommendation, context):
        raise ConnectionError("sector service down")


def settings_with(**engine) -> Settings:
    return Settings(_env_file=None, decision_engine=DecisionEngineConfig(**engine))


class StubReviewer:
    def __init__(self, output):
        self.output = output
        self.calls = 0

    async def review(self, recommendation, context):
        self.calls += 1
        return self.output


class TestEvaluate:
    def test_all_checks_pass(self, engine):
        result = engine.evaluate(make_recommendation(), make_context())
        assert result.approved
        assert result.reason == Reason.ALL_CHECKS_PASSED
        assert [o.check for o in result.decision_path] == ALL_CHECKS
        assert all(o.passed for o in result.decision_path)
        assert result.structural_problems() == []

    def test_first_failure_short_circuits(self, engine):
        # Fails Validator (low confidence) and SetupQuality (bearish trend)
        rec = make_recommendation(facts=make_facts(trend_tags=["bearish"]), confidence_score=10.0)
        result = engine.evaluate(rec, make_context())
        assert not result.approved
        assert result.reason == Reason.CONFIDENCE_BELOW_MINIMUM
        assert [o.check for o in result.decision_path] == [CheckName.VALIDATOR.value]
        assert result.failed_check == CheckName.VALIDATOR.value

    def test_later_check_failure_keeps_earlier_passes(self, engine):
        ctx = make_context(portfolio=make_portfolio(open_positions={"RELIANCE": 1}))
        result = engine.evaluate(make_recommendation(), ctx)
        assert result.reason == Reason.MAX_POSITIONS_PER_SYMBOL_EXCEEDED
        assert [o.passed for o in result.decision_path] == [True, True, True, False]
        assert result.structural_problems() == []

    def test_no_context_passes_through(self, engine):
        result = engine.evaluate(make_recommendation(), None)
        assert result.approved
        assert result.evaluated_at == DETECTED_AT
        assert result.decision_path[-1].reason == Reason.NO_PORTFOLIO_CONSTRAINTS

    def test_evaluated_at_from_context(self, engine):
        assert engine.evaluate(make_recommendation(), make_context()).evaluated_at == CAPTURED_AT

    def test_identical_inputs_identical_results(self, engine):
        rec, ctx = make_recommendation(), make_context()
        first = engine.evaluate(rec, ctx)
        second = engine.evaluate(rec, ctx)
        assert first == second
        assert first.digest == second.digest

    def test_mappings_are_validated(self, engine):
        rec = make_recommendation()
        result = engine.evaluate(rec.model_dump(), make_context().model_dump())
        assert result.approved
        assert result.recommendation_id == rec.recommendation_id

    def test_malformed_recommendation(self, engine):
        result = engine.evaluate({"symbol": "RELIANCE"}, None)
        assert not result.approved
        assert result.reason == Reason.MALFORMED_RECOMMENDATION
        assert result.recommendation_id == "unknown"

    def test_malformed_context(self, engine):
        result = engine.evaluate(make_recommendation(), {"drawdown_pct": -4})
        assert result.reason == Reason.MALFORMED_SYSTEM_CONTEXT

    def test_extra_checks_run_after_defaults(self):
        engine = DecisionEngine(settings_with(), checks=[AlwaysFails()])
        result = engine.evaluate(make_recommendation(), make_context())
        assert engine.check_names == ALL_CHECKS + ["earnings_blackout"]
        assert result.reason == "earnings_blackout"
        assert result.decision_path[-1].details["days"] == 2
        assert result.structural_problems() == []

    def test_unavailable_optional_check_passes(self):
        engine = DecisionEngine(settings_with(), checks=[Explodes()])
        result = engine.evaluate(make_recommendation(), make_context())
        assert result.approved
        assert result.decision_path[-1].reason == Reason.COLLABORATOR_UNAVAILABLE

    def test_disabled_engine(self):
        engine = DecisionEngine(settings_with(enabled=False))
        result = engine.evaluate(make_recommendation(confidence_score=0.0), None)
        assert result.approved
        assert not result.engine_enabled
        assert result.reason == Reason.DECISION_ENGINE_DISABLED
        assert len(result.decision_path) == 1
        assert result.structural_problems() == []


class TestScenarios:
    def test_scenario_a_risk_reward_boundary(self):
        rec = make_recommendation()
        assert DecisionEngine(settings_with(min_risk_reward=2.0)).evaluate(rec, None).approved

        result = DecisionEngine(settings_with(min_risk_reward=2.1)).evaluate(rec, None)
        assert not result.approved
        assert result.reason == "risk_reward_below_minimum"

    def test_scenario_b_daily_risk(self, engine):
        rec = make_recommendation(risk_amount=800.0)
        result = engine.evaluate(rec, make_context(daily_risk_used_pct=1.5))
        assert not result.approved
        assert result.reason == "daily_risk_exceeded"
        assert result.failed_check == CheckName.RISK_RULES.value
        assert result.decision_path[-1].details["total_daily_risk_pct"] == pytest.approx(2.3)


class TestDecide:
    @pytest.mark.asyncio
    async def test_advisory_not_called_when_disabled(self, settings):
        reviewer = StubReviewer({"level": "warning"})
        engine = DecisionEngine(settings, advisory=AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=False)))
        result = await engine.decide(make_recommendation(), make_context())
        assert result.approved
        assert result.advisory_review is None
        assert reviewer.calls == 0

    @pytest.mark.asyncio
    async def test_advisory_attached_after_approval(self, settings):
        reviewer = StubReviewer({"level": "warning", "confidence_adjustment": -4, "notes": "earnings soon"})
        engine = DecisionEngine(settings, advisory=AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=True)))
        result = await engine.decide(make_recommendation(), make_context())
        assert result.approved
        assert result.advisory_review.level == AdvisoryLevel.WARNING
        assert result.adjusted_confidence == 71.0
        assert result.structural_problems() == []

    @pytest.mark.asyncio
    async def test_advisory_never_called_on_rejection(self, settings):
        reviewer = StubReviewer({"level": "info"})
        engine = DecisionEngine(settings, advisory=AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=True)))
        result = await engine.decide(make_recommendation(intent=make_intent(bias="avoid")), None)
        assert not result.approved
        assert reviewer.calls == 0
        assert result.advisory_review is None

    @pytest.mark.asyncio
    async def test_advisory_cannot_flip_approval(self, settings):
        reviewer = StubReviewer({"approved": False, "level": "block_for_automation"})
        engine = DecisionEngine(settings, advisory=AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=True)))
        result = await engine.decide(make_recommendation(), make_context())
        assert result.approved
        assert result.advisory_review.is_default
        assert result.advisory_review.level == AdvisoryLevel.INFO

    @pytest.mark.asyncio
    async def test_block_for_automation_keeps_approval(self, settings):
        reviewer = StubReviewer('```json\n{"level": "block_auto", "notes": "thin book"}\n```')
        engine = DecisionEngine(settings, advisory=AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=True)))
        result = await engine.decide(make_recommendation(), make_context())
        assert result.approved
        assert result.blocks_automation

    @pytest.mark.asyncio
    async def test_adjusted_confidence_clamped(self, settings):
        reviewer = StubReviewer({"level": "info", "confidence_adjustment": 10})
        engine = DecisionEngine(settings, advisory=AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=True)))
        result = await engine.decide(make_recommendation(confidence_score=95.0), make_context())
        assert result.adjusted_confidence == 100.0

    @pytest.mark.asyncio
    async def test_slow_reviewer_times_out(self, settings):
        async def slow_review(recommendation, context):
            await asyncio.sleep(5)
            return {"level": "warning"}

        reviewer = MagicMock()
        reviewer.review = slow_review
        service = AdvisoryReviewService(reviewer, AdvisoryConfig(enabled=True, timeout_seconds=0.05))
        engine = DecisionEngine(settings, advisory=service)
        plain = engine.evaluate(make_recommendation(), make_context())
        result = await engine.decide(make_recommendation(), make_context())
        assert result.approved == plain.approved
        assert result.decision_path == plain.decision_path
        assert result.advisory_review.is_default
