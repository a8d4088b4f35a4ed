"""
Property-based tests for decision and lifecycle invariants.
"""

import asyncio

from hypothesis import given, settings as hyp_settings, strategies as st

from config.constants import DEFAULT_CHECK_ORDER, TRANSITIONS, LifecycleState
from config.settings import AdvisoryConfig, Settings
from core.domain.lifecycle import TradeLifecycle
from core.exceptions import InvalidTransitionError
from execution.advisory import AdvisoryReviewService
from execution.decision import DecisionEngine
from factories import make_context, make_facts, make_intent, make_recommendation

SETTINGS = Settings(_env_file=None)
ORDER = [c.value for c in DEFAULT_CHECK_ORDER]


@st.composite
def recommendations(draw):
    """Long setups around entry 100 with drawn stop, target and screener inputs."""
    stop = draw(st.floats(min_value=80.0, max_value=105.0, allow_nan=False))
    target = draw(st.floats(min_value=101.0, max_value=130.0, allow_nan=False))
    facts = make_facts(
        screener_score=draw(st.floats(min_value=0.0, max_value=100.0, allow_nan=False)),
        setup_status=draw(st.sampled_from(["READY", "NOT_READY"])),
    )
    intent = make_intent(
        bias=draw(st.sampled_from(["long", "avoid"])),
        proposed_stop=stop,
        targets=[[target, 1.0]],
    )
    return make_recommendation(facts, intent, quantity=draw(st.integers(min_value=1, max_value=500)))


@st.composite
def contexts(draw):
    return make_context(
        drawdown_pct=draw(st.floats(min_value=0.0, max_value=30.0, allow_nan=False)),
        consecutive_losses=draw(st.integers(min_value=0, max_value=6)),
        daily_risk_used_pct=draw(st.floats(min_value=0.0, max_value=3.0, allow_nan=False)),
    )


class StaticReviewer:
    def __init__(self, output):
        self.output = output

    def review(self, recommendation, context):
        return self.output


advisory_outputs = st.one_of(
    st.none(),
    st.text(max_size=40),
    st.fixed_dictionaries(
        {
            "level": st.sampled_from(["info", "warning", "block_auto", "reject", "approve"]),
            "confidence_adjustment": st.integers(min_value=-1000, max_value=1000),
        },
        optional={"approved": st.booleans(), "notes": st.text(max_size=20)},
    ),
)


class TestDecisionProperties:
    @given(recommendations(), st.one_of(st.none(), contexts()))
    @hyp_settings(max_examples=75, deadline=None)
    def test_approved_iff_every_check_passed(self, rec, ctx):
        result = DecisionEngine(SETTINGS).evaluate(rec, ctx)
        checks = [o.check for o in result.decision_path]

        assert checks == ORDER[: len(checks)]
        assert result.approved == all(o.passed for o in result.decision_path)
        if result.approved:
            assert checks == ORDER
        else:
            assert [o.passed for o in result.decision_path] == [True] * (len(checks) - 1) + [False]
            assert result.reason == result.decision_path[-1].reason
        assert result.structural_problems() == []

    @given(recommendations(), st.one_of(st.none(), contexts()))
    @hyp_settings(max_examples=50, deadline=None)
    def test_evaluation_is_deterministic(self, rec, ctx):
        engine = DecisionEngine(SETTINGS)
        assert engine.evaluate(rec, ctx) == engine.evaluate(rec, ctx)
        assert DecisionEngine(SETTINGS).evaluate(rec, ctx).digest == engine.evaluate(rec, ctx).digest

    @given(recommendations(), contexts(), advisory_outputs)
    @hyp_settings(max_examples=50, deadline=None)
    def test_advisory_never_changes_outcome(self, rec, ctx, output):
        plain = DecisionEngine(SETTINGS).evaluate(rec, ctx)
        service = AdvisoryReviewService(StaticReviewer(output), AdvisoryConfig(enabled=True))
        reviewed = asyncio.run(DecisionEngine(SETTINGS, advisory=service).decide(rec, ctx))

        assert reviewed.approved == plain.approved
        assert reviewed.reason == plain.reason
        assert reviewed.decision_path == plain.decision_path
        assert reviewed.structural_problems() == []
        if reviewed.adjusted_confidence is not None:
            assert 0.0 <= reviewed.adjusted_confidence <= 100.0


class TestLifecycleProperties:
    @given(st.lists(st.sampled_from(list(LifecycleState)), max_size=12))
    def test_only_legal_moves_and_no_revisits(self, targets):
        lifecycle = TradeLifecycle.start("rec-prop")
        for target in targets:
            allowed = TRANSITIONS[lifecycle.state]
            if target in allowed:
                lifecycle = lifecycle.transition_to(target, "prop")
            else:
                before = lifecycle
                try:
                    lifecycle.transition_to(target, "prop")
                except InvalidTransitionError:
                    pass
                else:
                    raise AssertionError(f"{before.state} -> {target} should be illegal")
                assert lifecycle == before

        visited = lifecycle.visited()
        assert len(visited) == len(set(visited))
        assert lifecycle.version == len(visited) - 1
        if lifecycle.is_terminal:
            assert all(not lifecycle.can_transition_to(s) for s in LifecycleState)
